import os
import threading
import time

import pytest

from pelzkeys.cmd_interface import (
    CmdArg,
    check_arg,
    format_arg_message,
    format_list_message,
    msg_arg,
    msg_list,
)
from pelzkeys.pelz_io import PipeError


@pytest.mark.parametrize(
    "word, expected",
    [
        ("seal", CmdArg.SEAL),
        ("exit", CmdArg.EX),
        ("keytable", CmdArg.KEYTABLE),
        ("pki", CmdArg.PKI),
        ("remove", CmdArg.REMOVE),
        ("list", CmdArg.LIST),
        ("load", CmdArg.LOAD),
        ("cert", CmdArg.CERT),
        ("private", CmdArg.PRIVATE),
    ],
)
def test_check_arg_keywords(word, expected):
    assert check_arg(word) is expected


def test_check_arg_none_is_empty():
    assert check_arg(None) is CmdArg.EMPTY
    assert CmdArg.EMPTY == 0


@pytest.mark.parametrize("word", ["", "sea", "seals", "Seal", "pkix", "privat", "file.txt"])
def test_check_arg_other(word):
    assert check_arg(word) is CmdArg.OTHER


def test_format_arg_message_with_argument():
    assert format_arg_message("/tmp/pipe", 2, "keyid") == "pelz 2 /tmp/pipe keyid"


def test_format_arg_message_without_argument_keeps_separator():
    assert format_arg_message("/tmp/pipe", 1) == "pelz 1 /tmp/pipe "
    assert format_arg_message("/tmp/pipe", 1, None) == format_arg_message("/tmp/pipe", 1, "")


def test_format_list_message():
    assert format_list_message("/tmp/pipe", 4) == "pelz 4 /tmp/pipe"


def _fake_service(service_fd, reply):
    received = []

    def run():
        deadline = time.monotonic() + 5
        data = b""
        while time.monotonic() < deadline:
            try:
                data = os.read(service_fd, 1024)
            except BlockingIOError:
                data = b""
            if data:
                break
            time.sleep(0.01)
        text = data.decode()
        received.append(text)
        client = text.split(" ")[2]
        with open(client, "wb") as handle:
            handle.write(reply)

    thread = threading.Thread(target=run)
    thread.start()
    return thread, received


@pytest.fixture
def pipes(tmp_path):
    service = str(tmp_path / "service")
    client = str(tmp_path / "client")
    os.mkfifo(service, 0o600)
    os.mkfifo(client, 0o600)
    service_fd = os.open(service, os.O_RDONLY | os.O_NONBLOCK)
    yield service, client, service_fd
    os.close(service_fd)


def test_msg_list_round_trip(pipes, capsys):
    service, client, service_fd = pipes
    thread, received = _fake_service(service_fd, b"first id\nsecond id\nEND\n")
    lines = msg_list(client, 4, service_pipe=service)
    thread.join(5)
    assert lines == ["first id", "second id"]
    assert received == [format_list_message(client, 4)]
    assert capsys.readouterr().out == "first id\nsecond id\n"


def test_msg_arg_sends_argument(pipes, capsys):
    service, client, service_fd = pipes
    thread, received = _fake_service(service_fd, b"END\n")
    lines = msg_arg(client, 2, "keyid", service_pipe=service)
    thread.join(5)
    assert lines == []
    assert received == [f"pelz 2 {client} keyid"]


def test_msg_arg_missing_client_pipe(tmp_path):
    with pytest.raises(PipeError):
        msg_arg(str(tmp_path / "absent"), 1, None, service_pipe=str(tmp_path / "svc"))


def test_msg_list_missing_service_pipe(tmp_path):
    client = str(tmp_path / "client")
    os.mkfifo(client, 0o600)
    with pytest.raises(PipeError):
        msg_list(client, 7, service_pipe=str(tmp_path / "absent"))