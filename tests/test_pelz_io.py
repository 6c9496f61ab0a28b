import io
import os
from unittest import mock

import pytest

from pelzkeys.pelz_io import (
    ExtensionType,
    ParseResponse,
    PipeError,
    PipeMessageHandler,
    file_check,
    get_file_ext,
    open_read_pipe,
    open_write_pipe,
    read_from_pipe,
    read_listener,
    remove_pipe,
    tokenize_pipe_message,
    write_to_pipe,
    write_to_pipe_fd,
)
from pelzkeys.tables import KeyTable, RetrieveError, ServerTable, TableError, UnsealedStore


@pytest.mark.parametrize(
    "name, expected",
    [
        ("key.nkl", ExtensionType.NKL),
        ("dir/key.ski", ExtensionType.SKI),
        ("key.nkl\0", ExtensionType.NKL),
        ("key.txt", ExtensionType.NO_EXT),
        ("key", ExtensionType.NO_EXT),
        ("", ExtensionType.NO_EXT),
        (None, ExtensionType.NO_EXT),
        ("dir.nkl/key", ExtensionType.NO_EXT),
        ("key.nkll", ExtensionType.NO_EXT),
    ],
)
def test_get_file_ext(name, expected):
    assert get_file_ext(name) is expected


def test_file_check(tmp_path):
    path = tmp_path / "testfile"
    path.write_text("Testing...")
    assert file_check(None) is False
    assert file_check(str(path)) is True
    with mock.patch("pelzkeys.pelz_io.os.access", side_effect=lambda p, m: m != os.R_OK):
        assert file_check(str(path)) is False
    path.unlink()
    assert file_check(str(path)) is False


def test_write_to_pipe_fd_round_trip():
    r, w = os.pipe()
    try:
        write_to_pipe_fd(w, "hello pipe")
        assert os.read(r, 100) == b"hello pipe"
    finally:
        os.close(r)
        os.close(w)


def test_write_to_pipe_fd_bad_fd():
    r, w = os.pipe()
    os.close(r)
    os.close(w)
    with pytest.raises(PipeError):
        write_to_pipe_fd(w, "x")


def test_write_to_pipe_through_fifo(tmp_path):
    fifo = str(tmp_path / "fifo")
    os.mkfifo(fifo)
    fd = open_read_pipe(fifo)
    try:
        write_to_pipe(fifo, "pelz 4 /tmp/x")
        assert os.read(fd, 100) == b"pelz 4 /tmp/x"
    finally:
        os.close(fd)


def test_write_to_missing_pipe(tmp_path):
    with pytest.raises(PipeError):
        write_to_pipe(str(tmp_path / "absent"), "msg")


def test_open_write_pipe_without_reader(tmp_path):
    fifo = str(tmp_path / "fifo")
    os.mkfifo(fifo)
    with pytest.raises(PipeError):
        open_write_pipe(fifo)


def test_open_read_pipe_missing(tmp_path):
    with pytest.raises(PipeError):
        open_read_pipe(str(tmp_path / "absent"))


def test_read_from_pipe(tmp_path):
    path = tmp_path / "msg"
    path.write_bytes(b"pelz 1 pipe")
    assert read_from_pipe(str(path)) == "pelz 1 pipe"
    path.write_bytes(b"")
    assert read_from_pipe(str(path)) is None
    with pytest.raises(PipeError):
        read_from_pipe(str(tmp_path / "absent"))


def test_read_listener_collects_until_end():
    r, w = os.pipe()
    os.write(w, b"key one\nkey two\nEND\n")
    out = io.StringIO()
    try:
        lines = read_listener(r, out=out, timeout=1.0)
    finally:
        os.close(w)
    assert lines == ["key one", "key two"]
    assert out.getvalue() == "key one\nkey two\n"
    with pytest.raises(OSError):
        os.fstat(r)


def test_read_listener_timeout():
    r, w = os.pipe()
    out = io.StringIO()
    try:
        with pytest.raises(PipeError):
            read_listener(r, out=out, timeout=0.1)
    finally:
        os.close(w)
    assert "No response received from pelz-service." in out.getvalue()


def test_read_listener_incomplete_line():
    r, w = os.pipe()
    os.write(w, b"partial")
    try:
        with pytest.raises(PipeError):
            read_listener(r, out=io.StringIO(), timeout=1.0)
    finally:
        os.close(w)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("pelz 4 /tmp/x\n", ["pelz", "4", "/tmp/x"]),
        ("pelz 2 /tmp/x key", ["pelz", "2", "/tmp/x", "key"]),
        ("  a  b ", ["a", "b"]),
        (b"pelz 1 p\n", ["pelz", "1", "p"]),
        ("a\0b", ["a"]),
    ],
)
def test_tokenize(message, expected):
    assert tokenize_pipe_message(message) == expected


@pytest.mark.parametrize("message", ["", "   ", "\n", "a\0 b"])
def test_tokenize_errors(message):
    with pytest.raises(PipeError):
        tokenize_pipe_message(message)


def test_remove_pipe(tmp_path):
    fifo = str(tmp_path / "fifo")
    os.mkfifo(fifo)
    assert remove_pipe(fifo) is True
    assert not os.path.exists(fifo)
    assert remove_pipe(fifo) is False


@pytest.fixture
def handler(tmp_path):
    service = tmp_path / "service"
    service.write_text("")
    return PipeMessageHandler(KeyTable(), ServerTable(), service_pipe=str(service))


def test_handle_too_few_tokens(handler):
    assert handler.handle(["pelz", "4"]) is ParseResponse.INVALID


def test_handle_unknown_command(handler):
    assert handler.handle(["pelz", "99", "p"]) is ParseResponse.INVALID
    assert handler.handle(["pelz", "abc", "p"]) is ParseResponse.INVALID


def test_handle_exit(handler):
    assert handler.handle(["pelz", "1", "p"]) is ParseResponse.EXIT
    assert not os.path.exists(handler.service_pipe)


def test_handle_key_removal(handler):
    handler.key_table.add_key("file:/k1", b"KIENJCDNHVIJERLMALIDFEKIUFDALJFG")
    assert handler.handle(["pelz", "4", "p"]) is ParseResponse.KEY_LIST
    assert handler.handle(["pelz", "2", "p"]) is ParseResponse.INVALID
    assert handler.handle(["pelz", "2", "p", "file:/k1"]) is ParseResponse.RM_KEK
    assert handler.key_table.count() == 0
    assert handler.handle(["pelz", "2", "p", "file:/k1"]) is ParseResponse.RM_KEK_FAIL
    assert handler.handle(["pelz", "4", "p"]) is ParseResponse.NO_KEY_LIST


def test_handle_key_table_destroy(handler):
    handler.key_table.add_key("a", b"HVIJERLMALIDFKDN")
    handler.key_table.add_key("b", b"NGVBIZSAIXKDNRUE")
    assert handler.handle(["pelz", "3", "p"]) is ParseResponse.RM_KEK_ALL
    assert handler.key_table.count() == 0


def test_handle_server_commands(handler):
    assert handler.handle(["pelz", "7", "p"]) is ParseResponse.NO_SERVER_LIST
    handler.server_table.add_cert("localhost", b"\x30\x03\x02\x01\x01")
    handler.server_table.add_cert("TestClient", b"\x30\x03\x02\x01\x02")
    assert handler.handle(["pelz", "7", "p"]) is ParseResponse.SERVER_LIST
    assert handler.handle(["pelz", "8", "p", "TestTestTest"]) is ParseResponse.RM_CERT_FAIL
    assert handler.handle(["pelz", "8", "p", "TestClient"]) is ParseResponse.RM_CERT
    assert handler.handle(["pelz", "8", "p", "TestClient"]) is ParseResponse.RM_CERT_FAIL
    assert handler.handle(["pelz", "9", "p"]) is ParseResponse.RM_ALL_CERT
    assert handler.server_table.count() == 0


def test_handle_load_cert_without_loader(handler):
    assert handler.handle(["pelz", "5", "p", "cert.nkl"]) is ParseResponse.INVALID_EXT_CERT
    assert handler.handle(["pelz", "6", "p", "priv.nkl"]) is ParseResponse.INVALID_EXT_PRIV


def test_handle_load_cert_with_hooks(tmp_path):
    store = UnsealedStore()
    servers = ServerTable()

    def load_file(path):
        if get_file_ext(path) is ExtensionType.NO_EXT:
            raise ValueError("not a sealed file")
        return store.put(b"\x30\x03\x02\x01\x01")

    def add_cert(handle):
        data = store.retrieve(handle)
        servers.add_cert("localhost", data)

    handler = PipeMessageHandler(KeyTable(), servers, str(tmp_path / "s"), load_file=load_file, add_cert=add_cert)
    assert handler.handle(["pelz", "5", "p", "cert.txt"]) is ParseResponse.INVALID_EXT_CERT
    assert handler.handle(["pelz", "5", "p", "cert.nkl"]) is ParseResponse.LOAD_CERT
    assert servers.ids() == [b"localhost"]


def test_handle_load_failures(tmp_path):
    store = UnsealedStore()

    def bad_x509(handle):
        raise ValueError("bad certificate")

    def missing(handle):
        raise RetrieveError("gone")

    handler = PipeMessageHandler(
        KeyTable(),
        ServerTable(),
        str(tmp_path / "s"),
        load_file=lambda path: store.put(b"data"),
        add_cert=bad_x509,
        add_private=missing,
    )
    assert handler.handle(["pelz", "5", "p", "c.nkl"]) is ParseResponse.X509_FAIL
    assert handler.handle(["pelz", "6", "p", "k.nkl"]) is ParseResponse.ADD_PRIV_FAIL


def test_handle_load_private_success(tmp_path):
    loaded = []
    handler = PipeMessageHandler(
        KeyTable(),
        ServerTable(),
        str(tmp_path / "s"),
        load_file=lambda path: 7,
        add_private=loaded.append,
    )
    assert handler.handle(["pelz", "6", "p", "k.nkl"]) is ParseResponse.LOAD_PRIV
    assert loaded == [7]


def test_handle_remove_private(tmp_path):
    calls = []
    handler = PipeMessageHandler(
        KeyTable(), ServerTable(), str(tmp_path / "s"), remove_private=lambda: calls.append(1)
    )
    assert handler.handle(["pelz", "10", "p"]) is ParseResponse.RM_PRIV
    assert calls == [1]

    def failing():
        raise TableError("free failure")

    handler.remove_private = failing
    assert handler.handle(["pelz", "10", "p"]) is ParseResponse.RM_PRIV_FAIL