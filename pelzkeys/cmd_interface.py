"""Command keywords and the messages the command tool sends to the service."""

from __future__ import annotations

import logging
import os
from enum import IntEnum
from typing import List, Optional

from pelzkeys.pelz_io import (
    PELZSERVICE,
    PipeError,
    open_read_pipe,
    read_listener,
    write_to_pipe,
)

log = logging.getLogger(__name__)


class CmdArg(IntEnum):
    """Classification of one command-line word."""

    EMPTY = 0
    SEAL = 1
    EX = 2
    KEYTABLE = 3
    PKI = 4
    REMOVE = 5
    LIST = 6
    LOAD = 7
    CERT = 8
    PRIVATE = 9
    OTHER = 10


_KEYWORDS = {
    "seal": CmdArg.SEAL,
    "exit": CmdArg.EX,
    "keytable": CmdArg.KEYTABLE,
    "pki": CmdArg.PKI,
    "remove": CmdArg.REMOVE,
    "list": CmdArg.LIST,
    "load": CmdArg.LOAD,
    "cert": CmdArg.CERT,
    "private": CmdArg.PRIVATE,
}


def check_arg(arg: Optional[str]) -> CmdArg:
    """Classify ``arg``: a keyword, ``EMPTY`` for ``None``, else ``OTHER``."""
    if arg is None:
        return CmdArg.EMPTY
    return _KEYWORDS.get(arg, CmdArg.OTHER)


def format_arg_message(pipe: str, cmd: int, arg: Optional[str] = None) -> str:
    """Build the service message for a command that carries an argument."""
    return f"pelz {int(cmd)} {pipe} {arg or ''}"


def format_list_message(pipe: str, cmd: int) -> str:
    """Build the service message for a listing command."""
    return f"pelz {int(cmd)} {pipe}"


def _send(pipe: str, msg: str, service_pipe: str) -> List[str]:
    # The read side must be open before the service tries to answer on it.
    try:
        fd = open_read_pipe(pipe)
    except PipeError:
        log.error("Error opening pipe for reading")
        raise
    log.debug("Message: %s", msg)
    try:
        write_to_pipe(service_pipe, msg)
    except PipeError:
        os.close(fd)
        raise
    return read_listener(fd)


def msg_arg(
    pipe: str,
    cmd: int,
    arg: Optional[str] = None,
    service_pipe: str = PELZSERVICE,
) -> List[str]:
    """Send a command with an optional argument and return the response lines.

    The response is read from ``pipe``, which must already exist.
    """
    return _send(pipe, format_arg_message(pipe, cmd, arg), service_pipe)


def msg_list(pipe: str, cmd: int, service_pipe: str = PELZSERVICE) -> List[str]:
    """Send a listing command and return the response lines."""
    return _send(pipe, format_list_message(pipe, cmd), service_pipe)