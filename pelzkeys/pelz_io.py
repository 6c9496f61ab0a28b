"""Named-pipe messaging between the command tool and the key service."""

from __future__ import annotations

import logging
import os
import re
import select
import sys
import time
from enum import Enum, auto
from typing import Callable, List, Optional, Sequence, TextIO, Union

from pelzkeys.tables import KeyTable, ServerTable, TableError

log = logging.getLogger(__name__)

BUFSIZE = 1024
PELZSERVICE = "/tmp/pelzService"
PELZINTERFACE = "/tmp/pelzInterface"

_EXTENSIONS = {".nkl": "NKL", ".ski": "SKI"}
_EXT_LEN = 4
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class ExtensionType(Enum):
    """File extensions that mark sealed files."""

    NO_EXT = auto()
    NKL = auto()
    SKI = auto()


class ParseResponse(Enum):
    """Outcome of handling one pipe command."""

    INVALID = auto()
    EXIT = auto()
    ERR_CHARBUF = auto()
    RM_KEK_FAIL = auto()
    RM_KEK = auto()
    KEK_TAB_DEST_FAIL = auto()
    RM_KEK_ALL = auto()
    NO_KEY_LIST = auto()
    KEY_LIST = auto()
    INVALID_EXT_CERT = auto()
    X509_FAIL = auto()
    ADD_CERT_FAIL = auto()
    LOAD_CERT = auto()
    INVALID_EXT_PRIV = auto()
    ADD_PRIV_FAIL = auto()
    LOAD_PRIV = auto()
    NO_SERVER_LIST = auto()
    SERVER_LIST = auto()
    RM_CERT_FAIL = auto()
    RM_CERT = auto()
    CERT_TAB_DEST_FAIL = auto()
    RM_ALL_CERT = auto()
    RM_PRIV_FAIL = auto()
    RM_PRIV = auto()


class PipeError(OSError):
    """Raised when a pipe cannot be opened, read, written or parsed."""


def get_file_ext(filename: Optional[str]) -> ExtensionType:
    """Classify ``filename`` by its extension (text after the last period)."""
    if not filename:
        return ExtensionType.NO_EXT
    period = filename.rfind(".")
    if period == -1:
        return ExtensionType.NO_EXT
    ext = filename[period:]
    if ext.endswith("\0"):
        ext = ext[:-1]
    log.debug("Finding file extension.")
    if len(ext) != _EXT_LEN:
        return ExtensionType.NO_EXT
    name = _EXTENSIONS.get(ext)
    return ExtensionType[name] if name else ExtensionType.NO_EXT


def file_check(path: Optional[Union[str, os.PathLike]]) -> bool:
    """Return True when ``path`` exists and is readable."""
    log.debug("File Check Key ID: %s", path)
    if path is None:
        log.debug("No file path provided.")
        return False
    if not os.access(path, os.F_OK):
        log.debug("File cannot be found.")
        return False
    if not os.access(path, os.R_OK):
        log.debug("File cannot be read.")
        return False
    return True


def _encode(msg: Union[str, bytes]) -> bytes:
    return msg.encode("utf-8") if isinstance(msg, str) else bytes(msg)


def write_to_pipe_fd(fd: int, msg: Union[str, bytes]) -> None:
    """Write the whole of ``msg`` to ``fd`` in a single write."""
    data = _encode(msg)
    try:
        written = os.write(fd, data)
    except OSError as exc:
        log.error("Error writing to pipe")
        raise PipeError(exc.errno, "error writing to pipe") from exc
    if written != len(data):
        log.error("Error writing to pipe")
        raise PipeError("short write to pipe")


def write_to_pipe(pipe: str, msg: Union[str, bytes]) -> None:
    """Open ``pipe`` for writing, send ``msg`` and close it again."""
    fd = open_write_pipe(pipe)
    try:
        write_to_pipe_fd(fd, msg)
    finally:
        try:
            os.close(fd)
        except OSError:
            log.error("Error closing pipe")


def read_from_pipe(pipe: str) -> Optional[str]:
    """Read one message of at most 1024 bytes from ``pipe``.

    Returns ``None`` when nothing was read.
    """
    if not file_check(pipe):
        log.debug("Pipe not found")
        log.info("Unable to read from pipe.")
        raise PipeError(f"pipe not found: {pipe}")
    try:
        fd = os.open(pipe, os.O_RDONLY)
    except OSError as exc:
        log.error("Error opening pipe")
        raise PipeError(exc.errno, f"error opening pipe {pipe}") from exc
    try:
        data = os.read(fd, BUFSIZE)
    except OSError as exc:
        log.error("Pipe read failed")
        raise PipeError(exc.errno, "pipe read failed") from exc
    finally:
        os.close(fd)
    if not data:
        log.debug("No read of pipe")
        return None
    return data.decode("utf-8", "replace")


def read_listener(fd: int, out: Optional[TextIO] = None, timeout: float = 5.0) -> List[str]:
    """Print response lines arriving on ``fd`` until an ``END`` line.

    Each line is written to ``out`` (standard output by default) and the
    lines are returned. ``fd`` is always closed. Raises ``PipeError`` on a
    read failure, a timeout or a chunk that does not end in a newline.
    """
    out = sys.stdout if out is None else out
    deadline = time.monotonic() + timeout
    lines: List[str] = []
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log.debug("No response received from pelz-service.")
                out.write("No response received from pelz-service.\n")
                raise PipeError("no response received from pelz-service")
            try:
                ready, _, _ = select.select([fd], [], [], remaining)
            except (OSError, ValueError) as exc:
                log.debug("Error in timeout of pipe.")
                out.write("Error in timeout of pipe.\n")
                raise PipeError("error waiting on pipe") from exc
            if not ready:
                continue
            try:
                chunk = os.read(fd, BUFSIZE)
            except BlockingIOError:
                continue
            except OSError as exc:
                log.error("Pipe read failed")
                raise PipeError(exc.errno, "pipe read failed") from exc
            if not chunk:
                # No writer yet; wait for one until the deadline passes.
                time.sleep(0.01)
                continue
            *complete, rest = chunk.split(b"\n")
            for raw in complete:
                if raw == b"END":
                    log.debug("Got END message")
                    return lines
                line = raw.decode("utf-8", "replace")
                log.debug("%s", line)
                out.write(line + "\n")
                lines.append(line)
            if rest:
                text = rest.decode("utf-8", "replace")
                log.error("Incomplete response message - missing newline: %s.", text)
                raise PipeError("incomplete response message - missing newline")
    finally:
        try:
            os.close(fd)
        except OSError:
            pass


def tokenize_pipe_message(message: Union[str, bytes]) -> List[str]:
    """Split a pipe message on spaces, dropping one trailing newline."""
    text = message.decode("utf-8", "replace") if isinstance(message, bytes) else message
    if not text:
        raise PipeError("empty pipe message")
    if text.endswith("\n"):
        text = text[:-1]
    expected = [part for part in text.split(" ") if part]
    if not expected:
        log.error("Unable to tokenize pipe message: %s", text)
        raise PipeError("unable to tokenize pipe message")
    visible = text.split("\0", 1)[0]
    tokens = [part for part in visible.split(" ") if part]
    if len(tokens) != len(expected):
        log.error("Unable to tokenize pipe message: %s", visible)
        raise PipeError("unable to tokenize pipe message")
    return tokens


def _open_pipe(name: str, flags: int) -> int:
    if not file_check(name):
        log.error("Pipe not found")
        raise PipeError(f"pipe not found: {name}")
    try:
        return os.open(name, flags | os.O_NONBLOCK)
    except OSError as exc:
        log.error("Error opening pipe")
        raise PipeError(exc.errno, f"error opening pipe {name}") from exc


def open_read_pipe(name: str) -> int:
    """Open an existing pipe for non-blocking reading and return its fd."""
    return _open_pipe(name, os.O_RDONLY)


def open_write_pipe(name: str) -> int:
    """Open an existing pipe for non-blocking writing and return its fd.

    This fails when no reader has the pipe open.
    """
    return _open_pipe(name, os.O_WRONLY)


def remove_pipe(name: str) -> bool:
    """Delete the pipe ``name``; return whether it was removed."""
    try:
        os.unlink(name)
    except OSError:
        log.debug("Failed to delete the pipe")
        return False
    log.debug("Pipe deleted successfully")
    return True


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


class PipeMessageHandler:
    """Carries out the commands that arrive on the service pipe.

    Loading certificates and private keys is delegated to callables:
    ``load_file(path)`` returns a handle for a sealed file,
    ``add_cert(handle)`` and ``add_private(handle)`` install what the handle
    holds (raising ``ValueError`` for malformed X509 data or ``TableError``
    for other failures), and ``remove_private()`` discards the private key.
    """

    def __init__(
        self,
        key_table: KeyTable,
        server_table: ServerTable,
        service_pipe: str = PELZSERVICE,
        load_file: Optional[Callable[[str], int]] = None,
        add_cert: Optional[Callable[[int], None]] = None,
        add_private: Optional[Callable[[int], None]] = None,
        remove_private: Optional[Callable[[], None]] = None,
    ) -> None:
        self.key_table = key_table
        self.server_table = server_table
        self.service_pipe = service_pipe
        self.load_file = load_file
        self.add_cert = add_cert
        self.add_private = add_private
        self.remove_private = remove_private

    def handle(self, tokens: Sequence[str]) -> ParseResponse:
        """Carry out the command in ``tokens`` and report the outcome."""
        log.debug("Token num: %d", len(tokens))
        if len(tokens) < 3:
            return ParseResponse.INVALID
        command = _atoi(tokens[1])
        if command == 1:
            if remove_pipe(self.service_pipe):
                log.info("Pipe deleted successfully")
            else:
                log.info("Failed to delete the pipe")
            return ParseResponse.EXIT
        if command == 2:
            if len(tokens) != 4:
                return ParseResponse.INVALID
            return self._remove(self.key_table, tokens[3], ParseResponse.RM_KEK, ParseResponse.RM_KEK_FAIL)
        if command == 3:
            self.key_table.destroy()
            log.info("Key Table Destroyed and Re-Initialize")
            return ParseResponse.RM_KEK_ALL
        if command == 4:
            if self.key_table.count() == 0:
                log.info("No entries in Key Table.")
                return ParseResponse.NO_KEY_LIST
            return ParseResponse.KEY_LIST
        if command == 5:
            if len(tokens) != 4:
                return ParseResponse.INVALID
            return self._load(
                tokens[3],
                self.add_cert,
                ParseResponse.INVALID_EXT_CERT,
                ParseResponse.ADD_CERT_FAIL,
                ParseResponse.LOAD_CERT,
            )
        if command == 6:
            if len(tokens) != 4:
                return ParseResponse.INVALID
            return self._load(
                tokens[3],
                self.add_private,
                ParseResponse.INVALID_EXT_PRIV,
                ParseResponse.ADD_PRIV_FAIL,
                ParseResponse.LOAD_PRIV,
            )
        if command == 7:
            if self.server_table.count() == 0:
                log.info("No entries in Server Table.")
                return ParseResponse.NO_SERVER_LIST
            return ParseResponse.SERVER_LIST
        if command == 8:
            if len(tokens) != 4:
                return ParseResponse.INVALID
            return self._remove(self.server_table, tokens[3], ParseResponse.RM_CERT, ParseResponse.RM_CERT_FAIL)
        if command == 9:
            self.server_table.destroy()
            log.info("Server Table Destroyed and Re-Initialized")
            return ParseResponse.RM_ALL_CERT
        if command == 10:
            if self.remove_private is not None:
                try:
                    self.remove_private()
                except (TableError, ValueError):
                    log.error("PKEY Free Failure")
                    return ParseResponse.RM_PRIV_FAIL
            return ParseResponse.RM_PRIV
        log.error("Pipe command invalid: %s %s", tokens[0], tokens[1])
        return ParseResponse.INVALID

    @staticmethod
    def _remove(table, entry_id: str, ok: ParseResponse, fail: ParseResponse) -> ParseResponse:
        try:
            table.delete(entry_id)
        except TableError:
            log.error("Delete ID from %s table failure: %s", table.table_type.value, entry_id)
            return fail
        log.info("Delete ID from %s table: %s", table.table_type.value, entry_id)
        return ok

    def _load(
        self,
        path: str,
        adder: Optional[Callable[[int], None]],
        bad_ext: ParseResponse,
        add_fail: ParseResponse,
        ok: ParseResponse,
    ) -> ParseResponse:
        if self.load_file is None:
            log.info("No loader for sealed files")
            return bad_ext
        try:
            handle = self.load_file(path)
        except (OSError, ValueError, TableError):
            log.info("Invalid extension for load call")
            log.debug("Path: %s", path)
            return bad_ext
        if adder is None:
            log.error("Add failure: no handler installed")
            return add_fail
        try:
            adder(handle)
        except ValueError:
            log.error("X509 allocation error.")
            return ParseResponse.X509_FAIL
        except TableError as exc:
            log.error("Add failure: %s", exc)
            return add_fail
        return ok