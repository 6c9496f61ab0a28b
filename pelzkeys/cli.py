"""The ``pelz`` command: talks to a running key service over named pipes."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional, Sequence

from pelzkeys.cmd_interface import CmdArg, check_arg, msg_arg, msg_list
from pelzkeys.pelz_io import PELZINTERFACE, PipeError, remove_pipe

log = logging.getLogger(__name__)

PROG = "pelz"
FIFO_MODE = 0o600

Sealer = Callable[[str, str, bool], None]


class Command(IntEnum):
    """Commands understood by the service, with their wire numbers."""

    SEAL = 0
    EXIT = 1
    KEYTABLE_REMOVE = 2
    KEYTABLE_REMOVE_ALL = 3
    KEYTABLE_LIST = 4
    PKI_LOAD_CERT = 5
    PKI_LOAD_PRIVATE = 6
    PKI_CERT_LIST = 7
    PKI_REMOVE_CERT = 8
    PKI_REMOVE_ALL_CERTS = 9
    PKI_REMOVE_PRIVATE = 10


class UsageError(Exception):
    """Raised for a malformed command line.

    ``section`` names the help text to show: ``"full"``, ``"seal"``,
    ``"pki"``, ``"keytable"``, or ``None`` when no help text applies.
    """

    def __init__(self, message: str, section: Optional[str] = "full") -> None:
        super().__init__(message)
        self.section = section


_PKI_USAGE = (
    "pki commands:\n\n"
    "  pki <action> <type> <path>        This is used to load or remove certificates and keys used for\n"
    "                                    communicating with key servers.\n\n"
    "  pki load <type> <path>            Loads a client's private key or server's public certificate into\n"
    "                                    the pelz-service enclave. These files must be sealed by the\n"
    "                                    enclave prior to loading. The load command only accepts .nkl or\n"
    "                                    .ski files. Additionally, the original keys and certs must be\n"
    "                                    in the DER format prior to sealing.\n\n"
    "  pki load cert <path/to/file>      Loads a server certificate into the pelz-service enclave\n\n"
    "  pki load private <path/to/file>   Loads a private key for connections to key servers into the\n"
    "                                    pelz-service enclave. This will fail if a private key is already\n"
    "                                    loaded.\n\n"
    "  pki cert list                     Provides the Common Names of the certificates currently loaded\n"
    "                                    in the pelz-service.\n\n"
    "  pki remove <CN|private>           Removes the server certificate with Common Name (CN) from the\n"
    "                                    pelz-service. If the 'private' keyword is used, the private key\n"
    "                                    will be removed from the pelz-service.\n\n"
    "    -a, --all                       If -a or --all is selected, all server certificates will be\n"
    "                                    removed. The private key will not be removed.\n"
)

_KEYTABLE_USAGE = (
    "keytable commands:\n\n"
    "  keytable remove <id>              Removes a data key from the pelz-service enclave's key table.\n\n"
    "    -a, --all                       If -a or --all is selected, all keys in the key table will be\n"
    "                                    removed.\n\n"
    "  keytable list                     Lists the keys currently loaded by their id. This command does\n"
    "                                    not provide the actual key values of keys within the key table.\n"
)

_SEAL_USAGE = (
    "seal <path> [options]               Seals the input file to the pelz-service enclave. This creates\n"
    "                                    a .nkl file.\n\n"
    "  -t or --tpm                       Use the TPM along with the enclave when sealing. The TPM must\n"
    "                                    be enabled. If the TPM is used in conjunction with the enclave,\n"
    "                                    the .nkl file contents will be sealed and output as a .ski file.\n\n"
    "  -o or --output <output path>      Seal defaults to outputting a new file with the same name as the\n"
    "                                    input file, but with a .nkl or .ski extension appended. Using\n"
    "                                    the -o option allows the user to specify the output file name.\n"
)


def usage(prog: str = PROG) -> str:
    """Return the full help text for the command."""
    head = (
        f"usage: {prog} <keywords> [options] \n\n"
        "keywords and options are: \n\n"
        "options:\n"
        "  -d or --debug                     Enable debug messaging and logging.\n"
        "  -h or --help                      Help (displays this usage).\n\n"
        "exit                                Terminate running pelz-service\n\n"
    )
    return f"{head}{_SEAL_USAGE}\n{_PKI_USAGE}\n{_KEYTABLE_USAGE}\n"


def _usage_text(section: Optional[str], prog: str) -> str:
    return {
        "full": usage(prog),
        "seal": _SEAL_USAGE,
        "pki": _PKI_USAGE,
        "keytable": _KEYTABLE_USAGE,
    }.get(section or "", "")


@dataclass
class _ParsedCommand:
    command: Optional[Command] = None
    argument: Optional[str] = None
    output: Optional[str] = None
    tpm: bool = False
    remove_all: bool = False
    debug: bool = False
    help: bool = False


_LONG_OPTIONS = {"help": "h", "debug": "d", "tpm": "t", "output": "o", "all": "a"}


def _long_option(name: str) -> str:
    if name in _LONG_OPTIONS:
        return name
    matches = [option for option in _LONG_OPTIONS if option.startswith(name)]
    if len(matches) != 1 or not name:
        raise UsageError(f"unrecognized option '--{name}'", None)
    return matches[0]


def _parse_options(argv: Sequence[str]) -> "tuple[_ParsedCommand, List[str]]":
    parsed = _ParsedCommand()
    positionals: List[str] = []
    args = list(argv)
    i = 0

    def apply(flag: str, value: Optional[str] = None) -> bool:
        if flag == "h":
            parsed.help = True
            return True
        if flag == "d":
            parsed.debug = True
        elif flag == "t":
            parsed.tpm = True
        elif flag == "a":
            parsed.remove_all = True
        elif flag == "o":
            parsed.output = value
        return False

    while i < len(args):
        arg = args[i]
        i += 1
        if arg == "--":
            positionals.extend(args[i:])
            break
        if arg.startswith("--"):
            name, eq, value = arg[2:].partition("=")
            flag = _LONG_OPTIONS[_long_option(name)]
            if flag == "o":
                if not eq:
                    if i >= len(args):
                        raise UsageError("option '--output' requires an argument", None)
                    value = args[i]
                    i += 1
            elif eq:
                raise UsageError(f"option '--{name}' doesn't allow an argument", None)
            if apply(flag, value if flag == "o" else None):
                return parsed, positionals
        elif arg.startswith("-") and len(arg) > 1:
            chars = arg[1:]
            for pos, flag in enumerate(chars):
                if flag not in "hdato":
                    raise UsageError(f"invalid option -- '{flag}'", None)
                if flag == "o":
                    value = chars[pos + 1:]
                    if not value:
                        if i >= len(args):
                            raise UsageError("option requires an argument -- 'o'", None)
                        value = args[i]
                        i += 1
                    apply("o", value)
                    break
                if apply(flag):
                    return parsed, positionals
        else:
            positionals.append(arg)
    return parsed, positionals


def parse_command(argv: Sequence[str]):
    """Parse the arguments (without the program name) into a command.

    The result has ``command``, ``argument``, ``output``, ``tpm``,
    ``remove_all``, ``debug`` and ``help`` attributes. Raises ``UsageError``
    naming the help section to show when the words do not form a command.
    """
    parsed, positionals = _parse_options(argv)
    if parsed.help:
        return parsed

    words = positionals[:5]
    kinds = [check_arg(word) for word in words]
    kinds += [CmdArg.EMPTY] * (5 - len(kinds))

    if parsed.output is not None and kinds[0] != CmdArg.SEAL:
        raise UsageError("the output option only applies to seal")

    first = kinds[0]
    if first == CmdArg.SEAL:
        if kinds[1] == CmdArg.OTHER and kinds[2] == CmdArg.EMPTY:
            parsed.command = Command.SEAL
            parsed.argument = words[1]
        else:
            raise UsageError("seal takes exactly one path", "seal")
    elif first == CmdArg.EX:
        if kinds[1] != CmdArg.EMPTY:
            raise UsageError("exit takes no arguments")
        parsed.command = Command.EXIT
    elif first == CmdArg.KEYTABLE:
        _parse_keytable(parsed, kinds, words)
    elif first == CmdArg.PKI:
        _parse_pki(parsed, kinds, words)
    else:
        raise UsageError("unknown command")
    return parsed


def _parse_keytable(parsed: _ParsedCommand, kinds: List[CmdArg], words: List[str]) -> None:
    if kinds[1] == CmdArg.REMOVE:
        if parsed.remove_all:
            parsed.command = Command.KEYTABLE_REMOVE_ALL
        elif kinds[2] == CmdArg.OTHER and kinds[3] == CmdArg.EMPTY:
            parsed.command = Command.KEYTABLE_REMOVE
            parsed.argument = words[2]
        else:
            raise UsageError("keytable remove needs one id", "keytable")
    elif kinds[1] == CmdArg.LIST and kinds[2] == CmdArg.EMPTY:
        parsed.command = Command.KEYTABLE_LIST
    else:
        raise UsageError("invalid keytable command", "keytable")


def _parse_pki(parsed: _ParsedCommand, kinds: List[CmdArg], words: List[str]) -> None:
    if kinds[1] == CmdArg.LOAD:
        if kinds[3] == CmdArg.OTHER and kinds[4] == CmdArg.EMPTY:
            if kinds[2] == CmdArg.CERT:
                parsed.command = Command.PKI_LOAD_CERT
                parsed.argument = words[3]
                return
            if kinds[2] == CmdArg.PRIVATE:
                parsed.command = Command.PKI_LOAD_PRIVATE
                parsed.argument = words[3]
                return
        raise UsageError("invalid pki load command", "pki")
    if kinds[1] == CmdArg.CERT and kinds[2] == CmdArg.LIST and kinds[3] == CmdArg.EMPTY:
        parsed.command = Command.PKI_CERT_LIST
        return
    if kinds[1] == CmdArg.REMOVE:
        if parsed.remove_all:
            parsed.command = Command.PKI_REMOVE_ALL_CERTS
        elif kinds[2] == CmdArg.PRIVATE and kinds[3] == CmdArg.EMPTY:
            parsed.command = Command.PKI_REMOVE_PRIVATE
        elif kinds[2] == CmdArg.OTHER and kinds[3] == CmdArg.EMPTY:
            parsed.command = Command.PKI_REMOVE_CERT
            parsed.argument = words[2]
        else:
            raise UsageError("invalid pki remove command", "pki")
        return
    raise UsageError("invalid pki command", "pki")


def _default_output(path: str, tpm: bool) -> str:
    return path + (".ski" if tpm else ".nkl")


def _dispatch(parsed: _ParsedCommand, fifo_name: str, sealer: Optional[Sealer]) -> int:
    command = parsed.command
    if command == Command.SEAL:
        log.debug("Seal <path> option")
        if sealer is None:
            log.error("Error seal function: no sealing backend available")
            return 1
        output = parsed.output or _default_output(parsed.argument or "", parsed.tpm)
        try:
            sealer(parsed.argument or "", output, parsed.tpm)
        except (OSError, ValueError) as exc:
            log.error("Error seal function: %s", exc)
            return 1
        sys.stdout.write(f"Successfully sealed contents to file: {output}\n")
        return 0
    try:
        if command in (Command.KEYTABLE_LIST, Command.PKI_CERT_LIST):
            msg_list(fifo_name, command)
        else:
            msg_arg(fifo_name, command, parsed.argument)
    except PipeError as exc:
        log.error("Unable to reach pelz-service: %s", exc)
        return 1
    return 0


def _set_log_level(level: int) -> None:
    logging.basicConfig(format="%(name)s: %(levelname)s: %(message)s")
    logging.getLogger("pelzkeys").setLevel(level)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command with ``argv`` (default: the process arguments)."""
    args = sys.argv[1:] if argv is None else list(argv)
    _set_log_level(logging.INFO)

    if not args:
        sys.stdout.write(usage(PROG))
        return 0

    try:
        parsed = parse_command(args)
    except UsageError as exc:
        text = _usage_text(exc.section, PROG)
        if text:
            sys.stdout.write(text)
        else:
            sys.stderr.write(f"{PROG}: {exc}\n")
        return 1

    if parsed.help:
        sys.stdout.write(usage(PROG))
        return 0
    if parsed.debug:
        _set_log_level(logging.DEBUG)
    if parsed.output is not None:
        log.debug("OutPath option: %s", parsed.output)

    fifo_name = f"{PELZINTERFACE}{os.getpid()}"
    log.debug("FIFO Name: %s, %d", fifo_name, len(fifo_name))
    try:
        os.mkfifo(fifo_name, FIFO_MODE)
        log.debug("Pipe created successfully")
    except OSError as exc:
        log.debug("Error: %s", exc.strerror)

    try:
        return _dispatch(parsed, fifo_name, None)
    finally:
        remove_pipe(fifo_name)


if __name__ == "__main__":
    sys.exit(main())