"""Command line parsing for single-dash program options."""

from __future__ import annotations

import re
import struct
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, TextIO

_SEPARATOR = "-------------------------------------------"

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_STRTOD_PREFIX = re.compile(
    r"\s*([+-]?(?:inf(?:inity)?|nan|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))",
    re.IGNORECASE,
)

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


class ArgType(Enum):
    """Kinds of values an option can hold."""

    DOUBLE = "<double>"
    FLOAT = "<float>"
    INT = "<int>"
    STRING = "<string>"
    BOOL = "<bool>"
    VECTOR_INT = "<vector_int>"
    VECTOR_DOUBLE = "<vector_double>"


class CommandArgsError(Exception):
    """Raised when the command line cannot be parsed."""


@dataclass
class _Argument:
    name: str
    description: str
    kind: ArgType
    value: Any
    parsed: bool = False
    optional: bool = False


def _first_token(text: str) -> Optional[str]:
    tokens = text.split()
    return tokens[0] if tokens else None


def _scan_list(text: str, pattern: re.Pattern, convert) -> list:
    token = _first_token(text)
    if token is None:
        return []
    values = []
    pos = 0
    while pos <= len(token):
        match = pattern.match(token, pos)
        if match is None:
            break
        values.append(convert(match.group(1)))
        # Skip the value and the one separator character after it.
        pos = match.end() + 1
    return values


def parse_int_list(text: str) -> List[int]:
    """Read integers separated by single characters from the first word of text."""
    return _scan_list(text, _INT_PREFIX, int)


def parse_float_list(text: str) -> List[float]:
    """Read floats separated by single characters from the first word of text."""
    return _scan_list(text, _STRTOD_PREFIX, float)


def _format_number(value: float) -> str:
    return format(float(value), "g")


def format_int_list(values: Sequence[int]) -> str:
    """Join integers with commas."""
    return ",".join(str(int(v)) for v in values)


def format_float_list(values: Sequence[float]) -> str:
    """Join floats with semicolons in general number format."""
    return ";".join(_format_number(v) for v in values)


def _to_single(value: float) -> float:
    return struct.unpack("f", struct.pack("f", float(value)))[0]


def _infer_kind(default: Any) -> ArgType:
    if isinstance(default, bool):
        return ArgType.BOOL
    if isinstance(default, int):
        return ArgType.INT
    if isinstance(default, float):
        return ArgType.DOUBLE
    if isinstance(default, str):
        return ArgType.STRING
    if isinstance(default, (list, tuple)):
        if not default:
            raise TypeError("the kind of an empty list parameter must be given")
        if all(isinstance(v, int) and not isinstance(v, bool) for v in default):
            return ArgType.VECTOR_INT
        return ArgType.VECTOR_DOUBLE
    raise TypeError(f"unsupported parameter default: {default!r}")


def _coerce(kind: ArgType, value: Any) -> Any:
    if kind is ArgType.BOOL:
        return bool(value)
    if kind is ArgType.INT:
        return int(value)
    if kind is ArgType.DOUBLE:
        return float(value)
    if kind is ArgType.FLOAT:
        return _to_single(value)
    if kind is ArgType.STRING:
        return str(value)
    if kind is ArgType.VECTOR_INT:
        return [int(v) for v in value]
    return [float(v) for v in value]


def _convert(kind: ArgType, text: str) -> Optional[Any]:
    """Convert text to a value of the given kind; None when it does not convert."""
    if kind is ArgType.STRING:
        return text
    if kind in (ArgType.VECTOR_INT, ArgType.VECTOR_DOUBLE):
        if _first_token(text) is None:
            return None
        if kind is ArgType.VECTOR_INT:
            return parse_int_list(text)
        return parse_float_list(text)
    if kind in (ArgType.INT, ArgType.BOOL):
        match = _INT_PREFIX.match(text)
        if match is None:
            return None
        number = int(match.group(1))
        if kind is ArgType.BOOL:
            return {0: False, 1: True}.get(number)
        if not _INT_MIN <= number <= _INT_MAX:
            return None
        return number
    match = _FLOAT_PREFIX.match(text)
    if match is None:
        return None
    number = float(match.group(1))
    return _to_single(number) if kind is ArgType.FLOAT else number


def _value_to_str(arg: _Argument) -> str:
    kind = arg.kind
    if kind is ArgType.STRING:
        return arg.value
    if kind is ArgType.BOOL:
        return "1" if arg.value else "0"
    if kind is ArgType.INT:
        return str(arg.value)
    if kind in (ArgType.DOUBLE, ArgType.FLOAT):
        return _format_number(arg.value)
    if kind is ArgType.VECTOR_INT:
        return format_int_list(arg.value)
    return format_float_list(arg.value)


class CommandArgs:
    """Registry of named options and plain arguments filled from a command line."""

    def __init__(self, banner: str = "") -> None:
        self.banner = banner
        self.prog_name = ""
        self._args: List[_Argument] = []
        self._left_overs: List[_Argument] = []
        self._left_overs_optional: List[_Argument] = []

    def param(self, name: str, default: Any, description: str = "",
              kind: Optional[ArgType] = None) -> None:
        """Register an option; a bool option toggles its default when given."""
        kind = kind if kind is not None else _infer_kind(default)
        self._args.append(_Argument(name, description, kind, _coerce(kind, default)))

    def param_left_over(self, name: str, default: str = "", description: str = "",
                        optional: bool = False) -> None:
        """Register a plain positional argument."""
        arg = _Argument(name, description, ArgType.STRING, str(default), optional=optional)
        (self._left_overs_optional if optional else self._left_overs).append(arg)

    def _fail(self, message: str, exit_on_error: bool, show_help: bool) -> None:
        sys.stderr.write(message)
        if show_help:
            self.print_help(sys.stderr)
        if exit_on_error:
            raise SystemExit(1)
        raise CommandArgsError(message.strip())

    def _find(self, name: str) -> Optional[_Argument]:
        return next((a for a in self._args if a.name == name), None)

    def parse_args(self, argv: Optional[Sequence[str]] = None,
                   exit_on_error: bool = True) -> None:
        """Fill the registered parameters from argv, whose first item is the program name."""
        argv = list(sys.argv if argv is None else argv)
        self.prog_name = argv[0] if argv else ""
        i = 1
        while i < len(argv):
            name = argv[i]
            if not name.startswith("-"):
                break
            if name == "--":
                i += 1
                break
            stripped = name.lstrip("-")
            if stripped:
                name = stripped
            if name in ("help", "h"):
                self.print_help(sys.stdout)
                raise SystemExit(0)
            arg = self._find(name)
            if arg is None:
                self._fail(
                    f"Error: Unknown Option '{name}' (use -help to get list of options).\n",
                    exit_on_error, show_help=False,
                )
            elif arg.kind is ArgType.BOOL:
                if not arg.parsed:
                    arg.value = not arg.value
                arg.parsed = True
            else:
                if i >= len(argv) - 1:
                    self._fail(f"Argument {name}needs value.\n", exit_on_error, show_help=True)
                i += 1
                converted = _convert(arg.kind, argv[i])
                if converted is not None:
                    arg.value = converted
                arg.parsed = True
            i += 1

        remaining = argv[i:]
        if len(self._left_overs) > len(remaining):
            self._fail("Error: program requires parameters\n", exit_on_error, show_help=True)
        values = iter(remaining)
        for arg, value in zip(self._left_overs + self._left_overs_optional, values):
            arg.value = value

    def get(self, name: str) -> Any:
        """Return the current value of an option or plain argument."""
        for arg in (*self._args, *self._left_overs, *self._left_overs_optional):
            if arg.name == name:
                return arg.value
        raise KeyError(name)

    def print_help(self, stream: Optional[TextIO] = None) -> None:
        """Write usage and the table of options to stream."""
        out = stream if stream is not None else sys.stdout
        lines = []
        if self.banner:
            lines.append(self.banner + "\n")
        usage = "Usage: " + self.prog_name + (" [options] " if self._args else " ")
        usage += " ".join(a.name for a in self._left_overs)
        if self._left_overs_optional:
            if self._left_overs:
                usage += " "
            usage += " ".join(f"[{a.name}]" for a in self._left_overs_optional)
        lines.append(usage + "\n\n")
        lines.append("General options:\n")
        lines.append(_SEPARATOR + "\n")
        lines.append("-help / -h           Displays this help.\n\n")
        if self._args:
            lines.append("Program Options:\n")
            lines.append(_SEPARATOR + "\n")
            table = []
            for arg in self._args:
                if arg.kind is ArgType.BOOL:
                    table.append((arg.name, arg.description))
                    continue
                label = f"{arg.name} {arg.kind.value}"
                default = _value_to_str(arg)
                if default:
                    table.append((label, f"{arg.description} (default: {default})"))
                else:
                    table.append((label, arg.description))
            width = max(len(label) for label, _ in table) + 3
            for label, text in sorted(table, key=lambda row: row[0]):
                lines.append("-" + label.ljust(width) + text + "\n")
        out.write("".join(lines))

    def parsed_param(self, name: str) -> bool:
        """Whether the option was given on the command line."""
        arg = self._find(name)
        return arg.parsed if arg is not None else False