"""Command-line option parsing with typed, defaulted parameters."""

from __future__ import annotations

import enum
import re
import struct
import sys
from dataclasses import dataclass
from typing import Any, Iterable, Sequence, TextIO

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

# Prefix accepted by stream extraction of integers and floating point values.
_STREAM_INT = re.compile(r"\s*([+-]?\d+)")
_STREAM_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
# Prefixes accepted by the C library conversions used for vector values.
_STRTOL = re.compile(r"\s*([+-]?\d+)")
_STRTOD = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)


class ArgumentType(enum.Enum):
    """The value type of a command-line argument."""

    DOUBLE = "<double>"
    FLOAT = "<float>"
    INT = "<int>"
    STRING = "<string>"
    BOOL = "<bool>"
    VECTOR_INT = "<vector_int>"
    VECTOR_DOUBLE = "<vector_double>"

    @property
    def label(self) -> str:
        return self.value


class CommandArgumentError(Exception):
    """Raised when the command line cannot be parsed."""


def _first_token(text: str) -> str:
    tokens = text.split()
    if not tokens:
        raise ValueError("no value given")
    return tokens[0]


def _scan_vector(text: str, pattern: re.Pattern[str], convert) -> list:
    token = _first_token(text)
    values = []
    pos = 0
    while pos < len(token):
        match = pattern.match(token, pos)
        if match is None:
            break
        values.append(convert(match.group(1)))
        # One separator character is skipped after every value.
        pos = match.end() + 1
    return values


def parse_int_vector(text: str) -> list[int]:
    """Parse the first word of ``text`` as integers separated by single characters."""
    return _scan_vector(text, _STRTOL, int)


def parse_double_vector(text: str) -> list[float]:
    """Parse the first word of ``text`` as numbers separated by single characters."""
    return _scan_vector(text, _STRTOD, float)


def _format_number(value: float) -> str:
    return f"{value:g}"


def format_int_vector(values: Iterable[int]) -> str:
    """Join integers with commas."""
    return ",".join(str(v) for v in values)


def format_double_vector(values: Iterable[float]) -> str:
    """Join numbers with semicolons."""
    return ";".join(_format_number(v) for v in values)


def _to_float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def _stream_int(text: str) -> int:
    match = _STREAM_INT.match(text)
    if match is None:
        raise ValueError(f"not an integer: {text!r}")
    value = int(match.group(1))
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def _stream_float(text: str) -> float:
    match = _STREAM_FLOAT.match(text)
    if match is None:
        raise ValueError(f"not a number: {text!r}")
    return float(match.group(1))


def _stream_bool(text: str) -> bool:
    match = _STREAM_INT.match(text)
    if match is None or int(match.group(1)) not in (0, 1):
        raise ValueError(f"not a boolean: {text!r}")
    return bool(int(match.group(1)))


def _convert(kind: ArgumentType, text: str) -> Any:
    if kind is ArgumentType.STRING:
        return text
    if kind is ArgumentType.INT:
        return _stream_int(text)
    if kind is ArgumentType.FLOAT:
        return _to_float32(_stream_float(text))
    if kind is ArgumentType.DOUBLE:
        return _stream_float(text)
    if kind is ArgumentType.BOOL:
        return _stream_bool(text)
    if kind is ArgumentType.VECTOR_INT:
        return parse_int_vector(text)
    return parse_double_vector(text)


def _format_value(kind: ArgumentType, value: Any) -> str:
    if kind is ArgumentType.STRING:
        return value
    if kind is ArgumentType.BOOL:
        return "1" if value else "0"
    if kind is ArgumentType.INT:
        return str(value)
    if kind in (ArgumentType.FLOAT, ArgumentType.DOUBLE):
        return _format_number(value)
    if kind is ArgumentType.VECTOR_INT:
        return format_int_vector(value)
    return format_double_vector(value)


def _infer_kind(default: Any) -> ArgumentType:
    if isinstance(default, bool):
        return ArgumentType.BOOL
    if isinstance(default, int):
        return ArgumentType.INT
    if isinstance(default, float):
        return ArgumentType.DOUBLE
    if isinstance(default, str):
        return ArgumentType.STRING
    if isinstance(default, (list, tuple)) and default:
        if all(isinstance(v, int) and not isinstance(v, bool) for v in default):
            return ArgumentType.VECTOR_INT
        if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in default):
            return ArgumentType.VECTOR_DOUBLE
    raise ValueError(f"cannot infer the argument type of {default!r}; pass kind")


def _normalise_default(kind: ArgumentType, default: Any) -> Any:
    if kind is ArgumentType.BOOL:
        return bool(default)
    if kind is ArgumentType.INT:
        return int(default)
    if kind is ArgumentType.FLOAT:
        return _to_float32(float(default))
    if kind is ArgumentType.DOUBLE:
        return float(default)
    if kind is ArgumentType.STRING:
        return str(default)
    if kind is ArgumentType.VECTOR_INT:
        return [int(v) for v in default]
    return [float(v) for v in default]


@dataclass
class _Argument:
    name: str
    description: str
    kind: ArgumentType
    value: Any
    parsed: bool = False
    optional: bool = False


class CommandArgs:
    """Parses options of the form ``-name value`` and trailing plain arguments.

    Boolean options take no value: giving one toggles its default.
    """

    def __init__(self) -> None:
        self.banner = ""
        self.prog_name = ""
        self._args: list[_Argument] = []
        self._left_overs: list[_Argument] = []
        self._left_overs_optional: list[_Argument] = []

    def param(
        self,
        name: str,
        default: Any,
        description: str = "",
        kind: ArgumentType | None = None,
    ) -> None:
        """Declare an option; its type follows ``default`` unless ``kind`` is given."""
        kind = kind if kind is not None else _infer_kind(default)
        self._args.append(
            _Argument(name, description, kind, _normalise_default(kind, default))
        )

    def param_left_over(
        self,
        name: str,
        default: str = "",
        description: str = "",
        optional: bool = False,
    ) -> None:
        """Declare a plain string argument that follows the options."""
        arg = _Argument(name, description, ArgumentType.STRING, str(default), optional=optional)
        (self._left_overs_optional if optional else self._left_overs).append(arg)

    def _find(self, name: str) -> _Argument | None:
        return next((a for a in self._args if a.name == name), None)

    def _fail(self, message: str, exit_on_error: bool, show_help: bool) -> None:
        if exit_on_error:
            print(message, file=sys.stderr)
            if show_help:
                self.print_help(sys.stderr)
            raise SystemExit(1)
        raise CommandArgumentError(message)

    def parse_args(self, argv: Sequence[str] | None = None, exit_on_error: bool = True) -> None:
        """Parse ``argv`` (program name first) into the declared parameters.

        Errors raise ``SystemExit(1)`` when ``exit_on_error`` is set and
        ``CommandArgumentError`` otherwise. ``-help`` prints help and exits.
        """
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
                    f"Error: Unknown Option '{name}' (use -help to get list of options).",
                    exit_on_error,
                    show_help=False,
                )
            elif arg.kind is ArgumentType.BOOL:
                if not arg.parsed:
                    arg.value = not arg.value
                arg.parsed = True
            else:
                if i >= len(argv) - 1:
                    self._fail(f"Argument {name}needs value.", exit_on_error, show_help=True)
                i += 1
                try:
                    arg.value = _convert(arg.kind, argv[i])
                except ValueError:
                    pass
                arg.parsed = True
            i += 1

        remaining = argv[i:]
        if len(self._left_overs) > len(remaining):
            self._fail("Error: program requires parameters", exit_on_error, show_help=True)
        for arg, value in zip(self._left_overs + self._left_overs_optional, remaining):
            arg.value = value

    def __getitem__(self, name: str) -> Any:
        for arg in (*self._args, *self._left_overs, *self._left_overs_optional):
            if arg.name == name:
                return arg.value
        raise KeyError(name)

    def parsed_param(self, name: str) -> bool:
        """Return whether option ``name`` was given on the command line."""
        arg = self._find(name)
        return arg.parsed if arg is not None else False

    def help_text(self) -> str:
        """Return the help message."""
        lines: list[str] = []
        if self.banner:
            lines.append(self.banner)
        usage = "Usage: " + self.prog_name + (" [options] " if self._args else " ")
        usage += " ".join(a.name for a in self._left_overs)
        if self._left_overs_optional:
            if self._left_overs:
                usage += " "
            usage += " ".join(f"[{a.name}]" for a in self._left_overs_optional)
        lines += [usage, ""]
        lines += [
            "General options:",
            "-------------------------------------------",
            "-help / -h           Displays this help.",
            "",
        ]
        if self._args:
            lines += ["Program Options:", "-------------------------------------------"]
            table: list[tuple[str, str]] = []
            for arg in self._args:
                if arg.kind is ArgumentType.BOOL:
                    table.append((arg.name, arg.description))
                    continue
                default = _format_value(arg.kind, arg.value)
                key = f"{arg.name} {arg.kind.label}"
                if default:
                    table.append((key, f"{arg.description} (default: {default})"))
                else:
                    table.append((key, arg.description))
            width = max(len(key) for key, _ in table) + 3
            for key, text in sorted(table, key=lambda row: row[0]):
                lines.append("-" + key.ljust(width) + text)
        return "\n".join(lines) + "\n"

    def print_help(self, stream: TextIO | None = None) -> None:
        """Write the help message to ``stream`` (standard output by default)."""
        (stream if stream is not None else sys.stdout).write(self.help_text())