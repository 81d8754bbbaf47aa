"""Parsing of ``/proc/<pid>/maps`` style memory map listings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator

__all__ = [
    "MapEntry",
    "MapsFormatError",
    "format_hex",
    "iter_maps",
    "parse_hex",
    "parse_maps_line",
]

_U64_MASK = (1 << 64) - 1
_HEX_RE = re.compile(r"[0-9A-Fa-f]*")
_MIN_FLAGS_LEN = 4


class MapsFormatError(ValueError):
    """Raised when a maps line is malformed."""


def parse_hex(text: str) -> tuple[int, str]:
    """Read the leading hex digits of ``text``.

    Returns the value (truncated to 64 bits, 0 if there are no digits) and
    the text that follows the digits."""
    match = _HEX_RE.match(text)
    digits = match.group()
    value = int(digits, 16) & _U64_MASK if digits else 0
    return value, text[match.end() :]


def format_hex(value: int, padding: int = 0) -> str:
    """Format ``value`` as lower-case hex of at least ``padding`` digits.

    The value is taken modulo 2**64; at least one digit is always written."""
    if padding < 0:
        raise ValueError("padding must not be negative")
    return format(value & _U64_MASK, "x").rjust(padding, "0")


@dataclass(frozen=True)
class MapEntry:
    """One mapping of a process's address space."""

    start: int
    end: int
    flags: str
    offset: int
    device: str
    inode: str
    pathname: str | None = None

    def contains(self, pc: int) -> bool:
        """Whether ``pc`` lies inside this mapping."""
        return self.start <= pc < self.end

    def is_readable(self) -> bool:
        return self.flags[0] == "r"

    def is_executable(self) -> bool:
        return self.flags[2] == "x"


def parse_maps_line(line: str) -> MapEntry:
    """Parse one line such as
    ``08048000-0804c000 r-xp 00000000 08:01 2142121    /bin/cat``."""
    text = line[:-1] if line.endswith("\n") else line

    start, rest = parse_hex(text)
    if not rest.startswith("-"):
        raise MapsFormatError(f"expected '-' after start address: {line!r}")
    end, rest = parse_hex(rest[1:])
    if not rest.startswith(" "):
        raise MapsFormatError(f"expected ' ' after end address: {line!r}")

    flags, sep, rest = rest[1:].partition(" ")
    if not sep or len(flags) < _MIN_FLAGS_LEN:
        raise MapsFormatError(f"malformed permission flags: {line!r}")

    offset, rest = parse_hex(rest)
    if not rest.startswith(" "):
        raise MapsFormatError(f"expected ' ' after file offset: {line!r}")
    tail = rest[1:]

    # The path name begins at the first non-space character once at least
    # two spaces (after the device and the inode) have been passed.
    spaces = 0
    pathname: str | None = None
    head = tail
    for pos, ch in enumerate(tail):
        if ch == " ":
            spaces += 1
        elif spaces >= 2:
            pathname = tail[pos:]
            head = tail[:pos]
            break

    fields = head.split()
    device = fields[0] if fields else ""
    inode = fields[1] if len(fields) > 1 else ""
    return MapEntry(start, end, flags, offset, device, inode, pathname)


def iter_maps(lines: Iterable[str | bytes]) -> Iterator[MapEntry]:
    """Yield a :class:`MapEntry` for every line; stop with
    :class:`MapsFormatError` at the first malformed one."""
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", "surrogateescape")
        yield parse_maps_line(line)