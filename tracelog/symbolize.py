"""Resolve program counters to symbol names using the process memory map
and the ELF symbol tables of the mapped object files."""

from __future__ import annotations

import enum
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from .elf import ET_DYN, ET_EXEC, PT_LOAD, ElfFile, ElfFormatError, ElfHeader
from .maps import MapsFormatError, format_hex, parse_maps_line

__all__ = [
    "ObjectFile",
    "OpenObjectFileCallback",
    "SymbolizeCallback",
    "SymbolizeOptions",
    "Symbolizer",
    "symbolize",
]

_U64_MASK = (1 << 64) - 1
_HEADER_READ_SIZE = 64

_PHDR_64 = "IIQQQQQQ"
_PHDR_32 = "IIIIIIII"


class SymbolizeOptions(enum.Flag):
    """Options controlling symbolization output."""

    NONE = 0
    NO_LINE_NUMBERS = 1


@dataclass(frozen=True)
class ObjectFile:
    """An object file mapped into memory that contains a program counter."""

    path: Optional[str]
    start_address: int = 0
    base_address: int = 0


SymbolizeCallback = Callable[[ElfFile, int, int], Optional[str]]
"""Called with the opened object file, the pc and the relocation; returns
text to put in front of the symbol name, or None."""

OpenObjectFileCallback = Callable[[int], Optional[ObjectFile]]
"""Called with the pc instead of reading the memory map."""


def _program_header_struct(header: ElfHeader) -> struct.Struct:
    prefix = "<" if header.data_encoding == 1 else ">"
    return struct.Struct(prefix + (_PHDR_64 if header.is_64 else _PHDR_32))


def _read_at(stream: BinaryIO, offset: int, count: int) -> bytes:
    stream.seek(offset)
    return stream.read(count) or b""


class Symbolizer:
    """Symbolizes program counters of the process described by a maps
    listing and a memory image."""

    def __init__(
        self,
        maps_path: str | os.PathLike[str] = "/proc/self/maps",
        mem_path: str | os.PathLike[str] = "/proc/self/mem",
    ) -> None:
        self.maps_path = os.fspath(maps_path)
        self.mem_path = os.fspath(mem_path)
        self._symbolize_callback: Optional[SymbolizeCallback] = None
        self._open_object_file_callback: Optional[OpenObjectFileCallback] = None

    def install_symbolize_callback(self, callback: Optional[SymbolizeCallback]) -> None:
        """Install (or with None, remove) a callback run before the symbol
        name is looked up; its text precedes the symbol name."""
        self._symbolize_callback = callback

    def install_open_object_file_callback(
        self, callback: Optional[OpenObjectFileCallback]
    ) -> None:
        """Install (or with None, remove) a callback used instead of
        :meth:`find_object_file`."""
        self._open_object_file_callback = callback

    def _base_address(self, mem: BinaryIO, start: int, current: int) -> int:
        try:
            header = ElfHeader.from_bytes(_read_at(mem, start, _HEADER_READ_SIZE))
        except (ElfFormatError, OSError, OverflowError, ValueError):
            return current
        if header.e_type == ET_EXEC:
            return 0
        if header.e_type != ET_DYN:
            return current
        # Find the segment holding file offset 0, i.e. the ELF header itself.
        phdr = _program_header_struct(header)
        for index in range(header.phnum):
            offset = start + header.phoff + index * phdr.size
            try:
                data = _read_at(mem, offset, phdr.size)
            except (OSError, OverflowError, ValueError):
                continue
            if len(data) != phdr.size:
                continue
            fields = phdr.unpack(data)
            if header.is_64:
                p_type, _flags, p_offset, p_vaddr = fields[:4]
            else:
                p_type, p_offset, p_vaddr = fields[:3]
            if p_type == PT_LOAD and p_offset == 0:
                return (start - p_vaddr) & _U64_MASK
        return start

    def find_object_file(self, pc: int) -> Optional[ObjectFile]:
        """Find the readable, executable mapping containing ``pc``.

        Returns None if the maps or memory cannot be read, a line is
        malformed, or no such mapping exists."""
        pc &= _U64_MASK
        try:
            maps = open(self.maps_path, "rb")
        except OSError:
            return None
        with maps:
            try:
                mem = open(self.mem_path, "rb", buffering=0)
            except OSError:
                return None
            with mem:
                base_address = 0
                for raw in maps:
                    if not raw.endswith(b"\n"):
                        return None
                    line = raw.decode("utf-8", "surrogateescape")
                    try:
                        entry = parse_maps_line(line)
                    except MapsFormatError:
                        return None
                    if entry.is_readable():
                        base_address = self._base_address(
                            mem, entry.start, base_address
                        )
                    if not entry.contains(pc):
                        continue
                    if not (entry.is_readable() and entry.is_executable()):
                        continue
                    if entry.pathname is None:
                        return None
                    return ObjectFile(entry.pathname, entry.start, base_address)
        return None

    def symbolize(
        self, pc: int, options: SymbolizeOptions = SymbolizeOptions.NONE
    ) -> Optional[str]:
        """Return the symbol name containing ``pc``.

        When the object file is known but the symbol is not, returns
        ``"(<path>+0x<offset>)"``. Returns None when nothing is found."""
        pc &= _U64_MASK
        if self._open_object_file_callback is not None:
            obj = self._open_object_file_callback(pc)
        else:
            obj = self.find_object_file(pc)
        if obj is None or not obj.path:
            return None

        fallback = f"({obj.path}+0x{format_hex(pc - obj.base_address)})"
        try:
            elf = ElfFile(obj.path)
        except ElfFormatError:
            return None
        except OSError:
            return fallback

        with elf:
            callback = self._symbolize_callback
            prefix = ""
            if callback is not None:
                relocation = obj.start_address if elf.header.e_type == ET_DYN else 0
                prefix = callback(elf, pc, relocation) or ""
            try:
                name = elf.find_symbol(pc, obj.base_address)
            except ElfFormatError:
                name = None
            if name is None:
                return fallback if callback is None else None
            return prefix + name


_default_symbolizer = Symbolizer()


def symbolize(
    pc: int, options: SymbolizeOptions = SymbolizeOptions.NONE
) -> Optional[str]:
    """Symbolize ``pc`` within the current process."""
    return _default_symbolizer.symbolize(pc, options)