"""Minimal reader for ELF object files: headers, section headers and symbols."""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass, replace
from typing import BinaryIO, Iterator

__all__ = [
    "ELF_MAGIC",
    "ET_CORE",
    "ET_DYN",
    "ET_EXEC",
    "ET_NONE",
    "ET_REL",
    "MAX_SECTION_NAME_LEN",
    "PT_LOAD",
    "SHT_DYNSYM",
    "SHT_STRTAB",
    "SHT_SYMTAB",
    "ElfFile",
    "ElfFormatError",
    "ElfHeader",
    "ElfSymbol",
    "SectionHeader",
    "file_elf_type",
]

_log = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"

ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2

ET_NONE = 0
ET_REL = 1
ET_EXEC = 2
ET_DYN = 3
ET_CORE = 4

SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_DYNSYM = 11

PT_LOAD = 1

# Section names longer than this (including the terminating NUL) are never
# looked up.
MAX_SECTION_NAME_LEN = 64

_MAX_SYMBOL_NAME_LEN = 4096
_IDENT_SIZE = 16
_U64_MASK = (1 << 64) - 1


class ElfFormatError(ValueError):
    """Raised when data is not a well-formed ELF object."""


@dataclass(frozen=True)
class _Layout:
    header: struct.Struct
    section: struct.Struct
    symbol: struct.Struct
    is_64: bool


def _make_layout(is_64: bool, prefix: str) -> _Layout:
    if is_64:
        return _Layout(
            struct.Struct(prefix + "16sHHIQQQIHHHHHH"),
            struct.Struct(prefix + "IIQQQQIIQQ"),
            struct.Struct(prefix + "IBBHQQ"),
            True,
        )
    return _Layout(
        struct.Struct(prefix + "16sHHIIIIIHHHHHH"),
        struct.Struct(prefix + "IIIIIIIIII"),
        struct.Struct(prefix + "IIIBBH"),
        False,
    )


_LAYOUTS = {
    (elf_class, encoding): _make_layout(elf_class == ELFCLASS64, prefix)
    for elf_class in (ELFCLASS32, ELFCLASS64)
    for encoding, prefix in ((ELFDATA2LSB, "<"), (ELFDATA2MSB, ">"))
}

_MAX_HEADER_SIZE = max(layout.header.size for layout in _LAYOUTS.values())


def _layout_for(elf_class: int, encoding: int) -> _Layout:
    try:
        return _LAYOUTS[(elf_class, encoding)]
    except KeyError:
        raise ElfFormatError(
            f"unsupported ELF class {elf_class} or data encoding {encoding}"
        ) from None


@dataclass(frozen=True)
class ElfHeader:
    """The ELF file header."""

    ident: bytes
    e_type: int
    machine: int
    version: int
    entry: int
    phoff: int
    shoff: int
    flags: int
    ehsize: int
    phentsize: int
    phnum: int
    shentsize: int
    shnum: int
    shstrndx: int

    @classmethod
    def from_bytes(cls, data: bytes) -> ElfHeader:
        """Parse an ELF header from the start of ``data``."""
        if len(data) < _IDENT_SIZE or data[:4] != ELF_MAGIC:
            raise ElfFormatError("not an ELF object")
        layout = _layout_for(data[4], data[5])
        if len(data) < layout.header.size:
            raise ElfFormatError("truncated ELF header")
        return cls(*layout.header.unpack_from(data))

    @property
    def elf_class(self) -> int:
        return self.ident[4]

    @property
    def data_encoding(self) -> int:
        return self.ident[5]

    @property
    def is_64(self) -> bool:
        return self.elf_class == ELFCLASS64

    @property
    def _layout(self) -> _Layout:
        return _layout_for(self.elf_class, self.data_encoding)


@dataclass(frozen=True)
class SectionHeader:
    """One entry of the section header table."""

    name_offset: int
    sh_type: int
    flags: int
    addr: int
    offset: int
    size: int
    link: int
    info: int
    addralign: int
    entsize: int

    @classmethod
    def from_bytes(cls, data: bytes, header: ElfHeader) -> SectionHeader:
        """Parse a section header laid out as described by ``header``."""
        layout = header._layout
        if len(data) < layout.section.size:
            raise ElfFormatError("truncated section header")
        return cls(*layout.section.unpack_from(data))


@dataclass(frozen=True)
class ElfSymbol:
    """One entry of a symbol table; ``name`` is None when it is unresolved."""

    name_offset: int
    value: int
    size: int
    info: int
    other: int
    shndx: int
    name: str | None = None

    @classmethod
    def from_bytes(cls, data: bytes, header: ElfHeader) -> ElfSymbol:
        """Parse a symbol table entry laid out as described by ``header``."""
        layout = header._layout
        if len(data) < layout.symbol.size:
            raise ElfFormatError("truncated symbol entry")
        fields = layout.symbol.unpack_from(data)
        if layout.is_64:
            name, info, other, shndx, value, size = fields
        else:
            name, value, size, info, other, shndx = fields
        return cls(name, value, size, info, other, shndx)


class ElfFile:
    """An ELF object file opened for reading."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)
        self._file: BinaryIO = open(self.path, "rb")
        try:
            self.header = ElfHeader.from_bytes(self._read(0, _MAX_HEADER_SIZE))
        except BaseException:
            self._file.close()
            raise

    def close(self) -> None:
        self._file.close()

    @property
    def closed(self) -> bool:
        return self._file.closed

    def __enter__(self) -> ElfFile:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _read(self, offset: int, count: int) -> bytes:
        self._file.seek(offset)
        return self._file.read(count)

    def _read_exact(self, offset: int, count: int) -> bytes:
        data = self._read(offset, count)
        if len(data) != count:
            raise ElfFormatError(f"short read of {count} bytes at offset {offset}")
        return data

    def _section_at(self, offset: int) -> SectionHeader:
        size = self.header._layout.section.size
        return SectionHeader.from_bytes(self._read_exact(offset, size), self.header)

    def _read_string(self, offset: int) -> str | None:
        data = self._read(offset, _MAX_SYMBOL_NAME_LEN)
        end = data.find(b"\0")
        if end < 0:
            return None
        return data[:end].decode("utf-8", "backslashreplace")

    def section_by_type(self, sh_type: int) -> SectionHeader | None:
        """Return the first section header of type ``sh_type``, if any."""
        size = self.header._layout.section.size
        data = self._read(self.header.shoff, self.header.shnum * size)
        if len(data) % size:
            raise ElfFormatError("section header table ends mid-entry")
        for start in range(0, len(data), size):
            section = SectionHeader.from_bytes(data[start : start + size], self.header)
            if section.sh_type == sh_type:
                return section
        return None

    def section_by_name(self, name: str) -> SectionHeader | None:
        """Return the section header called ``name``, if any."""
        wanted = name.encode() + b"\0"
        if len(wanted) > MAX_SECTION_NAME_LEN:
            _log.warning(
                "Section name '%s' is too long (%d); "
                "section will not be found (even if present).",
                name,
                len(wanted),
            )
            return None
        header = self.header
        shstrtab = self._section_at(header.shoff + header.shentsize * header.shstrndx)
        for index in range(header.shnum):
            section = self._section_at(header.shoff + header.shentsize * index)
            found = self._read(shstrtab.offset + section.name_offset, len(wanted))
            if found == wanted:
                return section
        return None

    def _string_table_for(self, section: SectionHeader) -> SectionHeader:
        size = self.header._layout.section.size
        return self._section_at(self.header.shoff + section.link * size)

    def _raw_symbols(self, section: SectionHeader) -> Iterator[ElfSymbol]:
        if section.entsize == 0:
            return
        symbol_size = self.header._layout.symbol.size
        if section.entsize < symbol_size:
            raise ElfFormatError("symbol entry size is too small")
        count = section.size // section.entsize
        data = self._read(section.offset, count * section.entsize)
        if len(data) % section.entsize:
            raise ElfFormatError("symbol table ends mid-entry")
        for start in range(0, len(data), section.entsize):
            yield ElfSymbol.from_bytes(data[start : start + symbol_size], self.header)

    def symbols(self, section: SectionHeader) -> Iterator[ElfSymbol]:
        """Yield the symbols of a symbol table section with their names."""
        strtab = self._string_table_for(section)
        for symbol in self._raw_symbols(section):
            yield replace(
                symbol, name=self._read_string(strtab.offset + symbol.name_offset)
            )

    def _lookup(self, section: SectionHeader, pc: int, symbol_offset: int) -> str | None:
        strtab = self._string_table_for(section)
        for symbol in self._raw_symbols(section):
            start = (symbol.value + symbol_offset) & _U64_MASK
            end = (start + symbol.size) & _U64_MASK
            if symbol.value != 0 and symbol.shndx != 0 and start <= pc < end:
                return self._read_string(strtab.offset + symbol.name_offset)
        return None

    def find_symbol(self, pc: int, symbol_offset: int = 0) -> str | None:
        """Return the name of the symbol containing ``pc``, searching the
        regular symbol table first and then the dynamic one.

        ``symbol_offset`` is added to every symbol address before comparing."""
        for sh_type in (SHT_SYMTAB, SHT_DYNSYM):
            section = self.section_by_type(sh_type)
            if section is None:
                continue
            name = self._lookup(section, pc, symbol_offset)
            if name is not None:
                return name
        return None


def file_elf_type(path: str | os.PathLike[str]) -> int:
    """Return the ``e_type`` of the ELF object at ``path``."""
    with ElfFile(path) as elf:
        return elf.header.e_type