import struct

import pytest

from tracelog.elf import (
    ET_DYN,
    ET_EXEC,
    SHT_DYNSYM,
    SHT_STRTAB,
    SHT_SYMTAB,
    ElfFile,
    ElfFormatError,
    ElfHeader,
    file_elf_type,
)


def _strtab(names):
    table = bytearray(b"\0")
    offsets = []
    for name in names:
        if isinstance(name, int):
            offsets.append(name)
        elif name == "":
            offsets.append(0)
        else:
            offsets.append(len(table))
            table += name.encode() + b"\0"
    return bytes(table), offsets


def build_elf(symbols=(), dynsyms=None, *, is_64=True, endian="<", e_type=ET_DYN):
    hdr = struct.Struct(endian + ("16sHHIQQQIHHHHHH" if is_64 else "16sHHIIIIIHHHHHH"))
    shdr = struct.Struct(endian + ("IIQQQQIIQQ" if is_64 else "IIIIIIIIII"))
    sym = struct.Struct(endian + ("IBBHQQ" if is_64 else "IIIBBH"))

    def pack_sym(name_off, value, size, shndx):
        if is_64:
            return sym.pack(name_off, 0, 0, shndx, value, size)
        return sym.pack(name_off, value, size, 0, 0, shndx)

    tables = [("symtab", SHT_SYMTAB, symbols)]
    if dynsyms is not None:
        tables.append(("dynsym", SHT_DYNSYM, dynsyms))
    section_names = [".shstrtab"]
    for label, _, _ in tables:
        section_names += ["." + label, "." + label.replace("sym", "str")]
    shstr, shstr_offsets = _strtab(section_names)

    body = bytearray(hdr.size)
    entries = [(0, 0, 0, 0, 0, 0)]

    def add(name_index, sh_type, data, link=0, entsize=0):
        offset = len(body)
        body.extend(data)
        entries.append((shstr_offsets[name_index], sh_type, offset, len(data), link, entsize))

    add(0, SHT_STRTAB, shstr)
    for n, (_, sh_type, syms) in enumerate(tables):
        names, offs = _strtab([s[0] for s in syms])
        symdata = pack_sym(0, 0, 0, 0) + b"".join(
            pack_sym(o, value, size, ndx) for o, (_, value, size, ndx) in zip(offs, syms)
        )
        str_index = len(entries) + 1
        add(1 + 2 * n, sh_type, symdata, link=str_index, entsize=sym.size)
        add(2 + 2 * n, SHT_STRTAB, names)

    shoff = len(body)
    for name, sh_type, offset, size, link, entsize in entries:
        body += shdr.pack(name, sh_type, 0, 0, offset, size, link, 0, 1, entsize)

    ident = b"\x7fELF" + bytes([2 if is_64 else 1, 1 if endian == "<" else 2, 1]) + bytes(9)
    body[: hdr.size] = hdr.pack(
        ident, e_type, 62, 1, 0, 0, shoff, 0, hdr.size, 0, 0, shdr.size, len(entries), 1
    )
    return bytes(body)


SYMBOLS = [("alpha", 0x1000, 0x100, 1), ("beta", 0x2000, 0x40, 1)]


@pytest.fixture
def write_elf(tmp_path):
    def write(data, name="obj.so"):
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return write


def test_header_fields(write_elf):
    path = write_elf(build_elf(SYMBOLS, e_type=ET_EXEC))
    with ElfFile(path) as elf:
        assert elf.header.e_type == ET_EXEC
        assert elf.header.is_64
        assert elf.header.shstrndx == 1
        assert elf.header.ident[:4] == b"\x7fELF"


@pytest.mark.parametrize("e_type", [ET_EXEC, ET_DYN])
def test_file_elf_type(write_elf, e_type):
    assert file_elf_type(write_elf(build_elf(SYMBOLS, e_type=e_type))) == e_type


def test_not_elf_raises(write_elf):
    with pytest.raises(ElfFormatError):
        file_elf_type(write_elf(b"#!/bin/sh\necho hi\n" * 10))


def test_empty_file_raises(write_elf):
    with pytest.raises(ElfFormatError):
        ElfFile(write_elf(b""))


def test_truncated_header_raises():
    data = build_elf(SYMBOLS)
    with pytest.raises(ElfFormatError):
        ElfHeader.from_bytes(data[:40])


def test_bad_class_raises():
    data = bytearray(build_elf(SYMBOLS))
    data[4] = 7
    with pytest.raises(ElfFormatError):
        ElfHeader.from_bytes(bytes(data))


def test_section_by_type_symtab(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        symtab = elf.section_by_type(SHT_SYMTAB)
        assert symtab.sh_type == SHT_SYMTAB
        assert symtab.entsize == 24
        assert symtab.size == symtab.entsize * (len(SYMBOLS) + 1)


def test_section_by_type_32bit_entsize(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS, is_64=False, endian=">"))) as elf:
        assert not elf.header.is_64
        assert elf.section_by_type(SHT_SYMTAB).entsize == 16


def test_section_by_type_missing(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.section_by_type(SHT_DYNSYM) is None


def test_section_by_name_matches_type(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS, dynsyms=[("gamma", 0x3000, 8, 1)]))) as elf:
        assert elf.section_by_name(".symtab") == elf.section_by_type(SHT_SYMTAB)
        assert elf.section_by_name(".dynsym") == elf.section_by_type(SHT_DYNSYM)
        assert elf.section_by_name(".strtab").sh_type == SHT_STRTAB


def test_section_by_name_missing(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.section_by_name(".text") is None
        assert elf.section_by_name(".sym") is None


def test_section_by_name_too_long(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.section_by_name("x" * 64) is None


def test_symbols_listing(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        symbols = list(elf.symbols(elf.section_by_type(SHT_SYMTAB)))
    assert [s.name for s in symbols] == ["", "alpha", "beta"]
    assert [(s.value, s.size, s.shndx) for s in symbols[1:]] == [
        (value, size, ndx) for _, value, size, ndx in SYMBOLS
    ]


def test_find_symbol_inside_range(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.find_symbol(0x1000) == "alpha"
        assert elf.find_symbol(0x1000 + 0x100 - 1) == "alpha"
        assert elf.find_symbol(0x2000 + 1) == "beta"


def test_find_symbol_outside_range(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.find_symbol(0x1000 + 0x100) is None
        assert elf.find_symbol(0x1000 - 1) is None


def test_find_symbol_with_offset(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        assert elf.find_symbol(0x1000, symbol_offset=0x10000) is None
        assert elf.find_symbol(0x11000, symbol_offset=0x10000) == "alpha"


def test_find_symbol_skips_null_and_undefined(write_elf):
    syms = [("zero", 0, 0x100, 1), ("undef", 0x4000, 0x10, 0)]
    with ElfFile(write_elf(build_elf(syms))) as elf:
        assert elf.find_symbol(0x10) is None
        assert elf.find_symbol(0x4000) is None


def test_find_symbol_falls_back_to_dynsym(write_elf):
    data = build_elf(SYMBOLS, dynsyms=[("gamma", 0x3000, 0x20, 1), ("shadow", 0x1000, 0x100, 1)])
    with ElfFile(write_elf(data)) as elf:
        assert elf.find_symbol(0x3010) == "gamma"
        assert elf.find_symbol(0x1010) == "alpha"


def test_find_symbol_unreadable_name(write_elf):
    syms = [(10**7, 0x1000, 0x100, 1)]
    with ElfFile(write_elf(build_elf(syms))) as elf:
        assert elf.find_symbol(0x1000) is None


def test_find_symbol_32bit_big_endian(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS, is_64=False, endian=">"))) as elf:
        assert elf.find_symbol(0x2004) == "beta"
        assert elf.find_symbol(0x2040) is None


def test_closed_file_cannot_be_read(write_elf):
    with ElfFile(write_elf(build_elf(SYMBOLS))) as elf:
        pass
    assert elf.closed
    with pytest.raises(ValueError):
        elf.section_by_type(SHT_SYMTAB)