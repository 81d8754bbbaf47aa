# tracelog

Building blocks for a logging library, using only the standard library:

- `tracelog.vmodule`: per-module verbosity levels set from a `--vmodule` style spec;
- `tracelog.stacktrace`: capture of the current Python call stack;
- `tracelog.elf`: a small reader for ELF object files (headers, sections, symbols);
- `tracelog.maps`: a parser for `/proc/<pid>/maps` listings;
- `tracelog.symbolize`: turns an address into a symbol name using the memory map and the ELF symbol tables;
- `tracelog.utilities`: process-wide helpers for the program name, the user name, the main pid, the crash reason and stack dumps.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Per-module verbosity

```python
from tracelog.vmodule import VModuleRegistry, SiteFlag, safe_fnmatch, module_base_name

registry = VModuleRegistry("net*=2,disk=1", default_level=0)

site = SiteFlag()
registry.init_site(site, "src/network-inl.h", 2)   # True: "network" matches "net*"

registry.set_vlog_level("disk", 3)                  # returns the previous level, 1

safe_fnmatch("fo?*", "foobar")                       # True
module_base_name("src/network-inl.h")                # "network"
```

- The spec is a comma-separated list of `pattern=level`; entries whose level is
  not an integer are skipped. It is parsed on the first `init_site` call.
- Patterns understand only `*` and `?`.
- A file's module name is its base name up to the first dot, with a trailing
  `-inl` dropped.
- `init_site` returns whether `verbose_level` is enabled for the file. Once the
  spec has been parsed, the site keeps a reference to the level that governs it
  (`site.level`). Sites that fall back to the default level are remembered, and a
  later `set_vlog_level` with a new pattern that matches them redirects them to
  that pattern's level.
- `set_vlog_level` returns the level that was in effect for the pattern: that of
  an equal or matching pattern, or the default level.
- `registry.default_level` can be read and set.

## Stack traces

```python
import sys
from tracelog.stacktrace import get_stack_trace
from tracelog.utilities import dump_stack_trace, get_stack_trace_text

frames = get_stack_trace(10, 0)     # list of StackFrame(filename, lineno, function), innermost first
text = get_stack_trace_text()       # the caller's stack as text
dump_stack_trace(0, sys.stdout.write, True)
```

`get_stack_trace` looks at no more than the 64 innermost frames. `dump_stack_trace`
writes up to 32 frames, one line each, as `    @ file:line  function` (or
`    @ file:line` when `symbolize_frames` is false), to the given writer or to
standard error.

## ELF files

```python
from tracelog.elf import ElfFile, SHT_DYNSYM, file_elf_type, ET_DYN

with ElfFile("/bin/ls") as elf:
    dynsym = elf.section_by_type(SHT_DYNSYM)
    if dynsym is not None:
        for symbol in elf.symbols(dynsym):
            print(symbol.name, hex(symbol.value), symbol.size)
    text = elf.section_by_name(".text")
    name = elf.find_symbol(0x1234, symbol_offset=0)

file_elf_type("/bin/ls") == ET_DYN
```

32- and 64-bit files of either byte order are read. Files that are not ELF, or
are truncated, raise `ElfFormatError` (a `ValueError`). `find_symbol` searches the
regular symbol table first, then the dynamic one, and returns `None` when no
symbol contains the address. Section names longer than 63 characters are never
found.

## Memory maps

```python
from tracelog.maps import parse_maps_line, iter_maps, parse_hex, format_hex

entry = parse_maps_line("08048000-0804c000 r-xp 00000000 08:01 2142121    /bin/cat")
entry.contains(0x08048010), entry.is_readable(), entry.is_executable(), entry.pathname

with open("/proc/self/maps") as maps:
    entries = list(iter_maps(maps))

parse_hex("1aG")        # (26, "G")
format_hex(255, 4)      # "00ff"
```

Malformed lines raise `MapsFormatError` (a `ValueError`).

## Symbolization

```python
from tracelog.symbolize import Symbolizer, SymbolizeOptions, ObjectFile, symbolize

symbolizer = Symbolizer()        # reads /proc/self/maps and /proc/self/mem
name = symbolizer.symbolize(0x401000, SymbolizeOptions.NONE)
obj = symbolizer.find_object_file(0x401000)

symbolize(0x401000)              # the same with a shared default Symbolizer
```

- `symbolize` returns the symbol name, or `None` when the address cannot be
  resolved. When the object file is known but no symbol contains the address (or
  the file cannot be opened), the result is `"(path+0xoffset)"`, the offset being
  relative to the object's base address.
- `install_open_object_file_callback(callback)` replaces the memory map lookup
  with a function taking the address and returning an `ObjectFile` or `None`.
- `install_symbolize_callback(callback)` installs a function called with the
  open `ElfFile`, the address and the relocation; the text it returns is put in
  front of the symbol name. While it is installed, a missing symbol gives `None`
  rather than the `"(path+0xoffset)"` form.
- Pass `None` to either method to remove the callback.
- `SymbolizeOptions` is accepted but does not change the result.

## Process utilities

```python
from tracelog import utilities

utilities.init_logging_utilities("/usr/bin/myprog")
utilities.is_logging_initialized()           # True
utilities.program_invocation_short_name()    # "myprog"
utilities.shutdown_logging_utilities()

utilities.my_user_name()                     # $USER, the password-database name, or "uid<n>"
utilities.main_thread_pid()
utilities.pid_has_changed()                  # True once after a fork, then records the new pid

utilities.set_crash_reason(utilities.CrashReason("main.py", 42, "boom"))
utilities.crash_reason()                     # the first reason recorded; later ones are ignored
utilities.const_basename("a/b/c.txt")        # "c.txt"
```

Calling `init_logging_utilities` twice, or `shutdown_logging_utilities` before
`init_logging_utilities`, raises `LoggingStateError`. Before initialization the
program name comes from `sys.argv[0]`, or is `"UNKNOWN"`.

## What the package does not do

It provides no logger of its own: there are no log sinks, no log files, no
severity levels and no formatting of log records. It installs no signal or crash
handlers, and it offers no command-line tool. Symbol names are returned as they
are stored in the symbol table, without demangling.