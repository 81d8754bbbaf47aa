"""Per-module verbosity, stack traces, memory map parsing and ELF symbolization for logging."""

__version__ = "0.8.0"

__all__ = ["elf", "maps", "stacktrace", "symbolize", "utilities", "vmodule"]