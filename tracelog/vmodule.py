"""Per-module verbose logging levels driven by a ``--vmodule`` style spec."""

from __future__ import annotations

import logging
import ntpath
import os
import re
import threading
from dataclasses import dataclass, field

__all__ = ["SiteFlag", "VModuleRegistry", "module_base_name", "safe_fnmatch"]

_log = logging.getLogger(__name__)

_LEVEL_RE = re.compile(r"=\s*([+-]?\d+)")


def safe_fnmatch(pattern: str, string: str) -> bool:
    """Match ``string`` against ``pattern`` supporting only ``*`` and ``?``."""
    p = 0
    s = 0
    while True:
        if p == len(pattern) and s == len(string):
            return True
        if p == len(pattern):
            return False
        if s == len(string):
            return p + 1 == len(pattern) and pattern[p] == "*"
        if pattern[p] == string[s] or pattern[p] == "?":
            p += 1
            s += 1
            continue
        if pattern[p] == "*":
            if p + 1 == len(pattern):
                return True
            rest = pattern[p + 1 :]
            return any(
                safe_fnmatch(rest, string[start:])
                for start in range(s, len(string))
            )
        return False


def module_base_name(filename: str) -> str:
    """Return the module name of a source path: base name up to the first
    dot, with a trailing ``-inl`` removed."""
    base = filename.rsplit("/", 1)[-1]
    if os.name == "nt" and "/" not in filename:
        base = ntpath.basename(filename)
    base = base.split(".", 1)[0]
    if len(base) >= 4 and base.endswith("-inl"):
        base = base[:-4]
    return base


class _Level:
    """A shared, mutable verbosity level that sites may refer to."""

    __slots__ = ("value",)

    def __init__(self, value: int) -> None:
        self.value = value


@dataclass(eq=False)
class _ModuleEntry:
    pattern: str
    level: _Level


@dataclass(eq=False)
class SiteFlag:
    """State cached at one verbose-logging call site."""

    source: _Level | None = field(default=None, repr=False)
    base_name: str | None = None

    @property
    def level(self) -> int | None:
        """The level currently governing this site, or None if not cached."""
        return None if self.source is None else self.source.value


class VModuleRegistry:
    """Registry of module patterns and their verbose logging levels."""

    def __init__(self, vmodule: str = "", default_level: int = 0) -> None:
        self._vmodule = vmodule
        self._default = _Level(default_level)
        self._entries: list[_ModuleEntry] = []
        self._cached_sites: list[SiteFlag] = []
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def default_level(self) -> int:
        return self._default.value

    @default_level.setter
    def default_level(self, value: int) -> None:
        self._default.value = value

    def _initialize(self) -> None:
        self._initialized = False
        parsed: list[_ModuleEntry] = []
        rest = self._vmodule
        while "=" in rest:
            sep = rest.index("=")
            pattern = rest[:sep]
            match = _LEVEL_RE.match(rest, sep)
            if match:
                parsed.append(_ModuleEntry(pattern, _Level(int(match.group(1)))))
            comma = rest.find(",", sep)
            if comma == -1:
                break
            rest = rest[comma + 1 :]
        self._entries[:0] = parsed
        self._initialized = True

    def set_vlog_level(self, module_pattern: str, log_level: int) -> int:
        """Set the level for ``module_pattern``; return the level previously in
        effect for it."""
        with self._lock:
            result = self._default.value
            found = False
            for entry in self._entries:
                if entry.pattern == module_pattern:
                    if not found:
                        result = entry.level.value
                        found = True
                    entry.level.value = log_level
                elif not found and safe_fnmatch(entry.pattern, module_pattern):
                    result = entry.level.value
                    found = True
            if not found:
                entry = _ModuleEntry(module_pattern, _Level(log_level))
                self._entries.insert(0, entry)
                remaining = []
                for site in self._cached_sites:
                    if safe_fnmatch(module_pattern, site.base_name or ""):
                        site.source = entry.level
                    else:
                        remaining.append(site)
                self._cached_sites = remaining
        _log.debug('Set VLOG level for "%s" to %d', module_pattern, log_level)
        return result

    def init_site(self, site: SiteFlag, filename: str, verbose_level: int) -> bool:
        """Resolve the level for a call site in ``filename`` and report whether
        ``verbose_level`` is enabled there."""
        with self._lock:
            already_parsed = self._initialized
            if not already_parsed:
                self._initialize()
            source = self._default
            base = module_base_name(filename)
            for entry in self._entries:
                if safe_fnmatch(entry.pattern, base):
                    source = entry.level
                    break
            if already_parsed:
                site.source = source
                if source is self._default and site.base_name is None:
                    site.base_name = base
                    self._cached_sites.insert(0, site)
            return source.value >= verbose_level