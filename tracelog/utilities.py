"""Process-wide helpers: program name, user name, pid tracking, crash reason
and stack dumps."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from .stacktrace import StackFrame, get_stack_trace

__all__ = [
    "CrashReason",
    "LoggingStateError",
    "const_basename",
    "crash_reason",
    "dump_stack_trace",
    "get_stack_trace_text",
    "init_logging_utilities",
    "is_logging_initialized",
    "main_thread_pid",
    "my_user_name",
    "pid_has_changed",
    "program_invocation_short_name",
    "set_crash_reason",
    "shutdown_logging_utilities",
]

_MAX_DUMP_DEPTH = 32
_FRAME_PREFIX = "    "

Writer = Callable[[str], None]


class LoggingStateError(RuntimeError):
    """Raised when logging is initialized or shut down out of order."""


@dataclass
class CrashReason:
    """Where and why the program crashed, with the stack at that moment."""

    filename: Optional[str] = None
    line_number: int = 0
    message: Optional[str] = None
    stack: list[StackFrame] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.stack)


_state_lock = threading.Lock()
_program_short_name: Optional[str] = None
_main_pid = os.getpid()
_crash_reason: Optional[CrashReason] = None


def const_basename(filepath: str) -> str:
    """Return the part of ``filepath`` after the last path separator."""
    slash = filepath.rfind("/")
    if slash < 0 and os.name == "nt":
        slash = filepath.rfind("\\")
    return filepath[slash + 1 :] if slash >= 0 else filepath


def is_logging_initialized() -> bool:
    """Whether :func:`init_logging_utilities` has been called and not undone."""
    return _program_short_name is not None


def program_invocation_short_name() -> str:
    """The short name of the running program."""
    if _program_short_name is not None:
        return _program_short_name
    argv = getattr(sys, "argv", None)
    if argv and argv[0]:
        return const_basename(argv[0])
    return "UNKNOWN"


def main_thread_pid() -> int:
    """The process id recorded at start-up or at the last pid change."""
    return _main_pid


def pid_has_changed() -> bool:
    """Report whether the process id differs from the recorded one, and
    record the current one if so."""
    global _main_pid
    pid = os.getpid()
    with _state_lock:
        if pid == _main_pid:
            return False
        _main_pid = pid
        return True


def _resolve_user_name(environ: Mapping[str, str]) -> str:
    variable = "USERNAME" if os.name == "nt" else "USER"
    user = environ.get(variable)
    if user is not None:
        return user
    name = ""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is not None:
        uid = geteuid()
        try:
            import pwd

            name = pwd.getpwuid(uid).pw_name
        except (ImportError, KeyError):
            name = f"uid{uid}"
    return name or "invalid-user"


_user_name = _resolve_user_name(os.environ)


def my_user_name() -> str:
    """The name of the user running the program."""
    return _user_name


def set_crash_reason(reason: CrashReason) -> None:
    """Record ``reason`` unless a crash reason was already recorded."""
    global _crash_reason
    with _state_lock:
        if _crash_reason is None:
            _crash_reason = reason


def crash_reason() -> Optional[CrashReason]:
    """The first recorded crash reason, if any."""
    return _crash_reason


def init_logging_utilities(argv0: str) -> None:
    """Record the program name taken from ``argv0``."""
    global _program_short_name
    with _state_lock:
        if _program_short_name is not None:
            raise LoggingStateError("init_logging_utilities() was called twice")
        _program_short_name = const_basename(argv0)


def shutdown_logging_utilities() -> None:
    """Forget the program name and close the syslog connection."""
    global _program_short_name
    with _state_lock:
        if _program_short_name is None:
            raise LoggingStateError(
                "shutdown_logging_utilities() called without calling "
                "init_logging_utilities() first"
            )
        _program_short_name = None
    try:
        import syslog
    except ImportError:
        return
    syslog.closelog()


def _write_to_stderr(data: str) -> None:
    try:
        sys.stderr.write(data)
        sys.stderr.flush()
    except (OSError, ValueError):
        pass


def _format_frame(frame: StackFrame, symbolize_frames: bool) -> str:
    location = f"{frame.filename}:{frame.lineno}"
    if symbolize_frames:
        return f"{_FRAME_PREFIX}@ {location}  {frame.function}\n"
    return f"{_FRAME_PREFIX}@ {location}\n"


def dump_stack_trace(
    skip_count: int = 0,
    writer: Optional[Writer] = None,
    symbolize_frames: bool = True,
) -> None:
    """Write the caller's stack, one line per frame, to ``writer``
    (standard error by default), after skipping ``skip_count`` frames."""
    write = writer if writer is not None else _write_to_stderr
    for frame in get_stack_trace(_MAX_DUMP_DEPTH, skip_count + 1):
        write(_format_frame(frame, symbolize_frames))


def get_stack_trace_text() -> str:
    """Return the caller's stack as text."""
    parts: list[str] = []
    dump_stack_trace(1, parts.append)
    return "".join(parts)