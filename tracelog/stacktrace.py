"""Capture the current call stack."""

from __future__ import annotations

import inspect
from dataclasses import dataclass

__all__ = ["StackFrame", "get_stack_trace"]

_STACK_LENGTH = 64


@dataclass(frozen=True)
class StackFrame:
    """One frame of a captured stack."""

    filename: str
    lineno: int
    function: str

    def __str__(self) -> str:
        return f"{self.function} ({self.filename}:{self.lineno})"


def get_stack_trace(max_depth: int, skip_count: int = 0) -> list[StackFrame]:
    """Return up to ``max_depth`` frames of the caller's stack, innermost first,
    after skipping ``skip_count`` frames above this function.

    At most the 64 innermost frames are examined."""
    frames: list[StackFrame] = []
    frame = inspect.currentframe()
    try:
        while frame is not None and len(frames) < _STACK_LENGTH:
            code = frame.f_code
            frames.append(StackFrame(code.co_filename, frame.f_lineno, code.co_name))
            frame = frame.f_back
    finally:
        del frame
    skip = skip_count + 1
    count = max(0, min(len(frames) - skip, max_depth))
    return frames[skip : skip + count]