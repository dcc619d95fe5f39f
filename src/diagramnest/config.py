"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from typing import Callable, TypeVar

from dotenv import load_dotenv

load_dotenv()

_T = TypeVar("_T", int, float)


def _number(name: str, default: str, cast: Callable[[str], _T]) -> _T:
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


# Nesting limits (parsed on use so a bad value surfaces as a CLI error)
def max_depth() -> int:
    return _number("DIAGRAMNEST_MAX_DEPTH", "10", int)


def warning_depth() -> int:
    return _number("DIAGRAMNEST_WARNING_DEPTH", "7", int)


# Rendering
MMDC: str = os.getenv("DIAGRAMNEST_MMDC", "mmdc")


def render_timeout() -> float:
    return _number("DIAGRAMNEST_RENDER_TIMEOUT", "30", float)


# Diagnostics
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "WARNING").upper()
DEBUG: bool = os.getenv("DIAGRAMNEST_DEBUG") == "1"
