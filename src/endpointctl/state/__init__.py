"""Persistent state helpers."""
from __future__ import annotations

from .registry import (
    COOLDOWN_FILE,
    HISTORY_FILE,
    ROLLBACK_FILE,
    StateRegistry,
    StateRegistryError,
)

__all__ = [
    "COOLDOWN_FILE",
    "HISTORY_FILE",
    "ROLLBACK_FILE",
    "StateRegistry",
    "StateRegistryError",
]
