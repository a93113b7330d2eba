"""Storage backends for the companion core."""

from __future__ import annotations

from .in_memory import InMemoryStore
from .sqlite_store import SQLiteStore

__all__ = ["InMemoryStore", "SQLiteStore"]
