"""Persistence for grouping state."""

from __future__ import annotations

from .base import GroupingStore
from .memory import InMemoryGroupingStore
from .pocketbase_store import PocketBaseGroupingStore

__all__ = ["GroupingStore", "InMemoryGroupingStore", "PocketBaseGroupingStore"]
