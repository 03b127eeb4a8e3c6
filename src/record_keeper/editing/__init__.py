"""Optimistic editing module."""

from record_keeper.editing.debounce import (
    DebouncedMutator,
    KeyState,
    MutatorClosedError,
    MutatorMetrics,
    PendingWrite,
)
from record_keeper.editing.list_editor import ChangeKind, ListChange, OptimisticListEditor

__all__ = [
    # Debounce
    "DebouncedMutator",
    "KeyState",
    "MutatorClosedError",
    "MutatorMetrics",
    "PendingWrite",
    # List editor
    "ChangeKind",
    "ListChange",
    "OptimisticListEditor",
]
