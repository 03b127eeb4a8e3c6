"""Record Keeper.

Record-keeping for game-like entities (item logs, bond logs, notes) with
optimistic, debounced editing over a local SQLite store.
"""

from record_keeper.editing import (
    ChangeKind,
    DebouncedMutator,
    KeyState,
    ListChange,
    MutatorClosedError,
    OptimisticListEditor,
)
from record_keeper.models import EntitySchema, Record, RecordNotFoundError
from record_keeper.persistence import (
    MemoryRecordStore,
    RecordStore,
    SqliteRecordStore,
    SqliteRecordStoreConfig,
)

__version__ = "0.1.0"

__all__ = [
    "ChangeKind",
    "DebouncedMutator",
    "EntitySchema",
    "KeyState",
    "ListChange",
    "MemoryRecordStore",
    "MutatorClosedError",
    "OptimisticListEditor",
    "Record",
    "RecordNotFoundError",
    "RecordStore",
    "SqliteRecordStore",
    "SqliteRecordStoreConfig",
]
