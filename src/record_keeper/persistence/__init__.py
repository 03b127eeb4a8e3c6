"""Persistence and data storage module."""

from record_keeper.persistence.base import RecordStore, StoreClosedError
from record_keeper.persistence.jsonl import JsonlExporter, JsonlExporterConfig
from record_keeper.persistence.memory import MemoryRecordStore
from record_keeper.persistence.sqlite import SqliteRecordStore, SqliteRecordStoreConfig

__all__ = [
    "JsonlExporter",
    "JsonlExporterConfig",
    "MemoryRecordStore",
    "RecordStore",
    "SqliteRecordStore",
    "SqliteRecordStoreConfig",
    "StoreClosedError",
]
