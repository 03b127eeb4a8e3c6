"""In-memory record store."""

import asyncio
from typing import Any, Self

from record_keeper.models import EntitySchema, Record, RecordNotFoundError
from record_keeper.persistence.base import RecordStore, StoreClosedError


class MemoryRecordStore(RecordStore):
    """Record store that keeps records in a dict.

    Applies the same schema defaults, validation and ordering as the SQLite
    store, which makes it a drop-in collaborator for editors in tests.

    Args:
        schema: Entity schema of the stored records.
        latency: Seconds each operation sleeps before running. Default 0.

    Example:
        ```python
        store = MemoryRecordStore(BOND_LOG)
        created = await store.create(Record(key="abc", fields={"value": 3}))
        ```
    """

    def __init__(self, schema: EntitySchema, latency: float = 0.0) -> None:
        self._schema = schema
        self._latency = latency
        self._rows: dict[str, dict[str, Any]] = {}
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    async def _tick(self) -> None:
        if self._closed:
            raise StoreClosedError(f"Store for {self._schema.table} is closed")
        await asyncio.sleep(self._latency)

    async def create(self, record: Record) -> Record:
        await self._tick()
        self._schema.validate_fields(record.fields)
        if record.key in self._rows:
            raise ValueError(f"Duplicate key {record.key!r} in {self._schema.table}")
        self._rows[record.key] = self._schema.with_defaults(record.fields)
        return Record(key=record.key, fields=dict(self._rows[record.key]))

    async def update(self, key: str, patch: dict[str, Any]) -> None:
        await self._tick()
        self._schema.validate_fields(patch)
        if key not in self._rows:
            raise RecordNotFoundError(key, self._schema.table)
        self._rows[key].update(patch)

    async def delete(self, key: str) -> None:
        await self._tick()
        if self._rows.pop(key, None) is None:
            raise RecordNotFoundError(key, self._schema.table)

    async def find_all(self, filter: dict[str, Any] | None = None) -> list[Record]:
        await self._tick()
        records = [
            Record(key=key, fields=dict(row))
            for key, row in self._rows.items()
            if all(row.get(name) == value for name, value in (filter or {}).items())
        ]
        order_by = self._schema.order_by
        if order_by is not None:
            records.sort(key=lambda record: record.fields[order_by])
        return records

    async def find_one(self, key: str) -> Record | None:
        await self._tick()
        row = self._rows.get(key)
        return Record(key=key, fields=dict(row)) if row is not None else None

    async def save(self, record: Record) -> Record:
        await self._tick()
        self._schema.validate_fields(record.fields)
        row = self._rows.get(record.key)
        if row is None:
            row = self._rows[record.key] = self._schema.with_defaults(record.fields)
        else:
            row.update(record.fields)
        return Record(key=record.key, fields=dict(row))

    async def close(self) -> None:
        self._closed = True
