"""SQLite record store using aiosqlite."""

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Self

import aiosqlite

from record_keeper.models import ColumnType, EntitySchema, Record, RecordNotFoundError
from record_keeper.persistence.base import RecordStore, StoreClosedError


@dataclass
class SqliteRecordStoreConfig:
    """Configuration for SqliteRecordStore.

    Attributes:
        db_path: Path to the SQLite database file.
        schema: Entity schema; its table is created on open.
    """

    db_path: Path
    schema: EntitySchema

    @classmethod
    def from_env(cls, schema: EntitySchema) -> "SqliteRecordStoreConfig":
        """Build a config whose path comes from RECORD_KEEPER_DB_PATH."""
        return cls(
            db_path=Path(os.getenv("RECORD_KEEPER_DB_PATH", "record_keeper.db")),
            schema=schema,
        )


class SqliteRecordStore(RecordStore):
    """SQLite-backed record store for one entity table.

    Datetime columns are stored as integer UTC epoch seconds and read back as
    aware UTC datetimes. Every mutation runs in its own transaction.

    Example:
        ```python
        config = SqliteRecordStoreConfig(Path("records.db"), BOND_LOG)
        async with SqliteRecordStore(config) as store:
            await store.create(Record(key=uuid4().hex, fields={"value": 2}))
            logs = await store.find_all({"pokemon": pokemon_key})
        ```
    """

    def __init__(self, config: SqliteRecordStoreConfig) -> None:
        """Initialize the SQLite store.

        Args:
            config: Store configuration.
        """
        self._config = config
        self._schema = config.schema
        self._db: aiosqlite.Connection | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        """Enter async context manager and open the database.

        Returns:
            Self for context manager protocol.
        """
        await self._open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager and close the database."""
        await self.close()

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    async def _open(self) -> None:
        """Open the SQLite database connection."""
        self._db = await aiosqlite.connect(
            self._config.db_path,
            isolation_level=None,
        )
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA synchronous = NORMAL")
        await self._ensure_schema()

    async def _connection(self) -> aiosqlite.Connection:
        """Return the open connection, opening it on first use.

        Must be called with `self._lock` held.
        """
        if self._closed:
            raise StoreClosedError(f"Store for {self._schema.table} is closed")
        if self._db is None:
            await self._open()
        assert self._db is not None
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock and run the body in one transaction.

        Any exit without COMMIT rolls back, including cancellation.
        """
        async with self._lock:
            db = await self._connection()
            committed = False
            try:
                await db.execute("BEGIN TRANSACTION")
                yield db
                await db.execute("COMMIT")
                committed = True
            finally:
                if not committed:
                    await self._rollback(db)

    @staticmethod
    async def _rollback(db: aiosqlite.Connection) -> None:
        try:
            await db.execute("ROLLBACK")
        except aiosqlite.OperationalError:
            # A cancelled COMMIT still runs on the connection thread.
            if db.in_transaction:
                raise

    async def _ensure_schema(self) -> None:
        """Create the entity table if it doesn't exist."""
        if self._db is None:
            raise RuntimeError("Database connection not open")

        schema = self._schema
        column_defs = [f'"{schema.key_column}" TEXT PRIMARY KEY']
        for column in schema.columns:
            null_clause = "" if column.nullable else " NOT NULL"
            column_defs.append(f'"{column.name}" {column.type.sql_type}{null_clause}')
        await self._db.execute(
            f'CREATE TABLE IF NOT EXISTS "{schema.table}" ({", ".join(column_defs)})'
        )
        if schema.order_by is not None:
            await self._db.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{schema.table}_{schema.order_by}" '
                f'ON "{schema.table}"("{schema.order_by}")'
            )

    def _encode(self, fields: dict[str, Any]) -> dict[str, Any]:
        encoded = {}
        for name, value in fields.items():
            if self._schema.column(name).type is ColumnType.DATETIME and value is not None:
                value = int(value.timestamp())
            encoded[name] = value
        return encoded

    def _decode(self, row: aiosqlite.Row) -> Record:
        fields = {}
        for column in self._schema.columns:
            value = row[column.name]
            if column.type is ColumnType.DATETIME and value is not None:
                value = datetime.fromtimestamp(value, UTC)
            fields[column.name] = value
        return Record(key=row[self._schema.key_column], fields=fields)

    async def _insert(self, db: aiosqlite.Connection, record: Record) -> Record:
        fields = self._schema.with_defaults(record.fields)
        row = {self._schema.key_column: record.key, **self._encode(fields)}
        column_names = ", ".join(f'"{name}"' for name in row)
        placeholders = ", ".join(f":{name}" for name in row)
        await db.execute(
            f'INSERT INTO "{self._schema.table}" ({column_names}) VALUES ({placeholders})',
            row,
        )
        return Record(key=record.key, fields=fields)

    async def _update(self, db: aiosqlite.Connection, key: str, patch: dict[str, Any]) -> int:
        if not patch:
            cursor = await db.execute(
                f'SELECT 1 FROM "{self._schema.table}" WHERE "{self._schema.key_column}" = ?',
                (key,),
            )
            return 1 if await cursor.fetchone() is not None else 0

        assignments = ", ".join(f'"{name}" = :{name}' for name in patch)
        params = {**self._encode(patch), "__key": key}
        cursor = await db.execute(
            f'UPDATE "{self._schema.table}" SET {assignments} '
            f'WHERE "{self._schema.key_column}" = :__key',
            params,
        )
        return cursor.rowcount

    async def create(self, record: Record) -> Record:
        """Insert a new record and return it with defaults filled in."""
        self._schema.validate_fields(record.fields)
        async with self._transaction() as db:
            return await self._insert(db, record)

    async def update(self, key: str, patch: dict[str, Any]) -> None:
        """Apply a partial patch to an existing record.

        Raises:
            RecordNotFoundError: If no record has `key`.
        """
        self._schema.validate_fields(patch)
        async with self._transaction() as db:
            updated = await self._update(db, key, patch)
        if updated == 0:
            raise RecordNotFoundError(key, self._schema.table)

    async def delete(self, key: str) -> None:
        """Delete a record.

        Raises:
            RecordNotFoundError: If no record has `key`.
        """
        async with self._lock:
            db = await self._connection()
            cursor = await db.execute(
                f'DELETE FROM "{self._schema.table}" WHERE "{self._schema.key_column}" = ?',
                (key,),
            )
            deleted = cursor.rowcount
        if deleted == 0:
            raise RecordNotFoundError(key, self._schema.table)

    async def find_all(self, filter: dict[str, Any] | None = None) -> list[Record]:
        """Return records matching an equality filter, ordered by the schema."""
        filter = filter or {}
        self._schema.validate_fields(filter)

        query = f'SELECT * FROM "{self._schema.table}"'
        conditions = []
        for name, value in filter.items():
            conditions.append(f'"{name}" IS :{name}' if value is None else f'"{name}" = :{name}')
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        if self._schema.order_by is not None:
            query += f' ORDER BY "{self._schema.order_by}" ASC'

        async with self._lock:
            db = await self._connection()
            cursor = await db.execute(query, self._encode(filter))
            rows = await cursor.fetchall()
        return [self._decode(row) for row in rows]

    async def find_one(self, key: str) -> Record | None:
        async with self._lock:
            db = await self._connection()
            cursor = await db.execute(
                f'SELECT * FROM "{self._schema.table}" WHERE "{self._schema.key_column}" = ?',
                (key,),
            )
            row = await cursor.fetchone()
        return self._decode(row) if row is not None else None

    async def save(self, record: Record) -> Record:
        """Insert the record, or update its fields if the key already exists."""
        self._schema.validate_fields(record.fields)
        async with self._transaction() as db:
            if await self._update(db, record.key, record.fields) == 0:
                await self._insert(db, record)
            cursor = await db.execute(
                f'SELECT * FROM "{self._schema.table}" WHERE "{self._schema.key_column}" = ?',
                (record.key,),
            )
            row = await cursor.fetchone()
        return self._decode(row)

    async def close(self) -> None:
        """Close the store and release the connection."""
        if self._closed:
            return

        self._closed = True

        async with self._lock:
            if self._db:
                await self._db.close()
                self._db = None
