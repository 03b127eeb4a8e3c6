"""Base protocols for persistence layer."""

from typing import Any, Protocol, runtime_checkable

from record_keeper.models import EntitySchema, Record


class StoreClosedError(Exception):
    """Raised when a store is used after it has been closed."""

    pass


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for persistent record stores, one entity collection each."""

    @property
    def schema(self) -> EntitySchema:
        """Schema of the stored entity."""
        ...

    async def create(self, record: Record) -> Record:
        """Persist a new record. Returns it with defaults filled in."""
        ...

    async def update(self, key: str, patch: dict[str, Any]) -> None:
        """Apply a partial field patch. Raises RecordNotFoundError for unknown keys."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a record. Raises RecordNotFoundError for unknown keys."""
        ...

    async def find_all(self, filter: dict[str, Any] | None = None) -> list[Record]:
        """Return all records whose fields equal every value in `filter`."""
        ...

    async def find_one(self, key: str) -> Record | None:
        """Return the record with `key`, or None."""
        ...

    async def save(self, record: Record) -> Record:
        """Insert or update a whole record."""
        ...

    async def close(self) -> None:
        """Close the store and release resources."""
        ...
