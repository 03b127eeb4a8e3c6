"""Optimistic editing of an ordered record collection backed by a store."""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from record_keeper.editing.debounce import (
    DebouncedMutator,
    ErrorObserver,
    MutatorClosedError,
    MutatorMetrics,
)
from record_keeper.models import Record, RecordNotFoundError
from record_keeper.persistence.base import RecordStore


class ChangeKind(Enum):
    """Kind of change made to an editor's collection."""

    LOADED = "loaded"
    ADDED = "added"
    EDITED = "edited"
    RECONCILED = "reconciled"
    REMOVED = "removed"
    RESTORED = "restored"


@dataclass(frozen=True, slots=True)
class ListChange:
    """Notification sent to subscribers after the collection changed.

    Attributes:
        kind: What happened.
        key: Affected record, None for whole-collection changes.
        field: Edited field for EDITED changes.
    """

    kind: ChangeKind
    key: str | None = None
    field: str | None = None


Listener = Callable[[ListChange], None]


class OptimisticListEditor:
    """
    Ordered in-memory records kept in step with a RecordStore.

    Edits are applied to the owned collection before the call returns and are
    persisted later through a DebouncedMutator, one coalesced update per
    record. Adds and removals are applied locally first and persisted
    immediately; their failures roll the local change back and propagate.

    Records adopted with `persisted=False` (placeholders that exist only in
    memory) are created in the store by their first flushed edit.

    Args:
        store: Collaborator persisting the records.
        window_ms: Debounce window for edits. Defaults to DEBOUNCE_WINDOW_MS or 250.
        on_write_error: Observer for failed debounced writes, called as
            on_write_error(key, patch, exc).
        key_factory: Allocates identities for added records. Defaults to uuid4 hex.
        merge_patches: Field-level merge of edits within a window. Default True.
        name: Identifier used in log records. Defaults to the store's table.

    Example:
        ```python
        editor = OptimisticListEditor(bond_store, window_ms=250)
        await editor.load()
        editor.subscribe(lambda change: redraw())

        log = await editor.add(lambda: {"value": 0, "pokemon": pokemon_key})
        editor.edit(log, "value", 5)  # visible now, written 250ms later
        await editor.remove(log)
        ```
    """

    def __init__(
        self,
        store: RecordStore,
        window_ms: float | None = None,
        on_write_error: ErrorObserver | None = None,
        key_factory: Callable[[], str] | None = None,
        merge_patches: bool = True,
        name: str | None = None,
    ) -> None:
        self._store = store
        self._name = name or store.schema.table
        self._key_factory = key_factory or (lambda: uuid.uuid4().hex)
        self._records: list[Record] = []
        self._listeners: list[Listener] = []
        self._transient: set[str] = set()
        self._creates: dict[str, asyncio.Task[Record]] = {}
        self._edited_during_create: dict[str, set[str]] = {}
        self._mutator = DebouncedMutator(
            self._persist,
            window_ms=window_ms,
            on_error=on_write_error,
            merge_patches=merge_patches,
            name=self._name,
        )
        self._logger = logging.getLogger(f"list_editor.{self._name}")

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def mutator(self) -> DebouncedMutator:
        """The debounced mutator persisting this editor's edits."""
        return self._mutator

    @property
    def records(self) -> tuple[Record, ...]:
        """Snapshot of the collection, in order."""
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._records))

    def __contains__(self, record_or_key: object) -> bool:
        if not isinstance(record_or_key, (Record, str)):
            return False
        return self._find(self._key_of(record_or_key)) is not None

    def is_persisted(self, record_or_key: Record | str) -> bool:
        """Whether the record is known to exist in the store."""
        key = self._key_of(record_or_key)
        self._locate(key)
        return key not in self._transient and key not in self._creates

    def get(self, key: str) -> Record:
        """Return the live record with `key`.

        Raises:
            RecordNotFoundError: If no record has `key`.
        """
        return self._locate(key)[1]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def load(self, filter: dict[str, Any] | None = None) -> list[Record]:
        """Replace the collection with the store's records.

        Pending edits are flushed first so the reload reflects them.
        """
        await self._mutator.flush()
        records = await self._store.find_all(filter)
        self._records = list(records)
        self._transient.clear()
        self._notify(ListChange(ChangeKind.LOADED))
        return list(records)

    def adopt(self, records: Iterable[Record], persisted: bool = True) -> None:
        """Append existing records to the collection without writing them.

        Args:
            records: Records to append.
            persisted: False marks them as placeholders, created in the store
                on their first flushed edit.

        Raises:
            ValueError: If a record's key is already in the collection.
        """
        records = list(records)
        for record in records:
            if self._find(record.key) is not None:
                raise ValueError(f"Record {record.key!r} is already in {self._name}")
        for record in records:
            self._records.append(record)
            if not persisted:
                self._transient.add(record.key)
        self._notify(ListChange(ChangeKind.LOADED))

    def edit(self, record_or_key: Record | str, field: str, value: Any) -> None:
        """Set one field now and persist it after the debounce window.

        Raises:
            RecordNotFoundError: If the record is not in the collection.
            ValueError: If `field` is not a column of the store's schema.
            MutatorClosedError: If the editor has been closed; nothing changes.
        """
        key = self._key_of(record_or_key)
        _, record = self._locate(key)
        self._store.schema.validate_fields({field: value})
        if self._mutator.is_closed:
            raise MutatorClosedError(f"List editor '{self._name}' is closed")

        record.set(field, value)
        if key in self._creates:
            self._edited_during_create.setdefault(key, set()).add(field)
        self._mutator.schedule(key, {field: value})
        self._notify(ListChange(ChangeKind.EDITED, key, field))

    async def add(self, factory: Callable[[], dict[str, Any]]) -> Record | None:
        """Append a new record now and create it in the store.

        The record is in the collection before the first suspension point.
        Once the create resolves, the live record takes the store's defaults
        for every field not edited in the meantime.

        Returns:
            The live record, or None if it was removed before the create resolved.

        Raises:
            Exception: Whatever the store's create raised; the record is
                removed from the collection first.
        """
        fields = dict(factory())
        self._store.schema.validate_fields(fields)
        record = Record(key=self._key_factory(), fields=fields)
        key = record.key

        self._records.append(record)
        self._notify(ListChange(ChangeKind.ADDED, key))

        task = asyncio.ensure_future(self._store.create(record.copy()))
        self._creates[key] = task
        try:
            await asyncio.wait([task])
        finally:
            self._creates.pop(key, None)
            edited = self._edited_during_create.pop(key, set())

        if task.cancelled():
            return None

        exc = task.exception()
        if exc is not None:
            self._discard(key)
            self._logger.warning("Create of %s failed, rolled back: %r", key, exc)
            raise exc

        located = self._find(key)
        if located is None:
            return None

        live = located[1]
        for name, value in task.result().fields.items():
            if name not in edited:
                live.fields[name] = value
        self._notify(ListChange(ChangeKind.RECONCILED, key))
        return live

    async def remove(self, record_or_key: Record | str) -> None:
        """Remove a record now and delete it from the store.

        Cancels the record's pending debounced write. If its create is still
        running it is cancelled; if the create already landed, the delete
        compensates. Placeholders never written are only dropped locally.

        Raises:
            RecordNotFoundError: If the record is not in the collection.
            Exception: Whatever the store's delete raised; the record is put
                back at its former position first and its dropped edit is
                scheduled again.
        """
        key = self._key_of(record_or_key)
        index, record = self._locate(key)

        del self._records[index]
        self._notify(ListChange(ChangeKind.REMOVED, key))
        dropped = self._mutator.pending_patch(key)
        self._mutator.cancel(key)

        create = self._creates.get(key)
        if create is not None:
            if not create.done():
                create.cancel()
            await asyncio.wait([create])
            if create.cancelled():
                # Cancellation can land after the store already committed.
                if await self._store.find_one(key) is None:
                    await self._mutator.wait_idle(key)
                    return
            elif create.exception() is not None:
                await self._mutator.wait_idle(key)
                return

        await self._mutator.wait_idle(key)
        if key in self._transient:
            self._transient.discard(key)
            return

        try:
            await self._store.delete(key)
        except Exception:
            self._records.insert(min(index, len(self._records)), record)
            if dropped and not self._mutator.is_closed:
                self._mutator.schedule(key, dropped)
            self._notify(ListChange(ChangeKind.RESTORED, key))
            raise

    async def flush(self) -> None:
        """Persist all pending edits now."""
        await self._mutator.flush()

    async def close(self) -> None:
        """Flush pending edits and stop accepting new ones."""
        await self._mutator.close()

    def get_metrics(self) -> MutatorMetrics:
        return self._mutator.get_metrics()

    async def _persist(self, key: str, patch: dict[str, Any]) -> None:
        """Debounced write for one record."""
        create = self._creates.get(key)
        if create is not None:
            await asyncio.wait([create])
            if create.cancelled() or create.exception() is not None:
                return

        if key in self._transient:
            located = self._find(key)
            if located is None:
                return
            self._transient.discard(key)
            try:
                await self._store.create(located[1].copy())
            except Exception:
                self._transient.add(key)
                raise
            return

        await self._store.update(key, patch)

    def _discard(self, key: str) -> None:
        located = self._find(key)
        if located is not None:
            del self._records[located[0]]
            self._notify(ListChange(ChangeKind.REMOVED, key))
        self._mutator.cancel(key)

    @staticmethod
    def _key_of(record_or_key: Record | str) -> str:
        return record_or_key.key if isinstance(record_or_key, Record) else record_or_key

    def _find(self, key: str) -> tuple[int, Record] | None:
        for index, record in enumerate(self._records):
            if record.key == key:
                return index, record
        return None

    def _locate(self, key: str) -> tuple[int, Record]:
        located = self._find(key)
        if located is None:
            raise RecordNotFoundError(key, self._name)
        return located

    def _notify(self, change: ListChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                self._logger.exception("Listener failed on %s", change)
