"""Per-key debounced writes for coalescing rapid field edits."""

import asyncio
import functools
import json
import logging
import os
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

WriteFunc = Callable[[Any, dict[str, Any]], Awaitable[Any]]
ErrorObserver = Callable[[Any, dict[str, Any], Exception], None]


class KeyState(Enum):
    """Debounce state of a single key."""

    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"


class MutatorClosedError(Exception):
    """Raised when a write is scheduled on a closed mutator."""

    pass


@dataclass
class PendingWrite:
    """A patch waiting for its debounce window to elapse.

    Attributes:
        key: Record identity the patch applies to.
        patch: Fields to write, merged across coalesced calls.
        calls: Number of schedule() calls folded into this write.
        handle: Timer that fires the flush.
    """

    key: Hashable
    patch: dict[str, Any]
    calls: int = 1
    handle: asyncio.TimerHandle | None = field(default=None, repr=False)


@dataclass
class MutatorMetrics:
    """Metrics for tracking debounced writes."""

    scheduled: int
    flushed: int
    superseded: int
    failed: int
    cancelled: int
    pending: int
    in_flight: int = field(default=0)


class DebouncedMutator:
    """
    Coalesces writes per key behind a trailing debounce window.

    Every `schedule(key, patch)` call (re)starts a timer for that key only.
    When a key's timer elapses with no further calls, `write(key, patch)` runs
    once as a task on the running loop, carrying the patch merged from all the
    calls in the window. Keys never delay or cancel each other. Writes for the
    same key are serialized, so a later flush never overtakes an earlier one.

    Failed writes are not retried and never reach the caller of `schedule`:
    they are logged and handed to the optional `on_error` observer.

    Args:
        write: Async callable performing the persisted write.
        window_ms: Debounce window in milliseconds. Defaults to the
            DEBOUNCE_WINDOW_MS environment variable, else 250.
        on_error: Optional observer called as on_error(key, patch, exc).
        merge_patches: If True (default), patches within a window are merged
            field by field, last write wins. If False, the last patch replaces
            earlier ones wholesale.
        name: Identifier used in log records.

    Example:
        ```python
        mutator = DebouncedMutator(store.update, window_ms=250)

        mutator.schedule(record.key, {"value": 1})
        mutator.schedule(record.key, {"value": 2})  # supersedes the first

        await mutator.close()  # flushes {"value": 2}
        ```
    """

    def __init__(
        self,
        write: WriteFunc,
        window_ms: float | None = None,
        on_error: ErrorObserver | None = None,
        merge_patches: bool = True,
        name: str = "default",
    ) -> None:
        if window_ms is None:
            window_ms = float(os.getenv("DEBOUNCE_WINDOW_MS", "250"))
        if window_ms < 0:
            raise ValueError("window_ms must be non-negative")

        self._write = write
        self._window_ms = window_ms
        self._on_error = on_error
        self._merge_patches = merge_patches
        self._name = name
        self._closed = False

        # Owned by this instance; nothing else reads or writes these maps.
        self._pending: dict[Hashable, PendingWrite] = {}
        self._in_flight: dict[Hashable, asyncio.Task[None]] = {}

        self._scheduled = 0
        self._flushed = 0
        self._superseded = 0
        self._failed = 0
        self._cancelled = 0
        self._logger = logging.getLogger(f"debounced_mutator.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def window_ms(self) -> float:
        """Debounce window in milliseconds."""
        return self._window_ms

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_keys(self) -> list[Hashable]:
        """Keys with a write waiting for its window to elapse."""
        return list(self._pending)

    def state(self, key: Hashable) -> KeyState:
        """Current debounce state of `key`."""
        if key in self._pending:
            return KeyState.PENDING
        if key in self._in_flight:
            return KeyState.IN_FLIGHT
        return KeyState.IDLE

    def pending_patch(self, key: Hashable) -> dict[str, Any] | None:
        """Copy of the patch waiting for `key`, or None."""
        pending = self._pending.get(key)
        return dict(pending.patch) if pending is not None else None

    def schedule(self, key: Hashable, patch: dict[str, Any]) -> None:
        """Schedule a write of `patch` for `key` after the debounce window.

        Returns immediately. Must be called with a running event loop.

        Raises:
            MutatorClosedError: If the mutator has been closed.
        """
        if self._closed:
            raise MutatorClosedError(f"Debounced mutator '{self._name}' is closed")

        loop = asyncio.get_running_loop()
        self._scheduled += 1

        pending = self._pending.get(key)
        if pending is None:
            pending = PendingWrite(key=key, patch=dict(patch))
            self._pending[key] = pending
        else:
            if pending.handle is not None:
                pending.handle.cancel()
            if self._merge_patches:
                pending.patch.update(patch)
            else:
                pending.patch = dict(patch)
            pending.calls += 1
            self._superseded += 1

        pending.handle = loop.call_later(self._window_ms / 1000, self._fire, key)

    def cancel(self, key: Hashable) -> bool:
        """Drop the pending write for `key`.

        A write that has already been dispatched is not affected; use
        `wait_idle` to wait for it.

        Returns:
            bool: True if a pending write was dropped.
        """
        pending = self._pending.pop(key, None)
        if pending is None:
            return False

        if pending.handle is not None:
            pending.handle.cancel()
        self._cancelled += 1
        self._log_event("debounced_write_cancelled", pending)
        return True

    async def wait_idle(self, key: Hashable) -> None:
        """Wait until no write for `key` is in flight."""
        task = self._in_flight.get(key)
        while task is not None:
            await asyncio.wait([task])
            task = self._in_flight.get(key)

    async def flush(self, key: Hashable | None = None) -> None:
        """Dispatch pending writes now and wait for them to finish.

        Args:
            key: Only flush this key. Flushes every key when None.
        """
        keys = list(self._pending) if key is None else [key]
        for pending_key in keys:
            pending = self._pending.pop(pending_key, None)
            if pending is None:
                continue
            if pending.handle is not None:
                pending.handle.cancel()
            self._dispatch(pending)

        if key is None:
            tasks = list(self._in_flight.values())
        else:
            tasks = [self._in_flight[key]] if key in self._in_flight else []
        if tasks:
            await asyncio.wait(tasks)

    async def close(self) -> None:
        """Reject further writes, then flush everything pending."""
        self._closed = True
        await self.flush()

    def _fire(self, key: Hashable) -> None:
        """Timer callback: the window for `key` elapsed."""
        pending = self._pending.pop(key, None)
        if pending is not None:
            self._dispatch(pending)

    def _dispatch(self, pending: PendingWrite) -> asyncio.Task[None]:
        previous = self._in_flight.get(pending.key)
        task = asyncio.get_running_loop().create_task(self._run_write(pending, previous))
        self._in_flight[pending.key] = task
        task.add_done_callback(functools.partial(self._on_write_done, pending.key))
        return task

    def _on_write_done(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _run_write(self, pending: PendingWrite, previous: asyncio.Task[None] | None) -> None:
        if previous is not None:
            await asyncio.wait([previous])

        try:
            await self._write(pending.key, pending.patch)
        except Exception as exc:
            self._failed += 1
            self._log_event("debounced_write_failed", pending, logging.WARNING, error=repr(exc))
            self._notify_error(pending, exc)
        else:
            self._flushed += 1
            self._log_event("debounced_write_flushed", pending, logging.DEBUG)

    def _notify_error(self, pending: PendingWrite, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(pending.key, pending.patch, exc)
        except Exception:
            self._logger.exception("Write error observer failed for key %r", pending.key)

    def _log_event(
        self,
        event: str,
        pending: PendingWrite,
        level: int = logging.INFO,
        **extra: Any,
    ) -> None:
        """Log a write lifecycle event with structured JSON."""
        if not self._logger.isEnabledFor(level):
            return
        log_entry = {
            "event": event,
            "name": self._name,
            "key": str(pending.key),
            "fields": sorted(pending.patch),
            "coalesced_calls": pending.calls,
            "timestamp": datetime.now(UTC).isoformat(),
            **extra,
        }
        self._logger.log(level, json.dumps(log_entry))

    def get_metrics(self) -> MutatorMetrics:
        """Get current metrics for this mutator.

        Returns:
            MutatorMetrics: Counts of scheduled, flushed, superseded, failed and
            cancelled writes, plus current pending and in-flight sizes.
        """
        return MutatorMetrics(
            scheduled=self._scheduled,
            flushed=self._flushed,
            superseded=self._superseded,
            failed=self._failed,
            cancelled=self._cancelled,
            pending=len(self._pending),
            in_flight=len(self._in_flight),
        )
