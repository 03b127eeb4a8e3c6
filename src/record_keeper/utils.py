"""Small helpers shared across record-keeper."""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import inspect
import json
import logging
from collections.abc import Callable, Hashable, Iterable, Sequence
from datetime import UTC, date, datetime
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OMIT = object()


def debounce(delay_ms: float = 300) -> Callable[[Callable[..., Any]], Callable[..., None]]:
    """Trailing debounce decorator for sync or async callables.

    Each call restarts the timer; the wrapped function runs once, with the
    arguments of the last call, after `delay_ms` of inactivity. Calls must be
    made from a running event loop. Exceptions raised by the wrapped function
    are logged, never propagated to the caller.

    The returned wrapper has a `cancel()` method that drops the pending call.

    Example:
        ```python
        @debounce(250)
        async def save_text(text: str) -> None:
            await store.save(Record(key="word counter", fields={"value": text}))

        save_text("a")
        save_text("ab")  # only this call reaches the store
        ```
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., None]:
        handle: asyncio.TimerHandle | None = None
        tasks: set[asyncio.Task[Any]] = set()

        def on_done(task: asyncio.Task[Any]) -> None:
            tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error("Debounced call to %s failed", fn.__qualname__, exc_info=task.exception())

        def fire(args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
            nonlocal handle
            handle = None
            try:
                result = fn(*args, **kwargs)
            except Exception:
                logger.exception("Debounced call to %s failed", fn.__qualname__)
                return
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                tasks.add(task)
                task.add_done_callback(on_done)

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> None:
            nonlocal handle
            if handle is not None:
                handle.cancel()
            loop = asyncio.get_running_loop()
            handle = loop.call_later(delay_ms / 1000, fire, args, kwargs)

        def cancel() -> None:
            nonlocal handle
            if handle is not None:
                handle.cancel()
                handle = None

        wrapper.cancel = cancel  # type: ignore[attr-defined]
        return wrapper

    return decorator


def filter_unique(items: Iterable[T]) -> list[T]:
    """Drop repeated items, keeping the first occurrence of each."""
    seen: set[Any] = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def unique_on(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Drop items whose `key` was already produced by an earlier item.

    Example:
        >>> unique_on([("a", 1), ("b", 1), ("c", 2)], key=lambda pair: pair[1])
        [('a', 1), ('c', 2)]
    """
    seen: set[Hashable] = set()
    unique = []
    for item in items:
        marker = key(item)
        if marker not in seen:
            seen.add(marker)
            unique.append(item)
    return unique


def find_last_index(items: Sequence[T], predicate: Callable[[T, int], bool]) -> int:
    """Return the index of the last item matching predicate(item, index), or -1."""
    for index in range(len(items) - 1, -1, -1):
        if predicate(items[index], index):
            return index
    return -1


def current_time() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _strip_seen(value: Any, seen: set[int]) -> Any:
    """Copy value, replacing every container already visited with _OMIT."""
    is_dataclass = dataclasses.is_dataclass(value) and not isinstance(value, type)
    if is_dataclass or isinstance(value, (dict, list, tuple)):
        if id(value) in seen:
            return _OMIT
        seen.add(id(value))

    if is_dataclass:
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, dict):
        stripped = {}
        for name, item in value.items():
            item = _strip_seen(item, seen)
            if item is not _OMIT:
                stripped[name] = item
        return stripped

    if isinstance(value, (list, tuple)):
        stripped_items = []
        for item in value:
            item = _strip_seen(item, seen)
            stripped_items.append(None if item is _OMIT else item)
        return stripped_items

    return value


class CircularSafeEncoder(json.JSONEncoder):
    """JSON encoder that tolerates reference cycles.

    Any dict, list, tuple or dataclass instance that has already been encoded
    once is dropped: omitted when it is a dict value, written as null when it
    is a list item. Datetimes and dates are written in ISO 8601.
    """

    def default(self, o: Any) -> Any:
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return super().default(o)

    def iterencode(self, o: Any, _one_shot: bool = False) -> Any:
        return super().iterencode(_strip_seen(o, set()), _one_shot)


def dumps_safe(value: Any, **kwargs: Any) -> str:
    """Serialize value to JSON with CircularSafeEncoder."""
    return json.dumps(value, cls=CircularSafeEncoder, ensure_ascii=False, **kwargs)
