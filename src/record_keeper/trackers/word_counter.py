"""Word counter note with debounced persistence."""

import re
from typing import Any

from record_keeper.editing.debounce import DebouncedMutator, ErrorObserver
from record_keeper.models import Record
from record_keeper.persistence.base import RecordStore

WORD_COUNTER_KEY = "word counter"

_QUOTE_BLOCK = re.compile(r"\[quote\S+].*\[/quote]", re.IGNORECASE | re.DOTALL)


def count_words(text: str | None) -> int:
    """Count whitespace-separated words, ignoring quoted blocks.

    Quoted blocks are spans opened by a tag such as ``[quote=name]`` and closed
    by ``[/quote]``. Matching is greedy, so everything from the first opening
    tag to the last closing tag is ignored.
    """
    if text is None:
        return 0
    return len(_QUOTE_BLOCK.sub("", text).split())


def word_count_label(text: str | None) -> str:
    return f"~{count_words(text)} Words"


class WordCounter:
    """A single text note stored as a misc value, saved as it is typed.

    `set_text` updates the text at once and schedules a debounced save of the
    whole note, so a burst of keystrokes produces one write.

    Args:
        store: Store of misc values (keyed by name).
        window_ms: Debounce window. Defaults to DEBOUNCE_WINDOW_MS or 250.
        on_error: Observer for failed saves.
        key: Name of the misc value holding the note.
    """

    def __init__(
        self,
        store: RecordStore,
        window_ms: float | None = None,
        on_error: ErrorObserver | None = None,
        key: str = WORD_COUNTER_KEY,
    ) -> None:
        self._store = store
        self._key = key
        self._text = ""
        self._mutator = DebouncedMutator(
            self._save,
            window_ms=window_ms,
            on_error=on_error,
            merge_patches=False,
            name="word_counter",
        )

    @property
    def text(self) -> str:
        return self._text

    @property
    def word_count(self) -> int:
        return count_words(self._text)

    @property
    def label(self) -> str:
        return word_count_label(self._text)

    @property
    def mutator(self) -> DebouncedMutator:
        return self._mutator

    async def load(self) -> str:
        """Read the stored note; an absent note reads as empty."""
        record = await self._store.find_one(self._key)
        self._text = (record.get("value") if record is not None else None) or ""
        return self._text

    def set_text(self, text: str) -> None:
        self._text = text
        self._mutator.schedule(self._key, {"value": text})

    async def flush(self) -> None:
        await self._mutator.flush()

    async def close(self) -> None:
        await self._mutator.close()

    async def _save(self, key: Any, patch: dict[str, Any]) -> None:
        await self._store.save(Record(key=key, fields=patch))
