"""Tests for the word counter."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from record_keeper.models import Record
from record_keeper.trackers.word_counter import (
    WORD_COUNTER_KEY,
    WordCounter,
    count_words,
    word_count_label,
)


class TestCountWords:
    """Tests for word counting."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            (None, 0),
            ("", 0),
            ("   \n\t ", 0),
            ("one", 1),
            ("one two  three\nfour\tfive", 5),
        ],
    )
    def test_counts_whitespace_separated_words(self, text, expected):
        assert count_words(text) == expected

    def test_quote_block_ignored(self):
        text = "I said [quote=Ash]gotta catch them all[/quote] yesterday"

        assert count_words(text) == 3

    def test_quote_block_spans_lines_and_case(self):
        text = "before [QUOTE=Misty]\nlots of\nquoted words\n[/Quote] after"

        assert count_words(text) == 2

    def test_quote_removal_is_greedy(self):
        text = "a [quote=x]b[/quote] c [quote=y]d[/quote] e"

        assert count_words(text) == 2

    def test_bare_quote_tag_is_counted(self):
        """A tag without an attribute is not treated as a quote block."""
        assert count_words("[quote]hi[/quote]") == 1

    def test_label(self):
        assert word_count_label("one two") == "~2 Words"
        assert word_count_label(None) == "~0 Words"


class TestWordCounter:
    """Tests for the persisted note."""

    @pytest.mark.asyncio
    async def test_load_missing_note_is_empty(self, misc_store):
        counter = WordCounter(misc_store, window_ms=20)

        assert await counter.load() == ""
        assert counter.word_count == 0

    @pytest.mark.asyncio
    async def test_load_existing_note(self, misc_store):
        await misc_store.save(Record(key=WORD_COUNTER_KEY, fields={"value": "three small words"}))
        counter = WordCounter(misc_store, window_ms=20)

        await counter.load()

        assert counter.text == "three small words"
        assert counter.label == "~3 Words"

    @pytest.mark.asyncio
    async def test_typing_burst_saves_once(self, misc_store):
        misc_store.save = AsyncMock(wraps=misc_store.save)
        counter = WordCounter(misc_store, window_ms=40)

        for text in ["h", "he", "hel", "hello", "hello world"]:
            counter.set_text(text)
            await asyncio.sleep(0.005)

        assert counter.word_count == 2
        misc_store.save.assert_not_called()

        await asyncio.sleep(0.1)
        misc_store.save.assert_awaited_once_with(
            Record(key=WORD_COUNTER_KEY, fields={"value": "hello world"})
        )

    @pytest.mark.asyncio
    async def test_close_persists_pending_text(self, misc_store):
        counter = WordCounter(misc_store, window_ms=10_000)
        counter.set_text("saved on close")

        await counter.close()

        assert (await misc_store.find_one(WORD_COUNTER_KEY))["value"] == "saved on close"

    @pytest.mark.asyncio
    async def test_save_failure_is_observed(self, misc_store):
        errors = []
        misc_store.save = AsyncMock(side_effect=OSError("read-only"))
        counter = WordCounter(
            misc_store, window_ms=10, on_error=lambda key, patch, exc: errors.append(exc)
        )

        counter.set_text("lost")
        await counter.flush()

        assert counter.text == "lost"
        assert len(errors) == 1
