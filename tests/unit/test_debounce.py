"""Tests for DebouncedMutator."""

import asyncio
import logging

import pytest

from record_keeper.editing.debounce import (
    DebouncedMutator,
    KeyState,
    MutatorClosedError,
    MutatorMetrics,
)


class WriteRecorder:
    """Async write function that records its calls."""

    def __init__(self, delay: float = 0.0, fail_keys: set[str] | None = None) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.delay = delay
        self.fail_keys = fail_keys or set()

    async def __call__(self, key, patch):
        await asyncio.sleep(self.delay)
        if key in self.fail_keys:
            raise ConnectionError(f"store unavailable for {key}")
        self.calls.append((key, dict(patch)))


class TestDebounceConfiguration:
    """Tests for constructor arguments and defaults."""

    def test_window_from_argument(self):
        mutator = DebouncedMutator(WriteRecorder(), window_ms=100)
        assert mutator.window_ms == 100

    def test_window_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEBOUNCE_WINDOW_MS", "75")
        mutator = DebouncedMutator(WriteRecorder())
        assert mutator.window_ms == 75.0

    def test_default_window(self, monkeypatch):
        monkeypatch.delenv("DEBOUNCE_WINDOW_MS", raising=False)
        assert DebouncedMutator(WriteRecorder()).window_ms == 250.0

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            DebouncedMutator(WriteRecorder(), window_ms=-1)


class TestDebounceCoalescing:
    """Tests for collapsing bursts into one trailing write."""

    @pytest.mark.asyncio
    async def test_last_patch_wins_within_window(self):
        """Two calls 50ms apart with a 250ms window produce one write of the last value."""
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=250)

        mutator.schedule("a", {"value": 1})
        await asyncio.sleep(0.05)
        mutator.schedule("a", {"value": 2})

        await asyncio.sleep(0.2)
        assert write.calls == []

        await asyncio.sleep(0.15)
        assert write.calls == [("a", {"value": 2})]

    @pytest.mark.asyncio
    async def test_burst_produces_single_write(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=50)

        for i in range(10):
            mutator.schedule("a", {"value": i})
            await asyncio.sleep(0.01)

        await asyncio.sleep(0.12)
        assert write.calls == [("a", {"value": 9})]

    @pytest.mark.asyncio
    async def test_spaced_calls_each_write(self):
        """Calls further apart than the window each produce a write."""
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=30)

        for i in range(3):
            mutator.schedule("a", {"value": i})
            await asyncio.sleep(0.08)

        assert write.calls == [("a", {"value": 0}), ("a", {"value": 1}), ("a", {"value": 2})]

    @pytest.mark.asyncio
    async def test_field_level_merge(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=40)

        mutator.schedule("a", {"value": 1})
        mutator.schedule("a", {"pokemon": "pkm-1"})
        mutator.schedule("a", {"value": 3})

        await asyncio.sleep(0.1)
        assert write.calls == [("a", {"value": 3, "pokemon": "pkm-1"})]

    @pytest.mark.asyncio
    async def test_replacement_when_merge_disabled(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=40, merge_patches=False)

        mutator.schedule("a", {"value": 1})
        mutator.schedule("a", {"pokemon": "pkm-1"})

        await asyncio.sleep(0.1)
        assert write.calls == [("a", {"pokemon": "pkm-1"})]

    @pytest.mark.asyncio
    async def test_schedule_copies_patch(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=20)
        patch = {"value": 1}

        mutator.schedule("a", patch)
        patch["value"] = 99

        await mutator.flush()
        assert write.calls == [("a", {"value": 1})]


class TestDebounceKeyIndependence:
    """Tests for per-key timers."""

    @pytest.mark.asyncio
    async def test_burst_on_one_key_does_not_delay_another(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=50)

        mutator.schedule("k2", {"value": "b"})
        for i in range(8):
            mutator.schedule("k1", {"value": i})
            await asyncio.sleep(0.015)

        # k2's window elapsed during k1's burst
        assert ("k2", {"value": "b"}) in write.calls
        assert all(key != "k1" for key, _ in write.calls)

        await asyncio.sleep(0.1)
        assert ("k1", {"value": 7}) in write.calls
        assert len(write.calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_only_affects_its_key(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=30)

        mutator.schedule("k1", {"value": 1})
        mutator.schedule("k2", {"value": 2})
        assert mutator.cancel("k1") is True

        await asyncio.sleep(0.08)
        assert write.calls == [("k2", {"value": 2})]

    @pytest.mark.asyncio
    async def test_same_key_writes_are_serialized(self):
        """A second flush for a key waits for the first to finish."""
        order: list[str] = []

        async def slow_write(key, patch):
            order.append(f"start {patch['value']}")
            await asyncio.sleep(0.05)
            order.append(f"end {patch['value']}")

        mutator = DebouncedMutator(slow_write, window_ms=10)
        mutator.schedule("a", {"value": 1})
        await asyncio.sleep(0.02)
        mutator.schedule("a", {"value": 2})

        await asyncio.sleep(0.02)
        await mutator.flush()
        assert order == ["start 1", "end 1", "start 2", "end 2"]


class TestDebounceState:
    """Tests for the per-key state machine."""

    @pytest.mark.asyncio
    async def test_idle_pending_in_flight_idle(self):
        mutator = DebouncedMutator(WriteRecorder(delay=0.05), window_ms=20)
        assert mutator.state("a") is KeyState.IDLE

        mutator.schedule("a", {"value": 1})
        assert mutator.state("a") is KeyState.PENDING
        assert mutator.pending_patch("a") == {"value": 1}
        assert mutator.pending_keys == ["a"]

        await asyncio.sleep(0.04)
        assert mutator.state("a") is KeyState.IN_FLIGHT
        assert mutator.pending_patch("a") is None

        await mutator.wait_idle("a")
        assert mutator.state("a") is KeyState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_without_pending_write(self):
        mutator = DebouncedMutator(WriteRecorder(), window_ms=20)
        assert mutator.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_schedule_returns_immediately(self):
        write = WriteRecorder(delay=1.0)
        mutator = DebouncedMutator(write, window_ms=0)

        mutator.schedule("a", {"value": 1})
        assert write.calls == []
        mutator.cancel("a")


class TestDebounceFailures:
    """Tests for fire-and-forget failure handling."""

    @pytest.mark.asyncio
    async def test_failure_goes_to_observer_not_caller(self):
        errors = []
        write = WriteRecorder(fail_keys={"bad"})
        mutator = DebouncedMutator(
            write,
            window_ms=20,
            on_error=lambda key, patch, exc: errors.append((key, patch, exc)),
        )

        mutator.schedule("bad", {"value": 1})
        mutator.schedule("good", {"value": 2})
        await mutator.flush()

        assert write.calls == [("good", {"value": 2})]
        assert len(errors) == 1
        key, patch, exc = errors[0]
        assert key == "bad"
        assert patch == {"value": 1}
        assert isinstance(exc, ConnectionError)

    @pytest.mark.asyncio
    async def test_failure_is_not_retried(self):
        attempts = 0

        async def failing_write(key, patch):
            nonlocal attempts
            attempts += 1
            raise ConnectionError("down")

        mutator = DebouncedMutator(failing_write, window_ms=10)
        mutator.schedule("a", {"value": 1})
        await asyncio.sleep(0.1)

        assert attempts == 1
        assert mutator.get_metrics().failed == 1

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        mutator = DebouncedMutator(WriteRecorder(fail_keys={"a"}), window_ms=10, name="logs")

        with caplog.at_level(logging.WARNING, logger="debounced_mutator.logs"):
            mutator.schedule("a", {"value": 1})
            await mutator.flush()

        assert any("debounced_write_failed" in message for message in caplog.messages)

    @pytest.mark.asyncio
    async def test_raising_observer_is_contained(self):
        def bad_observer(key, patch, exc):
            raise RuntimeError("observer bug")

        mutator = DebouncedMutator(
            WriteRecorder(fail_keys={"a"}), window_ms=10, on_error=bad_observer
        )
        mutator.schedule("a", {"value": 1})
        await mutator.flush()

        assert mutator.get_metrics().failed == 1


class TestDebounceFlushAndClose:
    """Tests for explicit flushing and shutdown."""

    @pytest.mark.asyncio
    async def test_flush_writes_before_window(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=10_000)

        mutator.schedule("a", {"value": 1})
        mutator.schedule("b", {"value": 2})
        await mutator.flush()

        assert sorted(write.calls) == [("a", {"value": 1}), ("b", {"value": 2})]
        assert mutator.pending_keys == []

    @pytest.mark.asyncio
    async def test_flush_single_key(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=10_000)

        mutator.schedule("a", {"value": 1})
        mutator.schedule("b", {"value": 2})
        await mutator.flush("a")

        assert write.calls == [("a", {"value": 1})]
        assert mutator.pending_keys == ["b"]
        mutator.cancel("b")

    @pytest.mark.asyncio
    async def test_close_flushes_and_rejects(self):
        write = WriteRecorder()
        mutator = DebouncedMutator(write, window_ms=10_000)

        mutator.schedule("a", {"value": 1})
        await mutator.close()

        assert write.calls == [("a", {"value": 1})]
        assert mutator.is_closed
        with pytest.raises(MutatorClosedError):
            mutator.schedule("a", {"value": 2})


class TestDebounceMetrics:
    """Tests for metrics tracking."""

    @pytest.mark.asyncio
    async def test_metrics_counts(self):
        mutator = DebouncedMutator(WriteRecorder(), window_ms=10_000)

        mutator.schedule("a", {"value": 1})
        mutator.schedule("a", {"value": 2})
        mutator.schedule("b", {"value": 3})
        mutator.cancel("b")

        metrics = mutator.get_metrics()
        assert isinstance(metrics, MutatorMetrics)
        assert metrics.scheduled == 3
        assert metrics.superseded == 1
        assert metrics.cancelled == 1
        assert metrics.pending == 1

        await mutator.flush()
        metrics = mutator.get_metrics()
        assert metrics.flushed == 1
        assert metrics.pending == 0
        assert metrics.in_flight == 0
