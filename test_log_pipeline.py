"""Tests for log buffering, batching and retry behaviour."""
import time
from datetime import timedelta

import pytest

from workmesh.config import Settings
from workmesh.logs import ComponentLogger, LogLevel, LogPipeline
from workmesh.logs.backoff import ExponentialBackoff
from workmesh.storage import InMemoryStore


class FlakyStore(InMemoryStore):
    """Store whose appends fail while ``broken`` is set."""

    def __init__(self, broken: bool = False):
        super().__init__()
        self.broken = broken
        self.attempts = 0

    def append(self, namespace, key, record):
        self.attempts += 1
        if self.broken:
            raise OSError("disk full")
        super().append(namespace, key, record)


def quiet_settings(**overrides) -> Settings:
    values = dict(flush_threshold=100, backoff_jitter=False, backoff_initial=0.01,
                  backoff_max=0.05, drain_attempts=2, log_file=None)
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def flaky() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def pipeline(flaky, clock) -> LogPipeline:
    return LogPipeline(flaky, quiet_settings(), clock)


class TestFlushTriggers:
    def test_threshold(self, flaky, clock):
        pipeline = LogPipeline(flaky, quiet_settings(flush_threshold=3), clock)
        pipeline.emit("registry", "INFO", "worker.registered")
        pipeline.emit("registry", "INFO", "worker.registered")
        assert len(pipeline.batches) == 0
        assert pipeline.buffered == 2

        pipeline.emit("registry", "INFO", "worker.registered")
        assert pipeline.buffered == 0
        assert len(pipeline.batches) == 1

    def test_error_flushes_immediately(self, pipeline):
        pipeline.emit("queue", "DEBUG", "work.submitted")
        pipeline.emit("queue", LogLevel.ERROR, "work.failed", "boom")
        assert pipeline.buffered == 0
        batch = next(iter(pipeline.batches))
        assert [e.operation for e in batch.entries] == ["work.submitted", "work.failed"]

    def test_critical_flushes_immediately(self, pipeline):
        pipeline.emit("queue", "CRITICAL", "store.lost")
        assert pipeline.persisted == 1

    def test_explicit_flush_groups_by_component(self, pipeline):
        pipeline.emit("a", "INFO", "one")
        pipeline.emit("b", "INFO", "two")
        pipeline.emit("a", "INFO", "three")
        assert pipeline.flush() == 3

        batches = {batch.component: batch for batch in pipeline.batches}
        assert set(batches) == {"a", "b"}
        assert [e.operation for e in batches["a"].entries] == ["one", "three"]
        assert batches["a"].key != batches["b"].key

    def test_empty_flush_is_a_noop(self, pipeline, flaky):
        assert pipeline.flush() == 0
        assert flaky.attempts == 0

    def test_batch_metadata(self, pipeline, clock):
        pipeline.emit("a", "INFO", "one")
        clock.advance(seconds=5)
        pipeline.emit("a", "WARN", "two")
        pipeline.flush()
        batch = next(iter(pipeline.batches))
        assert batch.window_end - batch.window_start == timedelta(seconds=5)
        assert batch.max_level is LogLevel.WARN
        assert batch.level_counts == {"INFO": 1, "WARN": 1}
        assert batch.key.startswith("a/")


class TestFailures:
    def test_failed_write_rebuffers_in_order(self, pipeline, flaky):
        flaky.broken = True
        pipeline.emit("a", "INFO", "first")
        pipeline.emit("a", "INFO", "second")
        assert pipeline.flush() == 0
        assert pipeline.retry_pending
        assert pipeline.flush_failures == 1

        pipeline.emit("a", "INFO", "third")
        assert [e.operation for e in pipeline.pending_entries()] == ["first", "second", "third"]

        flaky.broken = False
        assert pipeline.flush() == 3
        assert not pipeline.retry_pending
        batch = next(iter(pipeline.batches))
        assert [e.operation for e in batch.entries] == ["first", "second", "third"]

    def test_error_entry_survives_failed_immediate_flush(self, pipeline, flaky):
        flaky.broken = True
        entry = pipeline.emit("a", "ERROR", "work.failed")
        assert pipeline.pending_entries() == [entry]

    def test_errors_wait_out_a_pending_backoff(self, flaky, clock):
        pipeline = LogPipeline(flaky, quiet_settings(backoff_initial=30.0, backoff_max=30.0), clock)
        flaky.broken = True
        pipeline.emit("a", "ERROR", "first")
        assert flaky.attempts == 1
        assert pipeline.retry_pending

        pipeline.emit("a", "ERROR", "second")
        pipeline.emit("a", "CRITICAL", "third")
        assert flaky.attempts == 1
        assert [e.operation for e in pipeline.pending_entries()] == ["first", "second", "third"]

        flaky.broken = False
        assert pipeline.flush() == 3
        pipeline.emit("a", "ERROR", "fourth")
        assert pipeline.buffered == 0

    def test_buffer_cap_drops_oldest_non_critical(self, flaky, clock):
        pipeline = LogPipeline(flaky, quiet_settings(buffer_cap=3), clock)
        flaky.broken = True
        pipeline.emit("a", "CRITICAL", "keep")
        for n in range(1, 5):
            pipeline.emit("a", "INFO", f"info-{n}")

        assert [e.operation for e in pipeline.pending_entries()] == ["keep", "info-3", "info-4"]
        assert pipeline.dropped == 2

    def test_retry_from_background_ticker(self, flaky):
        pipeline = LogPipeline(flaky, quiet_settings(flush_interval=0.02))
        pipeline.start()
        try:
            flaky.broken = True
            pipeline.emit("a", "ERROR", "work.failed")
            flaky.broken = False

            deadline = time.monotonic() + 5
            while pipeline.persisted < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert pipeline.buffered == 0
            assert pipeline.persisted == 1
        finally:
            pipeline.shutdown()


class TestShutdown:
    def test_drains_buffer(self, pipeline):
        pipeline.emit("a", "INFO", "one")
        pipeline.emit("b", "INFO", "two")
        assert pipeline.shutdown() == 0
        assert len(pipeline.batches) == 2

    def test_reports_unflushed_entries(self, pipeline, flaky):
        flaky.broken = True
        pipeline.emit("a", "INFO", "one")
        assert pipeline.shutdown() == 1
        assert flaky.attempts == 2

    def test_manager_shutdown_flushes(self, manager):
        manager.log("custom", "INFO", "hello", {"n": 1})
        assert manager.shutdown() == 0
        assert manager.query_logs(component="custom", include_buffered=False).total == 1


class TestBackoff:
    def test_doubles_up_to_cap(self):
        backoff = ExponentialBackoff(initial=1.0, max_delay=5.0, factor=2.0, jitter=False)
        assert [backoff.next_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        backoff.reset()
        assert backoff.next_delay() == 1.0

    def test_max_attempts(self):
        backoff = ExponentialBackoff(initial=1.0, max_attempts=2, jitter=False)
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.next_delay() is None

    def test_jitter_stays_within_quarter(self):
        backoff = ExponentialBackoff(initial=2.0, jitter=True)
        for _ in range(20):
            backoff.reset()
            assert 2.0 <= backoff.next_delay() <= 2.5


def test_component_logger_without_pipeline():
    events = ComponentLogger("standalone")
    assert events.info("boot", "starting", pid=1) is None


def test_component_logger_with_pipeline(pipeline):
    events = pipeline.logger("assignment_engine")
    entry = events.warn("assignment.slow", "slow pass", correlation_id="c1",
                        perf={"duration_ms": 12.5}, items=3)
    assert entry.component == "assignment_engine"
    assert entry.level is LogLevel.WARN
    assert entry.duration_ms == 12.5
    assert entry.context["items"] == 3
    with pytest.raises(TypeError):
        entry.context["items"] = 4
