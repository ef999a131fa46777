"""Tests for the work queue: submission, dependency gating and transitions."""
import pytest

from conftest import make_item
from workmesh.coordination import Dependency, WorkQueue, WorkStatus
from workmesh.coordination.queue import CANCELLED, REQUEUED, WORK_NAMESPACE
from workmesh.errors import (
    DependencyCycleError,
    DuplicateWorkItemError,
    InvalidTransitionError,
    NotFoundError,
)


@pytest.fixture
def queue(store, clock) -> WorkQueue:
    return WorkQueue(store, clock=clock)


def after(*ids):
    return [Dependency.on(i) for i in ids]


class TestSubmission:
    def test_submit_records_history(self, queue, clock):
        queue.submit(make_item("i1"))
        item = queue.get("i1")
        assert item.status is WorkStatus.PENDING
        assert item.submitted_at == clock.now
        assert [h.event for h in item.history] == ["submitted"]
        assert item.correlation_id == "i1"

    def test_duplicate_rejected(self, queue):
        queue.submit(make_item("i1"))
        with pytest.raises(DuplicateWorkItemError):
            queue.submit(make_item("i1"))

    def test_self_dependency_is_a_cycle(self, queue):
        with pytest.raises(DependencyCycleError) as exc_info:
            queue.submit(make_item("i1", dependencies=after("i1")))
        assert exc_info.value.cycle == ["i1", "i1"]
        assert "i1" not in queue

    def test_cycle_through_existing_items(self, queue):
        # b and c reference a, which is submitted last and closes the loop
        queue.submit(make_item("b", dependencies=after("a")))
        queue.submit(make_item("c", dependencies=after("b")))
        with pytest.raises(DependencyCycleError) as exc_info:
            queue.submit(make_item("a", dependencies=after("c")))
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1] == "a"
        assert set(cycle) == {"a", "b", "c"}
        assert "a" not in queue

    def test_diamond_is_not_a_cycle(self, queue):
        queue.submit(make_item("root"))
        queue.submit(make_item("left", dependencies=after("root")))
        queue.submit(make_item("right", dependencies=after("root")))
        queue.submit(make_item("join", dependencies=after("left", "right")))
        assert queue.dependents("root") == ["left", "right"]

    def test_unknown_prerequisite_blocks(self, queue):
        queue.submit(make_item("i1", dependencies=after("missing")))
        assert queue.get("i1").status_reason == "blocked_on:missing"
        assert not queue.is_ready("i1")


class TestReadiness:
    def test_dequeue_orders_by_priority_then_age(self, queue, clock):
        queue.submit(make_item("low", priority=1))
        clock.advance(seconds=1)
        queue.submit(make_item("high", priority=5))
        clock.advance(seconds=1)
        queue.submit(make_item("low-later", priority=1))
        assert [i.item_id for i in queue.dequeue_ready()] == ["high", "low", "low-later"]

    def test_dependents_wait_for_completion(self, queue):
        queue.submit(make_item("i1"))
        queue.submit(make_item("i2", dependencies=after("i1")))
        assert [i.item_id for i in queue.dequeue_ready()] == ["i1"]

        queue.mark_assigned("i1", "w1")
        assert queue.dequeue_ready() == []
        with pytest.raises(InvalidTransitionError):
            queue.mark_assigned("i2", "w1")

        unblocked = queue.mark_completed("i1", "w1")
        assert unblocked == ["i2"]
        ready = queue.dequeue_ready()
        assert [i.item_id for i in ready] == ["i2"]
        assert ready[0].status_reason is None

    def test_archived_prerequisite_still_counts_as_completed(self, queue):
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1")
        queue.mark_completed("i1")
        queue.archive("i1")
        queue.submit(make_item("i2", dependencies=after("i1")))
        assert queue.is_ready("i2")


class TestTransitions:
    def test_full_lifecycle(self, queue):
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1", collaborators=["w2"], fit_score=0.9)
        item = queue.mark_in_progress("i1", "w1", 0.25)
        assert item.status is WorkStatus.IN_PROGRESS
        assert item.assignment.collaborators == ["w2"]

        queue.mark_blocked("i1", "w1", "waiting_on_api")
        assert queue.get("i1").status_reason == "waiting_on_api"
        queue.mark_in_progress("i1", "w1", 2.0)
        assert queue.get("i1").assignment.progress == 1.0
        queue.mark_completed("i1", "w1")

        events = [h.event for h in queue.get("i1").history]
        assert events == ["submitted", "assigned", "started", "blocked", "resumed", "completed"]
        assert queue.get("i1").attempts == 1

    def test_progress_from_wrong_worker(self, queue):
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1")
        with pytest.raises(InvalidTransitionError):
            queue.mark_in_progress("i1", "w2", 0.5)

    def test_cannot_complete_pending(self, queue):
        queue.submit(make_item("i1"))
        with pytest.raises(InvalidTransitionError):
            queue.mark_completed("i1")

    def test_at_most_one_active_assignment(self, queue):
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1")
        with pytest.raises(InvalidTransitionError):
            queue.mark_assigned("i1", "w2")
        assert queue.get("i1").assignment.worker_id == "w1"

    def test_failure_cascades_to_pending_dependents(self, queue):
        queue.submit(make_item("a"))
        queue.submit(make_item("b", dependencies=after("a")))
        queue.submit(make_item("c", dependencies=after("b")))
        queue.mark_assigned("a", "w1")
        queue.mark_failed("a", "boom", "w1")

        assert queue.get("a").status_reason == "boom"
        assert queue.get("b").status is WorkStatus.FAILED
        assert queue.get("b").status_reason == "dependency_failed:a"
        assert queue.get("c").status_reason == "dependency_failed:b"

    def test_dependent_of_already_failed_item_fails_on_submit(self, queue):
        queue.submit(make_item("a"))
        queue.mark_assigned("a", "w1")
        queue.mark_failed("a", "boom", "w1")

        queue.submit(make_item("b", dependencies=after("a")))
        item = queue.get("b")
        assert item.status is WorkStatus.FAILED
        assert item.status_reason == "dependency_failed:a"
        assert queue.dequeue_ready() == []

    def test_dependent_of_archived_failure_fails_on_submit(self, queue):
        queue.submit(make_item("a"))
        queue.cancel("a")
        queue.archive("a")

        queue.submit(make_item("b", dependencies=after("a")))
        assert queue.get("b").status_reason == "dependency_failed:a"

    def test_failed_on_submit_cascades_to_waiting_items(self, queue):
        queue.submit(make_item("c", dependencies=after("b")))
        assert queue.get("c").status_reason == "blocked_on:b"
        queue.submit(make_item("a"))
        queue.cancel("a")

        queue.submit(make_item("b", dependencies=after("a")))
        assert queue.get("c").status is WorkStatus.FAILED
        assert queue.get("c").status_reason == "dependency_failed:b"

    def test_requeue_releases_workers(self, queue):
        released = []
        queue.add_listener(lambda event, item, workers: released.append((event, item.item_id, workers)))
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1", collaborators=["w2"])

        item = queue.requeue("i1", "worker_timeout")
        assert item.status is WorkStatus.PENDING
        assert item.status_reason == "worker_timeout"
        assert item.assignment.worker_id is None
        assert released == [(REQUEUED, "i1", ["w1", "w2"])]

    def test_release_handler_runs_before_listeners(self, queue):
        calls = []
        queue.add_listener(lambda event, item, workers: calls.append("listener"))
        queue.set_release_handler(lambda event, item, workers: calls.append("handler"))
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1")
        queue.requeue("i1", "manual")
        assert calls == ["handler", "listener"]

    def test_requeue_for_a_worker_no_longer_bound(self, queue):
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w2", collaborators=["w3"])
        with pytest.raises(InvalidTransitionError):
            queue.requeue("i1", "worker_timeout", worker_id="w1")
        assert queue.get("i1").assignment.worker_id == "w2"
        assert queue.requeue("i1", "worker_timeout", worker_id="w3").status is WorkStatus.PENDING

    def test_requeue_requires_active(self, queue):
        queue.submit(make_item("i1"))
        with pytest.raises(InvalidTransitionError):
            queue.requeue("i1", "manual")

    def test_cancel_active_notifies(self, queue):
        released = []
        queue.add_listener(lambda event, item, workers: released.append((event, workers)))
        queue.submit(make_item("i1"))
        queue.mark_assigned("i1", "w1")
        queue.cancel("i1")
        assert queue.get("i1").status_reason == CANCELLED
        assert released == [(CANCELLED, ["w1"])]

    def test_cancel_pending_is_silent(self, queue):
        released = []
        queue.add_listener(lambda *args: released.append(args))
        queue.submit(make_item("i1"))
        queue.cancel("i1")
        assert queue.get("i1").status is WorkStatus.FAILED
        assert released == []
        with pytest.raises(InvalidTransitionError):
            queue.cancel("i1")

    def test_archive_only_terminal(self, queue, store):
        queue.submit(make_item("i1"))
        with pytest.raises(InvalidTransitionError):
            queue.archive("i1")
        queue.cancel("i1")
        queue.archive("i1")
        assert "i1" not in queue
        assert store.get(WORK_NAMESPACE, "i1") is None
        with pytest.raises(NotFoundError):
            queue.get("i1")

    def test_restore_from_store(self, queue, store, clock):
        queue.submit(make_item("i1"))
        queue.submit(make_item("i2", dependencies=after("i1")))
        queue.mark_assigned("i1", "w1")

        restored = WorkQueue(store, clock=clock)
        assert restored.restore() == 2
        assert restored.get("i1").assignment.worker_id == "w1"
        assert restored.dependents("i1") == ["i2"]
