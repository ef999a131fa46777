"""Tests for worker status tracking, liveness and progress reporting."""
import pytest

from conftest import make_item, make_worker
from workmesh.coordination import Outcome, WorkStatus, WorkerStatus
from workmesh.coordination.notifications import REQUEUE
from workmesh.errors import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    ReservationConflictError,
)
from workmesh.logs import LogFilter


class TestStatusTransitions:
    def test_available_working_overloaded_and_back(self, manual_manager):
        manual_manager.register_worker(make_worker("W1", "transport"))
        assert manual_manager.get_worker("W1").status is WorkerStatus.AVAILABLE

        manual_manager.submit_work(make_item("a", "transport", estimated_cost=0.5))
        manual_manager.assign_pending()
        assert manual_manager.get_worker("W1").status is WorkerStatus.WORKING

        manual_manager.submit_work(make_item("b", "transport", estimated_cost=0.45))
        manual_manager.assign_pending()
        assert manual_manager.get_worker("W1").status is WorkerStatus.OVERLOADED

        manual_manager.report_outcome("W1", "b", Outcome.completed())
        assert manual_manager.get_worker("W1").status is WorkerStatus.WORKING
        manual_manager.report_outcome("W1", "a", Outcome.completed())
        profile = manual_manager.get_worker("W1")
        assert profile.status is WorkerStatus.AVAILABLE
        assert profile.workload == 0.0

    def test_overloaded_worker_gets_no_more_work(self, manual_manager):
        manual_manager.register_worker(make_worker("W1", "transport"))
        manual_manager.submit_work(make_item("a", "transport", estimated_cost=0.95))
        manual_manager.submit_work(make_item("b", "transport", estimated_cost=0.05))
        manual_manager.assign_pending()
        assert manual_manager.get_work("b").status is WorkStatus.PENDING

    def test_reserve_rejects_unavailable_worker(self, manual_manager, clock):
        manual_manager.register_worker(make_worker("W1", "transport"))
        clock.advance(seconds=121)
        manual_manager.check_liveness()
        with pytest.raises(CapacityExceededError):
            manual_manager.status.reserve("W1", "x", 0.1)

    def test_reserve_twice_for_same_item_is_rejected(self, manual_manager):
        manual_manager.register_worker(make_worker("W1", "transport"))
        manual_manager.status.reserve("W1", "x", 0.1)
        with pytest.raises(ReservationConflictError):
            manual_manager.status.reserve("W1", "x", 0.1)
        assert manual_manager.get_worker("W1").workload == pytest.approx(0.1)

    def test_status_listener_sees_transitions(self, manual_manager):
        seen = []
        manual_manager.status.add_listener(lambda w, old, new: seen.append((w, old.value, new.value)))
        manual_manager.register_worker(make_worker("W1", "transport"))
        manual_manager.submit_work(make_item("a", "transport"))
        manual_manager.assign_pending()
        manual_manager.report_outcome("W1", "a", Outcome.completed())
        assert seen == [("W1", "available", "working"), ("W1", "working", "available")]


class TestLiveness:
    def test_timeout_requeues_exactly_once(self, manager, clock):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        assert manager.get_work("I1").assignment.worker_id == "W1"

        clock.advance(seconds=121)
        assert manager.check_liveness() == ["W1"]
        assert manager.check_liveness() == []

        item = manager.get_work("I1")
        assert item.status is WorkStatus.PENDING
        requeues = [h for h in item.history if h.event == "requeued"]
        assert len(requeues) == 1
        assert requeues[0].reason == "worker_timeout"
        assert requeues[0].worker_id == "W1"

        profile = manager.get_worker("W1")
        assert profile.status is WorkerStatus.UNAVAILABLE
        assert profile.workload == 0.0

    def test_requeued_work_moves_to_live_worker(self, manager, clock):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        manager.register_worker(make_worker("W2", "transport"))

        clock.advance(seconds=90)
        manager.heartbeat("W2")
        clock.advance(seconds=40)
        manager.check_liveness()

        assert manager.get_work("I1").assignment.worker_id == "W2"
        kinds = [n.kind for n in manager.hub.drain("W1")]
        assert kinds[-1] == REQUEUE

    def test_heartbeat_within_timeout_keeps_worker(self, manager, clock):
        manager.register_worker(make_worker("W1", "transport"))
        clock.advance(seconds=100)
        manager.heartbeat("W1")
        clock.advance(seconds=100)
        assert manager.check_liveness() == []

    def test_heartbeat_revives_unavailable_worker(self, manager, clock):
        manager.register_worker(make_worker("W1", "transport"))
        clock.advance(seconds=200)
        manager.check_liveness()
        assert manager.heartbeat("W1") is WorkerStatus.AVAILABLE

    def test_deregistration_requeues(self, manager):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        manager.register_worker(make_worker("W2", "transport"))
        manager.deregister_worker("W1")

        item = manager.get_work("I1")
        assert item.history[-2].reason == "worker_deregistered"
        assert item.assignment.worker_id == "W2"
        with pytest.raises(NotFoundError):
            manager.get_worker("W1")


class TestReports:
    def test_progress_records_response_time(self, manager, clock):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        clock.advance(seconds=3)
        item = manager.report_progress("W1", "I1", 0.2)
        assert item.status is WorkStatus.IN_PROGRESS
        assert item.assignment.started_at == clock.now

        started = manager.query_logs(LogFilter(operation="work.started")).entries
        assert len(started) == 1
        assert started[0].duration_ms == pytest.approx(3000)
        assert manager.get_performance_report("W1").avg_response_time == pytest.approx(3.0)

        manager.report_progress("W1", "I1", 0.6)
        assert len(manager.query_logs(LogFilter(operation="work.started")).entries) == 1

    def test_progress_from_unbound_worker(self, manager):
        manager.register_worker(make_worker("W1", "transport"))
        manager.register_worker(make_worker("W2", "payments"))
        manager.submit_work(make_item("I1", "transport"))
        with pytest.raises(InvalidTransitionError):
            manager.report_progress("W2", "I1", 0.5)
        with pytest.raises(NotFoundError):
            manager.report_progress("ghost", "I1", 0.5)

    def test_blocked_then_resumed(self, manager):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        manager.report_blocked("W1", "I1", "waiting_on_vendor")
        assert manager.get_work("I1").status is WorkStatus.BLOCKED
        manager.report_progress("W1", "I1", 0.5)
        assert manager.get_work("I1").status is WorkStatus.IN_PROGRESS

    def test_outcome_for_finished_item_rejected(self, manager):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        manager.report_outcome("W1", "I1", Outcome.completed())
        with pytest.raises(InvalidTransitionError):
            manager.report_outcome("W1", "I1", Outcome.completed())

    def test_failed_outcome_marks_item_failed(self, manager):
        manager.register_worker(make_worker("W1", "transport"))
        manager.submit_work(make_item("I1", "transport"))
        manager.report_outcome("W1", "I1", Outcome.failed(detail="disk full"))
        item = manager.get_work("I1")
        assert item.status is WorkStatus.FAILED
        assert item.status_reason == "disk full"
        assert manager.get_worker("W1").workload == 0.0
