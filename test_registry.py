"""Tests for the worker registry and fit scoring."""
import itertools

import pytest

from conftest import make_worker
from workmesh.config import Settings
from workmesh.coordination import PerformanceProfile, Requirements, WorkerRegistry, WorkerStatus
from workmesh.coordination.registry import WORKER_NAMESPACE, fit_score, score_factors
from workmesh.errors import DuplicateWorkerError, NotFoundError
from workmesh.storage import InMemoryStore


@pytest.fixture
def registry(store) -> WorkerRegistry:
    return WorkerRegistry(store, Settings())


class TestFitScore:
    def test_exact_match_scores_one(self):
        worker = make_worker("w1", "transport", expertise="expert")
        requirements = Requirements(domains={"transport"}, expertise="expert")
        factors = score_factors(worker, requirements)
        assert factors == {"domain": 1.0, "expertise": 1.0, "specialization": 1.0, "complexity": 1.0}
        assert fit_score(factors, Settings().fit_weights()) == pytest.approx(1.0)

    def test_partial_domain_overlap(self):
        worker = make_worker("w1", "transport")
        requirements = Requirements(domains={"transport", "payments"})
        score = fit_score(score_factors(worker, requirements), Settings().fit_weights())
        assert score == pytest.approx(0.35 * 0.5 + 0.25 + 0.20 + 0.20)

    def test_expertise_shortfall_halves_factor(self):
        worker = make_worker("w1", "transport", expertise="novice")
        factors = score_factors(worker, Requirements(domains={"transport"}, expertise="expert",
                                                     complexity="critical"))
        assert factors["expertise"] == 0.5
        assert factors["complexity"] == pytest.approx(0.25)

    def test_scores_stay_in_unit_interval(self):
        weights = Settings().fit_weights()
        levels = ["novice", "intermediate", "advanced", "expert"]
        complexities = ["low", "medium", "high", "critical"]
        domain_sets = [(), ("a",), ("a", "b")]
        for have, need, complexity, offered, required in itertools.product(
                levels, levels, complexities, domain_sets, domain_sets):
            worker = make_worker("w", *offered, expertise=have)
            requirements = Requirements(domains=set(required), expertise=need, complexity=complexity)
            score = fit_score(score_factors(worker, requirements), weights)
            assert 0.0 <= score <= 1.0

    def test_zero_weights_score_zero(self):
        factors = {"domain": 1.0, "expertise": 1.0, "specialization": 1.0, "complexity": 1.0}
        assert fit_score(factors, {}) == 0.0


class TestWorkerRegistry:
    def test_register_and_get(self, registry):
        registry.register(make_worker("w1", "transport"))
        assert "w1" in registry
        assert registry.get("w1").display_name == "w1"

    def test_duplicate_registration_rejected(self, registry):
        registry.register(make_worker("w1"))
        with pytest.raises(DuplicateWorkerError) as exc_info:
            registry.register(make_worker("w1"))
        assert exc_info.value.worker_id == "w1"

    def test_unknown_worker_raises_not_found(self, registry):
        with pytest.raises(NotFoundError):
            registry.get("ghost")
        with pytest.raises(KeyError):
            registry.deregister("ghost")

    def test_update_merges_performance(self, registry):
        registry.register(make_worker("w1"))
        registry.update("w1", performance={"success_rate": 0.5})
        profile = registry.get("w1")
        assert profile.performance.success_rate == 0.5
        assert profile.performance.quality_score == 1.0

    def test_update_coerces_status(self, registry):
        registry.register(make_worker("w1"))
        registry.update("w1", status="overloaded")
        assert registry.get("w1").status is WorkerStatus.OVERLOADED

    def test_update_rejects_unknown_fields(self, registry):
        registry.register(make_worker("w1"))
        with pytest.raises(ValueError):
            registry.update("w1", worker_id="w2")

    def test_snapshot_is_detached(self, registry):
        registry.register(make_worker("w1"))
        copy = registry.snapshot("w1")
        copy.workload = 0.9
        assert registry.get("w1").workload == 0.0

    def test_candidates_filtered_by_threshold(self, registry):
        registry.register(make_worker("match", "transport", expertise="expert"))
        registry.register(make_worker("other", "payments", expertise="expert"))
        candidates = registry.find_candidates(Requirements(domains={"transport"}))
        assert [c.worker_id for c in candidates] == ["match"]
        assert all(c.score >= 0.7 for c in candidates)

    def test_candidate_ties_prefer_success_then_low_workload(self, registry):
        for worker_id in ("a", "b", "c"):
            registry.register(make_worker(worker_id, "transport", expertise="expert"))
        registry.update("a", performance=PerformanceProfile(success_rate=0.6))
        registry.update("b", workload=0.5)
        registry.update("c", workload=0.1)
        ranked = [c.worker_id for c in registry.find_candidates(Requirements(domains={"transport"}))]
        assert ranked == ["c", "b", "a"]

    def test_exclude(self, registry):
        registry.register(make_worker("a", "transport"))
        registry.register(make_worker("b", "transport"))
        ranked = registry.find_candidates(Requirements(domains={"transport"}), exclude=["a"])
        assert [c.worker_id for c in ranked] == ["b"]

    def test_write_through_and_restore(self, store):
        registry = WorkerRegistry(store)
        registry.register(make_worker("w1", "transport", expertise="advanced"))
        registry.update("w1", workload=0.25)
        assert store.get(WORKER_NAMESPACE, "w1")["workload"] == 0.25

        restored = WorkerRegistry(store)
        assert restored.restore() == 1
        profile = restored.get("w1")
        assert profile.capabilities.domains == frozenset({"transport"})
        assert profile.capabilities.expertise.name == "ADVANCED"

    def test_deregister_removes_record(self, store):
        registry = WorkerRegistry(store)
        registry.register(make_worker("w1"))
        registry.deregister("w1")
        assert "w1" not in registry
        assert store.get(WORKER_NAMESPACE, "w1") is None


def test_in_memory_store_is_default():
    registry = WorkerRegistry()
    assert isinstance(registry.store, InMemoryStore)
