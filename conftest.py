"""Shared pytest fixtures for workmesh tests."""
from datetime import datetime, timedelta

import pytest

from workmesh.config import Settings
from workmesh.coordination import (
    Capabilities,
    CoordinationManager,
    Requirements,
    WorkItem,
    WorkerProfile,
)
from workmesh.storage import InMemoryStore


class ManualClock:
    """A clock tests move by hand."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_worker(worker_id: str, *domains: str, expertise: str = "intermediate",
                specializations=()) -> WorkerProfile:
    return WorkerProfile(
        worker_id=worker_id,
        capabilities=Capabilities(
            domains=frozenset(domains),
            expertise=expertise,
            specializations=frozenset(specializations),
        ),
    )


def make_item(item_id: str, *domains: str, expertise: str = "novice", complexity: str = "medium",
              priority: int = 0, **kwargs) -> WorkItem:
    return WorkItem(
        item_id=item_id,
        priority=priority,
        requirements=Requirements(domains=frozenset(domains), expertise=expertise,
                                  complexity=complexity),
        **kwargs,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings: no jitter, fast backoff, no file logging."""
    return Settings(backoff_jitter=False, backoff_initial=0.01, backoff_max=0.05, log_file=None)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def manager(settings, store, clock) -> CoordinationManager:
    coord = CoordinationManager(settings, store=store, clock=clock)
    yield coord
    coord.shutdown()


@pytest.fixture
def manual_manager(store, clock) -> CoordinationManager:
    """Manager that only assigns when assign_pending() is called."""
    coord = CoordinationManager(
        Settings(auto_assign=False, backoff_jitter=False, backoff_initial=0.01, backoff_max=0.05),
        store=store, clock=clock,
    )
    yield coord
    coord.shutdown()
