"""Shared pytest fixtures for the arena test suite."""

from __future__ import annotations

import datetime
import random

import pytest

from ledger import BOT_POOL, InMemoryAccountStore
from settlement import SettlementService

A, B, C, D, E, F = "circle", "square", "triangle", "diamond", "star", "hexagon"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAccountStore:
    """Player with k$ 10.00, bot pool with k$ 100.00, empty rake pool."""
    return InMemoryAccountStore({"player": 1000, BOT_POOL: 10000})


@pytest.fixture
def service(store: InMemoryAccountStore) -> SettlementService:
    fixed = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    return SettlementService(store, clock=lambda: fixed)
