"""
Fixtures for secret broker tests.

Brokers run over the shared FakeBackend with a controllable clock and a
recording audit sink.
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta

import pytest

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.broker import SecretBroker
from libs.secret_broker.config import ClusterBackendConfig

_namespaces = itertools.count()


class FakeClock:
    """Controllable time source for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def unique_config() -> ClusterBackendConfig:
    """A configuration no other live broker in the test process uses."""
    return ClusterBackendConfig(namespace=f"test-{next(_namespaces)}")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def make_broker(fake_backend, clock, sink):
    """
    Factory for brokers over the fake backend. Every broker it creates is
    closed after the test so the live-broker registry stays clean.
    """
    created: list[SecretBroker] = []

    def _make(
        config: ClusterBackendConfig | None = None,
        backend: SecretBackend | None = None,
        ttl_seconds: float = 300,
        **kwargs,
    ) -> SecretBroker:
        broker = SecretBroker(
            config or unique_config(),
            cache_ttl=timedelta(seconds=ttl_seconds),
            audit_sink=sink,
            backend=backend or fake_backend,
            clock=clock,
            **kwargs,
        )
        created.append(broker)
        return broker

    yield _make

    for broker in created:
        await broker.close()


@pytest.fixture()
async def broker(make_broker, fake_backend, sink) -> SecretBroker:
    """Initialized broker with counters and audit events reset after warmup."""
    instance = make_broker()
    await instance.initialize()
    fake_backend.reset_counters()
    sink.events.clear()
    return instance
