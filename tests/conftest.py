"""
Shared fixtures for the test suite.

Settings are built from a clean environment so a developer's shell or .env
file cannot change which backend store the tests resolve. FakeBackend is an
in-memory store with per-key read counters and failure injection, so broker
behavior can be asserted without a real credential store.
"""

from __future__ import annotations

import itertools
from collections import Counter

import pytest

from config.settings import Settings
from libs.secret_broker.audit import AuditEvent, AuditOperation
from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.exceptions import SecretAccessError, SecretNotFoundError
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

_SETTINGS_ENV = (
    "SECRET_PROVIDER",
    "DEPLOYMENT_ENV",
    "K8S_NAMESPACE",
    "K8S_API_SERVER",
    "VAULT_ENDPOINT",
    "VAULT_TOKEN",
    "VAULT_MOUNT_POINT",
    "AWS_REGION",
    "AWS_KMS_KEY_ID",
    "SECRET_COMPOSITE_PRIMARY",
    "SECRET_CACHE_TTL_SECONDS",
    "SECRET_CACHE_REFRESH_SECONDS",
    "LOG_LEVEL",
)


class FakeBackend(SecretBackend):
    """
    In-memory SecretBackend.

    Attributes:
        secrets: Stored secrets by key
        reads: Number of get() calls per key
        calls: Number of calls per operation name
        failing_keys: Keys whose get() raises SecretAccessError
        failures: Operation name -> exception raised by that operation
    """

    provider = "fake"

    def __init__(self) -> None:
        self.secrets: dict[str, Secret] = {}
        self.reads: Counter[str] = Counter()
        self.calls: Counter[str] = Counter()
        self.failing_keys: set[str] = set()
        self.failures: dict[str, Exception] = {}
        self.warmup_hints: list[list[str]] = []
        self.connected = False
        self.closed = False
        self._versions = itertools.count(1)

    def seed(self, key: str, value: SecretValue, metadata: SecretMetadata | None = None) -> None:
        self.secrets[key] = Secret(
            key=key, value=value, metadata=metadata, version=str(next(self._versions))
        )

    def reset_counters(self) -> None:
        self.reads.clear()
        self.calls.clear()

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        error = self.failures.get(operation)
        if error is not None:
            raise error

    async def connect(self) -> None:
        self._check("connect")
        self.connected = True

    async def close(self) -> None:
        self._check("close")
        self.closed = True

    async def get(self, key: str) -> Secret | None:
        self.reads[key] += 1
        self._check("get")
        if key in self.failing_keys:
            raise SecretAccessError(key, self.provider, "injected read failure")
        return self.secrets.get(key)

    async def set(
        self, key: str, value: SecretValue, metadata: SecretMetadata | None = None
    ) -> None:
        self._check("set")
        self.seed(key, value, metadata)

    async def delete(self, key: str) -> None:
        self._check("delete")
        if key not in self.secrets:
            raise SecretNotFoundError(key, self.provider)
        del self.secrets[key]

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        self._check("list")
        return sorted(key for key in self.secrets if not prefix or key.startswith(prefix))

    async def warmup(self, keys) -> None:
        self._check("warmup")
        self.warmup_hints.append(list(keys))

    async def health(self) -> BackendHealth:
        self._check("health")
        return BackendHealth(status="healthy", provider=self.provider)


class RecordingSink:
    """Audit sink that keeps every event."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of(self, operation: AuditOperation) -> list[AuditEvent]:
        return [event for event in self.events if event.operation is operation]


@pytest.fixture()
def clean_env(monkeypatch):
    """Remove broker settings from the environment."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture()
def settings(clean_env) -> Settings:
    """Default settings (cluster store) without reading .env."""
    return Settings(_env_file=None)


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def backend_factory() -> type[FakeBackend]:
    """The FakeBackend class, for tests that need more than one store."""
    return FakeBackend


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()
