"""
Backend store contract.

Every credential store the broker can front implements SecretBackend:

    SecretBackend (ABC)
    ├── KubernetesSecretBackend - cluster-native store (kubernetes.py)
    ├── VaultSecretBackend - distributed KV store (vault.py)
    ├── KMSSecretBackend - cloud KMS-backed store (kms.py)
    └── CompositeSecretBackend - primary with ordered fallbacks (composite.py)

Read semantics:
    - get() returns None when the key does not exist. NotFound is an answer,
      not a failure; the broker caches it like any other value.
    - get() raises SecretAccessError when the store cannot answer
      (auth, connectivity, sealed, malformed payload). The broker turns this
      into a stale fallback or an absent result.

Write semantics:
    - set/delete/rotate raise SecretWriteError (or SecretNotFoundError when
      the operation needs an existing secret) and never swallow failures.

Retry and timeout policy is owned by each adapter.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from types import TracebackType
from typing import ClassVar

from libs.secret_broker.exceptions import SecretAccessError, SecretNotFoundError, SecretWriteError
from libs.secret_broker.generator import rotation_value
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

logger = logging.getLogger(__name__)

ROTATED_AT_LABEL = "rotated_at"


class SecretBackend(ABC):
    """
    Abstract base class for all backend stores.

    Implementations are constructed from their config model, then
    ``connect()``-ed once by the broker. All I/O methods are coroutines;
    adapters wrapping blocking SDKs run them in a worker thread.
    """

    provider: ClassVar[str]

    async def connect(self) -> None:  # noqa: B027 - optional hook, default no-op
        """Open connections and verify credentials."""

    async def close(self) -> None:  # noqa: B027 - optional hook, default no-op
        """Release connections. Safe to call more than once."""

    @abstractmethod
    async def get(self, key: str) -> Secret | None:
        """
        Read a secret.

        Returns:
            The secret, or None if the key does not exist

        Raises:
            SecretAccessError: Store unreachable, unauthorized or response unusable
        """

    @abstractmethod
    async def set(
        self,
        key: str,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
    ) -> None:
        """
        Create or replace a secret.

        Raises:
            SecretWriteError: Write rejected or store unreachable
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete a secret.

        Raises:
            SecretNotFoundError: Key does not exist
            SecretWriteError: Delete rejected or store unreachable
        """

    async def rotate(self, key: str) -> None:
        """
        Replace the secret's material.

        Default for stores without native rotation: read the current secret,
        generate replacement material by key name, write it back with the
        existing metadata plus a ``rotated_at`` label.

        Raises:
            SecretNotFoundError: Key does not exist
            SecretWriteError: Current value could not be read, or the write failed
        """
        try:
            current = await self.get(key)
        except SecretAccessError as e:
            raise SecretWriteError(
                key, self.provider, f"Cannot read current secret for rotation: {e}"
            ) from e
        if current is None:
            raise SecretNotFoundError(key, self.provider, "Cannot rotate a missing secret")

        replacement = rotation_value(key)
        value: SecretValue
        if isinstance(current.value, dict):
            value = {**current.value, "value": replacement}
        else:
            value = replacement

        metadata = (current.metadata or SecretMetadata()).with_label(
            ROTATED_AT_LABEL, datetime.now(UTC).isoformat()
        )
        await self.set(key, value, metadata)
        logger.info("Secret rotated", extra={"secret_name": key, "backend": self.provider})

    @abstractmethod
    async def health(self) -> BackendHealth:
        """Report store health. Implementations must not raise."""

    async def warmup(self, keys: Iterable[str]) -> None:
        """
        Best-effort hint that keys will be read soon.

        Stores without a prefetch facility ignore it; the broker's own warmup
        reads the keys through the cache regardless.
        """

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        """
        List secret keys (names only, never values), sorted.

        Raises:
            SecretAccessError: Listing not permitted or store unreachable
        """
        raise SecretAccessError(
            f"list_secrets(prefix={prefix})",
            self.provider,
            f"Listing is not supported by the {self.provider} store",
        )

    async def list_versions(self, key: str) -> list[str]:
        """
        Version identifiers the store keeps for key.

        Default for stores without version history: the current version only.

        Raises:
            SecretNotFoundError: Key does not exist
            SecretAccessError: Store could not answer
        """
        current = await self.get(key)
        if current is None:
            raise SecretNotFoundError(key, self.provider)
        return [current.version] if current.version else []

    async def __aenter__(self) -> SecretBackend:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
