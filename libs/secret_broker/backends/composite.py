"""
Composite store: one primary backend with ordered read fallbacks.

Reads try the primary first. Only a failure moves on to the fallbacks; an
absent result from the primary is an answer and is returned as-is. When
every member fails, the primary's error is raised.

Writes, deletes, rotations and listings go to the primary only, so the
fallbacks are never written through this store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

logger = logging.getLogger(__name__)


class CompositeSecretBackend(SecretBackend):
    """Failover reads across members, single-writer to the primary."""

    provider = "composite"

    def __init__(self, primary: SecretBackend, fallbacks: Sequence[SecretBackend] = ()) -> None:
        if primary in fallbacks:
            raise ValueError("primary backend must not also be a fallback")
        self._primary = primary
        self._fallbacks = list(fallbacks)

    @property
    def primary(self) -> SecretBackend:
        return self._primary

    @property
    def members(self) -> list[SecretBackend]:
        return [self._primary, *self._fallbacks]

    async def connect(self) -> None:
        """Connect every member. The primary must connect; fallbacks may fail."""
        await self._primary.connect()
        for fallback in self._fallbacks:
            try:
                await fallback.connect()
            except Exception as e:
                logger.warning(
                    "Fallback backend failed to connect",
                    extra={"backend": fallback.provider, "error": str(e)},
                )

    async def close(self) -> None:
        for member in self.members:
            try:
                await member.close()
            except Exception as e:
                logger.warning(
                    "Backend failed to close cleanly",
                    extra={"backend": member.provider, "error": str(e)},
                )

    async def get(self, key: str) -> Secret | None:
        try:
            return await self._primary.get(key)
        except Exception as primary_error:
            logger.warning(
                "Primary backend failed, trying fallbacks",
                extra={
                    "secret_name": key,
                    "backend": self._primary.provider,
                    "error": str(primary_error),
                },
            )
            for fallback in self._fallbacks:
                try:
                    secret = await fallback.get(key)
                except Exception as fallback_error:
                    logger.warning(
                        "Fallback backend failed",
                        extra={
                            "secret_name": key,
                            "backend": fallback.provider,
                            "error": str(fallback_error),
                        },
                    )
                    continue
                logger.info(
                    "Secret served by fallback backend",
                    extra={"secret_name": key, "backend": fallback.provider},
                )
                return secret
            raise primary_error

    async def set(
        self,
        key: str,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
    ) -> None:
        await self._primary.set(key, value, metadata)

    async def delete(self, key: str) -> None:
        await self._primary.delete(key)

    async def rotate(self, key: str) -> None:
        await self._primary.rotate(key)

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        return await self._primary.list_keys(prefix)

    async def list_versions(self, key: str) -> list[str]:
        return await self._primary.list_versions(key)

    async def warmup(self, keys: Iterable[str]) -> None:
        await self._primary.warmup(list(keys))

    async def health(self) -> BackendHealth:
        reports: dict[str, Any] = {}
        primary_health = await self._member_health(self._primary)
        reports[self._primary.provider] = primary_health.model_dump()
        fallbacks_healthy = True
        for fallback in self._fallbacks:
            report = await self._member_health(fallback)
            reports[fallback.provider] = report.model_dump()
            fallbacks_healthy = fallbacks_healthy and report.is_healthy

        details = {"primary": self._primary.provider, "members": reports}
        if not primary_health.is_healthy:
            return BackendHealth(
                status="unhealthy",
                provider=self.provider,
                details=details,
                error=primary_health.error or f"primary {self._primary.provider} unhealthy",
            )
        return BackendHealth(
            status="healthy" if fallbacks_healthy else "degraded",
            provider=self.provider,
            details=details,
        )

    @staticmethod
    async def _member_health(member: SecretBackend) -> BackendHealth:
        try:
            return await member.health()
        except Exception as e:
            return BackendHealth(status="unhealthy", provider=member.provider, error=str(e))
