"""
Secret broker: the process-wide entry point for secret reads and mutations.

Orchestrates the backend store, the TTL cache and the audit trail:

    caller → broker → cache (fresh? done) → backend.get → cache update
           → audit event → result

Contract:
    - Reads never raise for missing secrets or an unavailable backend. They
      degrade to the last value this process observed, or None.
    - Mutations (set, delete, rotate, generate-and-store) always surface
      backend failures. The cache entry is invalidated only after the backend
      call succeeds.
    - Every broker-level operation attempt emits exactly one audit event.
    - One live broker per backend configuration per process.

Lifecycle is owned by the composition root:

    >>> async with broker_lifespan() as broker:
    ...     url = await broker.get_secret(SecretKeys.DATABASE_URL)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from libs.secret_broker import generator
from libs.secret_broker.audit import (
    AuditEvent,
    AuditHandler,
    AuditOperation,
    AuditSink,
    AuditSource,
    AuditTrail,
    backend_latency_seconds,
)
from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.cache import DEFAULT_TTL, Clock, SecretCache
from libs.secret_broker.config import BackendConfig, config_fingerprint
from libs.secret_broker.exceptions import SecretConfigurationError
from libs.secret_broker.factory import create_backend
from libs.secret_broker.models import (
    CRITICAL_SECRETS,
    BrokerHealth,
    LookupStatus,
    Secret,
    SecretKeys,
    SecretLookup,
    SecretMetadata,
    SecretValue,
    key_name,
)
from libs.secret_broker.validator import validate_secret_value

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

# Live brokers keyed by configuration fingerprint
_live_brokers: dict[str, SecretBroker] = {}
_registry_lock = threading.Lock()

# Audit error text for operations interrupted by task cancellation
CANCELLED = "cancelled"


class SecretBroker:
    """
    Cache-fronted, audited access to one backend store.

    Attributes:
        config: Backend configuration the store was resolved from
        provider: Provider name of the resolved store
    """

    def __init__(
        self,
        config: BackendConfig,
        *,
        cache_ttl: timedelta = DEFAULT_TTL,
        audit_sink: AuditSink | None = None,
        backend: SecretBackend | None = None,
        clock: Clock | None = None,
        refresh_interval: timedelta | None = None,
    ) -> None:
        """
        Initialize SecretBroker. No I/O happens until initialize().

        Args:
            config: Backend configuration (resolved into a store here, once)
            cache_ttl: Freshness window of cached values (default: 5 minutes)
            audit_sink: Receiver of audit events (default: structured log sink)
            backend: Pre-built store to use instead of resolving config
            clock: Time source for the cache (tests inject a fake)
            refresh_interval: Period of the background clear-and-warmup task
                (default: no background refresh)
        """
        self._config = config
        self._fingerprint = config_fingerprint(config)
        self._backend = backend if backend is not None else create_backend(config)
        self._cache = SecretCache(ttl=cache_ttl, clock=clock)
        self._audit = AuditTrail(audit_sink)
        if refresh_interval is not None and refresh_interval.total_seconds() <= 0:
            raise ValueError("refresh_interval must be positive")
        self._refresh_interval = refresh_interval
        self._refresh_task: asyncio.Task[None] | None = None
        self._initialized = False
        self._closed = False

    @property
    def config(self) -> BackendConfig:
        return self._config

    @property
    def provider(self) -> str:
        return self._backend.provider

    @property
    def backend(self) -> SecretBackend:
        return self._backend

    @property
    def cache(self) -> SecretCache:
        return self._cache

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Connect the backend store and warm up the critical secrets.

        Warmup failures are logged and never fail initialization.

        Raises:
            SecretConfigurationError: Another broker with the same configuration is live
            SecretAccessError: Backend store could not be connected
        """
        if self._initialized:
            return
        self._ensure_open()
        self._register()
        try:
            await self._backend.connect()
        except Exception:
            self._release()
            raise
        self._initialized = True
        logger.info(
            "Secret broker initialized",
            extra={"backend": self.provider, "cache_ttl_seconds": self._cache.ttl.total_seconds()},
        )
        await self.warmup()
        if self._refresh_interval is not None:
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(self._refresh_interval.total_seconds()),
                name="secret-broker-refresh",
            )

    async def _refresh_loop(self, interval_seconds: float) -> None:
        """Clear the cache and re-run the critical warmup every interval."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.refresh_secrets()
            except Exception as e:
                logger.error(
                    "Periodic secret refresh failed",
                    extra={"backend": self.provider, "error": str(e), "error_type": type(e).__name__},
                )

    async def _stop_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        """Stop background refresh, close the store, drop cached values, release the config."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._stop_refresh()
            if self._initialized:
                await self._backend.close()
        finally:
            self._cache.clear()
            self._initialized = False
            self._release()
        logger.info("Secret broker closed", extra={"backend": self.provider})

    async def __aenter__(self) -> SecretBroker:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _register(self) -> None:
        with _registry_lock:
            existing = _live_brokers.get(self._fingerprint)
            if existing is not None and existing is not self:
                raise SecretConfigurationError(
                    f"A secret broker for this '{self.provider}' configuration is already live "
                    "in this process. Close it before initializing another.",
                    backend=self.provider,
                )
            _live_brokers[self._fingerprint] = self

    def _release(self) -> None:
        with _registry_lock:
            if _live_brokers.get(self._fingerprint) is self:
                del _live_brokers[self._fingerprint]

    def _ensure_open(self) -> None:
        if self._closed:
            raise SecretConfigurationError("Secret broker is closed", backend=self.provider)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def on_audit(self, handler: AuditHandler) -> AuditHandler:
        """Register an extra audit handler. Returns the handler."""
        self._audit.add_handler(handler)
        return handler

    def _emit(
        self,
        operation: AuditOperation,
        key: str,
        source: AuditSource,
        success: bool,
        error: str | None = None,
        actor: str | None = None,
    ) -> None:
        self._audit.emit(
            AuditEvent(
                operation=operation,
                secret_key=key,
                source=source,
                success=success,
                error=error,
                actor=actor,
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_key(key: str | SecretKeys) -> str:
        if not isinstance(key, str):
            raise TypeError(f"secret key must be a string, got {type(key).__name__}")
        name = key_name(key)
        if not name.strip():
            raise ValueError("secret key must not be empty")
        if ".." in name.split("/"):
            raise ValueError(f"secret key must not contain '..' path segments: {name!r}")
        return name

    async def _fetch(self, key: str) -> Secret | None:
        with backend_latency_seconds.labels(operation="get").time():
            return await self._backend.get(key)

    async def lookup(self, key: str | SecretKeys, *, actor: str | None = None) -> SecretLookup:
        """
        Read a secret through the cache and report how the read was satisfied.

        Never raises for a missing secret or a failing backend.

        Raises:
            TypeError, ValueError: Malformed key
        """
        name = self._validate_key(key)
        self._ensure_open()
        try:
            result = await self._cache.get(name, self._fetch)
        except asyncio.CancelledError:
            self._emit(
                AuditOperation.GET, name, AuditSource.BACKEND, False, error=CANCELLED, actor=actor
            )
            raise
        self._emit(
            AuditOperation.GET,
            name,
            AuditSource.CACHE if result.status is LookupStatus.CACHE_HIT else AuditSource.BACKEND,
            success=not result.degraded,
            error=result.error,
            actor=actor,
        )
        return result

    async def get_secret(
        self, key: str | SecretKeys, *, actor: str | None = None
    ) -> SecretValue | None:
        """Secret value, or None when absent or unavailable with nothing cached."""
        return (await self.lookup(key, actor=actor)).value

    async def get_secret_object(
        self, key: str | SecretKeys, *, actor: str | None = None
    ) -> dict[str, Any] | None:
        """Secret as a dict; a string secret becomes ``{"value": <str>}``."""
        value = await self.get_secret(key, actor=actor)
        if value is None:
            return None
        if isinstance(value, str):
            return {"value": value}
        return dict(value)

    async def get_secrets(
        self, keys: Iterable[str | SecretKeys], *, actor: str | None = None
    ) -> dict[str, SecretValue | None]:
        """
        Read several secrets concurrently.

        A key whose read fails maps to None; the batch never aborts.
        """
        names = list(dict.fromkeys(self._validate_key(key) for key in keys))
        lookups = await asyncio.gather(*(self.lookup(name, actor=actor) for name in names))
        return {result.key: result.value for result in lookups}

    async def list_secrets(self, prefix: str | None = None) -> list[str]:
        """
        List secret keys known to the backend store (names only).

        Not cached and not audited as a secret read.

        Raises:
            SecretAccessError: Listing failed
        """
        self._ensure_open()
        with backend_latency_seconds.labels(operation="list").time():
            return await self._backend.list_keys(prefix)

    async def get_secrets_for_environment(
        self, environment: str, *, actor: str | None = None
    ) -> dict[str, SecretValue | None]:
        """
        Read every listed secret that belongs to environment.

        A key belongs to it when the environment name appears in the key or
        the key has no path segments (shared top-level secrets).

        Raises:
            ValueError: Empty environment
            SecretAccessError: Listing failed
        """
        if not environment or not environment.strip():
            raise ValueError("environment must not be empty")
        keys = [
            key
            for key in await self.list_secrets()
            if environment in key or "/" not in key
        ]
        return await self.get_secrets(keys, actor=actor)

    async def get_secret_versions(self, key: str | SecretKeys) -> list[str]:
        """
        Version identifiers the store keeps for key (metadata only, not audited).

        Raises:
            SecretNotFoundError: Key does not exist
            SecretAccessError: Store could not answer
        """
        name = self._validate_key(key)
        self._ensure_open()
        with backend_latency_seconds.labels(operation="versions").time():
            return await self._backend.list_versions(name)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _mutate(
        self,
        operation: AuditOperation,
        key: str,
        call: Callable[[], Awaitable[None]],
        actor: str | None,
    ) -> None:
        self._ensure_open()
        try:
            with backend_latency_seconds.labels(operation=operation.value).time():
                await call()
        except asyncio.CancelledError:
            self._emit(operation, key, AuditSource.BACKEND, False, error=CANCELLED, actor=actor)
            logger.warning(
                "Secret mutation cancelled",
                extra={"operation": operation.value, "secret_name": key, "backend": self.provider},
            )
            raise
        except Exception as e:
            self._emit(operation, key, AuditSource.BACKEND, False, error=str(e), actor=actor)
            logger.error(
                "Secret mutation failed",
                extra={
                    "operation": operation.value,
                    "secret_name": key,
                    "backend": self.provider,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise
        self._cache.invalidate(key)
        self._emit(operation, key, AuditSource.BACKEND, True, actor=actor)
        logger.info(
            "Secret mutated",
            extra={"operation": operation.value, "secret_name": key, "backend": self.provider},
        )

    async def set_secret(
        self,
        key: str | SecretKeys,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
        *,
        actor: str | None = None,
    ) -> None:
        """
        Create or replace a secret, then invalidate its cache entry.

        The value is not validated here; callers run validate_secret first.

        Raises:
            TypeError, ValueError: Malformed key or value
            SecretWriteError: Backend rejected the write
        """
        name = self._validate_key(key)
        if not isinstance(value, str | dict):
            raise TypeError(f"secret value must be str or dict, got {type(value).__name__}")
        await self._mutate(
            AuditOperation.SET, name, lambda: self._backend.set(name, value, metadata), actor
        )

    async def set_secrets(
        self,
        secrets: Mapping[str | SecretKeys, SecretValue],
        metadata: SecretMetadata | None = None,
        *,
        actor: str | None = None,
    ) -> None:
        """
        Write several secrets in order.

        Stops at the first failure and raises it; writes that already
        succeeded are kept.
        """
        items = [(self._validate_key(key), value) for key, value in secrets.items()]
        for name, value in items:
            await self.set_secret(name, value, metadata, actor=actor)

    async def delete_secret(self, key: str | SecretKeys, *, actor: str | None = None) -> None:
        """
        Raises:
            SecretNotFoundError: Key does not exist
            SecretWriteError: Backend rejected the delete
        """
        name = self._validate_key(key)
        await self._mutate(AuditOperation.DELETE, name, lambda: self._backend.delete(name), actor)

    async def rotate_secret(self, key: str | SecretKeys, *, actor: str | None = None) -> None:
        """
        Raises:
            SecretNotFoundError: Key does not exist
            SecretWriteError: Backend rotation failed
        """
        name = self._validate_key(key)
        await self._mutate(AuditOperation.ROTATE, name, lambda: self._backend.rotate(name), actor)

    async def generate_secret(
        self,
        key: str | SecretKeys,
        kind: generator.SecretKind | str = generator.SecretKind.PASSWORD,
        *,
        store: bool = False,
        metadata: SecretMetadata | None = None,
        actor: str | None = None,
    ) -> str:
        """
        Generate new material for key, optionally persisting it.

        Raises:
            ValueError: Unsupported kind
            SecretWriteError: store=True and the write failed
        """
        name = self._validate_key(key)
        value = generator.generate_secret(name, kind)
        if store:
            await self.set_secret(name, value, metadata, actor=actor)
        return value

    @staticmethod
    def validate_secret(key: str | SecretKeys, value: str) -> bool:
        """Check a candidate value against the key-name policy (caller-side)."""
        return validate_secret_value(key, value)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self, *, actor: str | None = None) -> int:
        """Drop every cache entry. Returns the number of entries removed."""
        removed = self._cache.clear()
        self._emit(AuditOperation.CLEAR, "*", AuditSource.CACHE, True, actor=actor)
        logger.info("Secret cache cleared", extra={"entries_removed": removed})
        return removed

    async def warmup(
        self, keys: Iterable[str | SecretKeys] | None = None
    ) -> dict[str, LookupStatus]:
        """
        Read keys through the cache so later reads are hits.

        Defaults to the critical set (database URL, signing secret,
        encryption key). Failures are logged, audited and otherwise ignored.

        Returns:
            Lookup status per key
        """
        self._ensure_open()
        names = [self._validate_key(key) for key in (CRITICAL_SECRETS if keys is None else keys)]
        try:
            await self._backend.warmup(names)
        except Exception as e:
            logger.warning(
                "Backend warmup hint failed",
                extra={"backend": self.provider, "error": str(e)},
            )

        results: dict[str, LookupStatus] = {}
        for name in names:
            try:
                result = await self._cache.get(name, self._fetch)
            except asyncio.CancelledError:
                self._emit(AuditOperation.WARMUP, name, AuditSource.BACKEND, False, error=CANCELLED)
                raise
            self._emit(
                AuditOperation.WARMUP,
                name,
                AuditSource.CACHE
                if result.status is LookupStatus.CACHE_HIT
                else AuditSource.BACKEND,
                success=not result.degraded,
                error=result.error,
            )
            if result.degraded:
                logger.warning(
                    "Secret warmup failed",
                    extra={"secret_name": name, "status": result.status.value},
                )
            results[name] = result.status

        logger.info(
            "Secret warmup complete",
            extra={
                "keys": len(names),
                "failed": sum(1 for status in results.values() if status is LookupStatus.BACKEND_ERROR),
            },
        )
        return results

    async def refresh_secrets(self, *, actor: str | None = None) -> dict[str, LookupStatus]:
        """Clear the cache and re-run the critical warmup."""
        self.clear_cache(actor=actor)
        return await self.warmup()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health(self) -> BrokerHealth:
        """Backend health plus cache size. Never raises."""
        try:
            report = await self._backend.health()
        except Exception as e:
            return BrokerHealth(
                status="unhealthy",
                provider=self.provider,
                error=str(e) or type(e).__name__,
                cache_entries=len(self._cache),
            )
        return BrokerHealth(**report.model_dump(), cache_entries=len(self._cache))


def create_secret_broker(settings: Settings | None = None, **kwargs: Any) -> SecretBroker:
    """
    Build a broker from process settings.

    Args:
        settings: Settings to use (default: get_settings())
        **kwargs: Passed through to SecretBroker (audit_sink, backend, clock, refresh_interval)

    Raises:
        SecretConfigurationError: Provider configuration is invalid
    """
    from config.settings import get_settings

    settings = settings or get_settings()
    if settings.secret_cache_refresh_seconds:
        kwargs.setdefault(
            "refresh_interval", timedelta(seconds=settings.secret_cache_refresh_seconds)
        )
    return SecretBroker(
        settings.backend_config(),
        cache_ttl=timedelta(seconds=settings.secret_cache_ttl_seconds),
        **kwargs,
    )


@asynccontextmanager
async def broker_lifespan(
    settings: Settings | None = None, **kwargs: Any
) -> AsyncIterator[SecretBroker]:
    """
    Own a broker for the duration of an application's lifetime.

    Example:
        >>> @asynccontextmanager
        ... async def lifespan(app):
        ...     async with broker_lifespan() as broker:
        ...         app.state.secrets = broker
        ...         yield
    """
    broker = create_secret_broker(settings, **kwargs)
    await broker.initialize()
    try:
        yield broker
    finally:
        await broker.close()
