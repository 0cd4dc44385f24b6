"""Domain types shared by the broker, the cache and the backend adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

SecretValue: TypeAlias = str | dict[str, Any]

HealthState = Literal["healthy", "degraded", "unhealthy"]


class SecretKeys(str, Enum):
    """Well-known secret keys. Arbitrary custom keys are accepted as plain strings."""

    # Database
    DATABASE_URL = "database/url"
    DATABASE_PASSWORD = "database/password"
    DATABASE_ENCRYPTION_KEY = "database/encryption-key"

    # Integration API keys
    DATADOG_API_KEY = "external/datadog/api-key"
    UNLEASH_CLIENT_KEY = "external/unleash/client-key"
    LAUNCHDARKLY_SDK_KEY = "external/launchdarkly/sdk-key"
    STRIPE_SECRET_KEY = "external/stripe/secret-key"
    SENDGRID_API_KEY = "external/sendgrid/api-key"

    # Authentication
    JWT_SECRET = "auth/jwt-secret"
    JWT_REFRESH_SECRET = "auth/jwt-refresh-secret"
    SESSION_SECRET = "auth/session-secret"
    OAUTH_CLIENT_SECRET = "auth/oauth/client-secret"

    # Encryption
    ENCRYPTION_KEY = "encryption/primary-key"
    BACKUP_ENCRYPTION_KEY = "encryption/backup-key"

    # Redis
    REDIS_PASSWORD = "redis/password"
    REDIS_TLS_CERT = "redis/tls-cert"

    # TLS listener material
    SSL_PRIVATE_KEY = "ssl/private-key"
    SSL_CERTIFICATE = "ssl/certificate"
    SSL_CA_BUNDLE = "ssl/ca-bundle"

    # Webhooks
    GITHUB_WEBHOOK_SECRET = "webhooks/github/secret"
    STRIPE_WEBHOOK_SECRET = "webhooks/stripe/secret"

    # Monitoring
    PROMETHEUS_PASSWORD = "monitoring/prometheus/password"
    GRAFANA_ADMIN_PASSWORD = "monitoring/grafana/admin-password"

    # Backup storage
    S3_BACKUP_ACCESS_KEY = "backup/s3/access-key"
    S3_BACKUP_SECRET_KEY = "backup/s3/secret-key"

    FEATURE_FLAG_ENCRYPTION_KEY = "feature-flags/encryption-key"


# Warmed on initialize() and refresh_secrets(); not configurable.
CRITICAL_SECRETS: tuple[str, ...] = (
    SecretKeys.DATABASE_URL.value,
    SecretKeys.JWT_SECRET.value,
    SecretKeys.ENCRYPTION_KEY.value,
)


def key_name(key: str | SecretKeys) -> str:
    """Normalize a SecretKeys member or plain string to the key string."""
    if isinstance(key, SecretKeys):
        return key.value
    return key


class SecretMetadata(BaseModel):
    """
    Descriptive attributes attached at write time.

    The broker never interprets these; adapters persist them next to the
    secret in whatever form the store supports (annotations, KV custom
    metadata, resource tags).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    owner: str | None = None
    rotation_policy: str | None = None
    description: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)

    def to_labels(self) -> dict[str, str]:
        """Flatten to a str->str mapping (stores that only accept string tags)."""
        flat = dict(self.labels)
        if self.owner:
            flat["owner"] = self.owner
        if self.rotation_policy:
            flat["rotation_policy"] = self.rotation_policy
        if self.description:
            flat["description"] = self.description
        return flat

    @classmethod
    def from_labels(cls, labels: dict[str, str]) -> SecretMetadata:
        remaining = dict(labels)
        return cls(
            owner=remaining.pop("owner", None),
            rotation_policy=remaining.pop("rotation_policy", None),
            description=remaining.pop("description", None),
            labels=remaining,
        )

    def with_label(self, name: str, value: str) -> SecretMetadata:
        return self.model_copy(update={"labels": {**self.labels, name: value}})


@dataclass(frozen=True)
class Secret:
    """A secret as returned by a backend store."""

    key: str
    value: SecretValue = field(repr=False)
    metadata: SecretMetadata | None = None
    version: str | None = None


class LookupStatus(str, Enum):
    """How a read was satisfied."""

    CACHE_HIT = "cache_hit"
    FETCHED = "fetched"
    ABSENT = "absent"
    STALE_FALLBACK = "stale_fallback"
    BACKEND_ERROR = "backend_error"


@dataclass(frozen=True)
class SecretLookup:
    """
    Result of a broker read.

    ``value`` is None for ABSENT and BACKEND_ERROR. STALE_FALLBACK carries the
    last value observed before the backend failed, with the failure in
    ``error``.
    """

    key: str
    status: LookupStatus
    value: SecretValue | None = field(default=None, repr=False)
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.value is not None

    @property
    def from_cache(self) -> bool:
        return self.status in (LookupStatus.CACHE_HIT, LookupStatus.STALE_FALLBACK)

    @property
    def degraded(self) -> bool:
        return self.status in (LookupStatus.STALE_FALLBACK, LookupStatus.BACKEND_ERROR)


class BackendHealth(BaseModel):
    """Health report of one backend store."""

    status: HealthState
    provider: str
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"


class BrokerHealth(BackendHealth):
    """Backend health plus broker-side cache state."""

    cache_entries: int = 0
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
