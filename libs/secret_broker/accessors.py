"""
Typed, read-only helpers over the broker for the secrets services consume.

Each helper reads its keys through the broker (so through the cache, with
one audit event per key) and assembles a frozen bundle. Any field may be
None when the secret is missing or unavailable; partial bundles are valid.

Secret fields are excluded from repr() so bundles can be logged safely.
Dict-valued secrets are read as text through their ``value`` field.

Example:
    >>> accessors = SecretAccessors.from_settings(broker, get_settings())
    >>> db = await accessors.database_config()
    >>> db
    DatabaseConfig(ssl=True)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from libs.secret_broker.broker import SecretBroker
from libs.secret_broker.models import SecretKeys, SecretValue, key_name

if TYPE_CHECKING:
    from config.settings import Settings

PREVIEW_LENGTH = 8

API_KEY_SECRETS: dict[str, SecretKeys] = {
    "datadog": SecretKeys.DATADOG_API_KEY,
    "launchdarkly": SecretKeys.LAUNCHDARKLY_SDK_KEY,
    "sendgrid": SecretKeys.SENDGRID_API_KEY,
    "stripe": SecretKeys.STRIPE_SECRET_KEY,
    "unleash": SecretKeys.UNLEASH_CLIENT_KEY,
}

WEBHOOK_SECRETS: dict[str, SecretKeys] = {
    "github": SecretKeys.GITHUB_WEBHOOK_SECRET,
    "stripe": SecretKeys.STRIPE_WEBHOOK_SECRET,
}

_URL_CREDENTIALS = re.compile(r"//.*@")


def _as_text(value: SecretValue | None) -> str | None:
    if value is None or isinstance(value, str):
        return value
    inner = value.get("value")
    return inner if isinstance(inner, str) else None


def preview(value: str | None) -> str | None:
    """First 8 characters followed by '...', or None."""
    if not value:
        return None
    return f"{value[:PREVIEW_LENGTH]}..."


def mask_url_credentials(url: str | None) -> str | None:
    """Replace the userinfo part of a URL with '***:***'."""
    if not url:
        return None
    return _URL_CREDENTIALS.sub("//***:***@", url, count=1)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)
    encryption_key: str | None = field(default=None, repr=False)
    ssl: bool = False


@dataclass(frozen=True)
class CacheStoreConfig:
    host: str = "redis"
    port: int = 6379
    password: str | None = field(default=None, repr=False)
    tls_cert: str | None = field(default=None, repr=False)

    @property
    def tls(self) -> bool:
        return self.tls_cert is not None


@dataclass(frozen=True)
class TLSMaterial:
    private_key: str | None = field(default=None, repr=False)
    certificate: str | None = field(default=None, repr=False)
    ca_bundle: str | None = field(default=None, repr=False)

    @property
    def complete(self) -> bool:
        """Key and certificate both present (CA bundle is optional)."""
        return self.private_key is not None and self.certificate is not None


@dataclass(frozen=True)
class MonitoringCredentials:
    prometheus_password: str | None = field(default=None, repr=False)
    grafana_admin_password: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class BackupCredentials:
    access_key_id: str | None = field(default=None, repr=False)
    secret_access_key: str | None = field(default=None, repr=False)
    region: str = "us-west-2"
    bucket: str | None = None


@dataclass(frozen=True)
class SecretPreview:
    """Operator-facing existence check; never carries the full value."""

    name: str
    present: bool
    preview: str | None = None


class SecretAccessors:
    """
    Domain accessors bound to one broker.

    Non-secret connection parameters (cache store host/port, backup bucket,
    database TLS flag) come from settings, not from the secret store.
    """

    def __init__(
        self,
        broker: SecretBroker,
        *,
        database_ssl: bool = False,
        redis_host: str = "redis",
        redis_port: int = 6379,
        backup_region: str = "us-west-2",
        backup_bucket: str | None = None,
    ) -> None:
        self._broker = broker
        self._database_ssl = database_ssl
        self._redis_host = redis_host
        self._redis_port = redis_port
        self._backup_region = backup_region
        self._backup_bucket = backup_bucket

    @classmethod
    def from_settings(cls, broker: SecretBroker, settings: Settings) -> SecretAccessors:
        return cls(
            broker,
            database_ssl=settings.is_production,
            redis_host=settings.redis_host,
            redis_port=settings.redis_port,
            backup_region=settings.aws_region,
            backup_bucket=settings.backup_s3_bucket,
        )

    async def _text(self, key: SecretKeys | str) -> str | None:
        return _as_text(await self._broker.get_secret(key))

    async def _texts(self, *keys: SecretKeys) -> list[str | None]:
        values = await self._broker.get_secrets(keys)
        return [_as_text(values[key.value]) for key in keys]

    # Single secrets

    async def database_url(self) -> str | None:
        return await self._text(SecretKeys.DATABASE_URL)

    async def jwt_secret(self) -> str | None:
        return await self._text(SecretKeys.JWT_SECRET)

    async def jwt_refresh_secret(self) -> str | None:
        return await self._text(SecretKeys.JWT_REFRESH_SECRET)

    async def session_secret(self) -> str | None:
        return await self._text(SecretKeys.SESSION_SECRET)

    async def oauth_client_secret(self) -> str | None:
        return await self._text(SecretKeys.OAUTH_CLIENT_SECRET)

    async def redis_password(self) -> str | None:
        return await self._text(SecretKeys.REDIS_PASSWORD)

    async def encryption_key(self, kind: Literal["primary", "backup"] = "primary") -> str | None:
        if kind == "primary":
            return await self._text(SecretKeys.ENCRYPTION_KEY)
        if kind == "backup":
            return await self._text(SecretKeys.BACKUP_ENCRYPTION_KEY)
        raise ValueError(f"Unknown encryption key kind '{kind}'. Valid options: primary, backup")

    async def api_key(self, service: str) -> str | None:
        """
        Integration API key by service name.

        Raises:
            ValueError: Unknown service
        """
        return await self._text(_lookup_service(API_KEY_SECRETS, service, "API key"))

    async def webhook_secret(self, service: str) -> str | None:
        """
        Webhook shared secret by service name.

        Raises:
            ValueError: Unknown service
        """
        return await self._text(_lookup_service(WEBHOOK_SECRETS, service, "webhook"))

    # Bundles

    async def database_config(self) -> DatabaseConfig:
        url, password, encryption_key = await self._texts(
            SecretKeys.DATABASE_URL,
            SecretKeys.DATABASE_PASSWORD,
            SecretKeys.DATABASE_ENCRYPTION_KEY,
        )
        return DatabaseConfig(
            url=url, password=password, encryption_key=encryption_key, ssl=self._database_ssl
        )

    async def cache_store_config(self) -> CacheStoreConfig:
        password, tls_cert = await self._texts(SecretKeys.REDIS_PASSWORD, SecretKeys.REDIS_TLS_CERT)
        return CacheStoreConfig(
            host=self._redis_host, port=self._redis_port, password=password, tls_cert=tls_cert
        )

    async def tls_material(self) -> TLSMaterial:
        private_key, certificate, ca_bundle = await self._texts(
            SecretKeys.SSL_PRIVATE_KEY, SecretKeys.SSL_CERTIFICATE, SecretKeys.SSL_CA_BUNDLE
        )
        return TLSMaterial(private_key=private_key, certificate=certificate, ca_bundle=ca_bundle)

    async def monitoring_credentials(self) -> MonitoringCredentials:
        prometheus, grafana = await self._texts(
            SecretKeys.PROMETHEUS_PASSWORD, SecretKeys.GRAFANA_ADMIN_PASSWORD
        )
        return MonitoringCredentials(prometheus_password=prometheus, grafana_admin_password=grafana)

    async def backup_credentials(self) -> BackupCredentials:
        access_key, secret_key = await self._texts(
            SecretKeys.S3_BACKUP_ACCESS_KEY, SecretKeys.S3_BACKUP_SECRET_KEY
        )
        return BackupCredentials(
            access_key_id=access_key,
            secret_access_key=secret_key,
            region=self._backup_region,
            bucket=self._backup_bucket,
        )

    # Operator previews

    async def describe_api_key(self, service: str) -> SecretPreview:
        key = _lookup_service(API_KEY_SECRETS, service, "API key")
        return _describe(key.value, await self._text(key))

    async def describe_webhook_secret(self, service: str) -> SecretPreview:
        key = _lookup_service(WEBHOOK_SECRETS, service, "webhook")
        return _describe(key.value, await self._text(key))

    async def describe_database_url(self) -> SecretPreview:
        """Database URL with its credentials masked instead of truncated."""
        url = await self.database_url()
        return SecretPreview(
            name=SecretKeys.DATABASE_URL.value,
            present=url is not None,
            preview=mask_url_credentials(url),
        )

    async def describe_secrets(self, keys: list[str | SecretKeys]) -> list[SecretPreview]:
        """Batch existence check with previews, in the order requested."""
        values = await self._broker.get_secrets(keys)
        return [_describe(name, _as_text(values[name])) for name in map(key_name, keys)]


def _lookup_service(table: dict[str, SecretKeys], service: str, label: str) -> SecretKeys:
    try:
        return table[service.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown {label} service '{service}'. Valid options: {', '.join(sorted(table))}"
        ) from None


def _describe(name: str, value: str | None) -> SecretPreview:
    return SecretPreview(name=name, present=value is not None, preview=preview(value))
