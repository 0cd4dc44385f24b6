"""
Process settings for the secret broker, loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation.
All settings can be overridden via environment variables or .env file.
Settings are read once at startup; the broker never re-reads them.
"""

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.secret_broker.config import (
    BackendConfig,
    CloudKMSBackendConfig,
    ClusterBackendConfig,
    CompositeBackendConfig,
    KVStoreBackendConfig,
    normalize_provider,
)
from libs.secret_broker.exceptions import SecretConfigurationError


class Settings(BaseSettings):
    """
    Secret broker configuration.

    All settings are loaded from environment variables or .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider selection
    secret_provider: str = Field(
        default="cluster",
        description="Backend store: cluster, kv-store, cloud-kms or composite (aliases accepted)",
    )
    deployment_env: str = Field(
        default="local",
        description="Deployment environment (local, staging, production)",
    )

    # Cluster-native store
    k8s_namespace: str = Field(default="default", description="Namespace holding managed secrets")
    k8s_api_server: str = Field(
        default="https://kubernetes.default.svc",
        description="Kubernetes API server base URL",
    )

    # Distributed KV store
    vault_endpoint: str = Field(
        default="http://vault.vault.svc.cluster.local:8200",
        description="Vault server URL",
    )
    vault_token: SecretStr | None = Field(default=None, description="Vault token")
    vault_mount_point: str = Field(default="secret", description="KV v2 mount point")

    # Cloud KMS store
    aws_region: str = Field(default="us-west-2", description="AWS region")
    aws_kms_key_id: str | None = Field(
        default=None,
        description="KMS key id/ARN used to encrypt newly created secrets",
    )

    # Composite store
    secret_composite_primary: str = Field(
        default="kv-store",
        description="Primary member of the composite store",
    )

    # Cache
    secret_cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        le=86400,
        description="Freshness window of cached secrets in seconds",
    )
    secret_cache_refresh_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Period of the background cache refresh in seconds (unset: disabled)",
    )

    # Domain accessor inputs (non-secret connection parameters)
    redis_host: str = Field(default="redis", description="Cache store host")
    redis_port: int = Field(default=6379, ge=1, le=65535, description="Cache store port")
    backup_s3_bucket: str | None = Field(default=None, description="Backup bucket name")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    service_name: str = Field(default="secret-broker", description="Service name in log records")

    @field_validator("secret_provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        return normalize_provider(value)

    @property
    def is_production(self) -> bool:
        return self.deployment_env.strip().lower() == "production"

    def backend_config(self) -> BackendConfig:
        """
        Build the backend configuration variant for the selected provider.

        For ``composite`` the members are every leaf store whose parameters
        are configured: the cluster store always, the KV store when a token is
        set, the KMS store when a key id is set.

        Raises:
            SecretConfigurationError: Composite primary is not a configured member
        """
        cluster = ClusterBackendConfig(
            namespace=self.k8s_namespace,
            api_server=self.k8s_api_server,
            environment=self.deployment_env,
        )
        kv_store = KVStoreBackendConfig(
            endpoint=self.vault_endpoint,
            token=self.vault_token,
            mount_point=self.vault_mount_point,
        )
        cloud_kms = CloudKMSBackendConfig(region=self.aws_region, key_id=self.aws_kms_key_id)

        if self.secret_provider == "cluster":
            return cluster
        if self.secret_provider == "kv-store":
            return kv_store
        if self.secret_provider == "cloud-kms":
            return cloud_kms

        members: list[ClusterBackendConfig | KVStoreBackendConfig | CloudKMSBackendConfig] = []
        if self.vault_token is not None:
            members.append(kv_store)
        if self.aws_kms_key_id:
            members.append(cloud_kms)
        members.append(cluster)

        try:
            primary = normalize_provider(self.secret_composite_primary)
            return CompositeBackendConfig(primary=primary, members=tuple(members))  # type: ignore[arg-type]
        except ValueError as e:
            raise SecretConfigurationError(f"Invalid composite configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.

    Example:
        >>> settings = get_settings()
        >>> settings.secret_provider
        'cluster'
    """
    return Settings()
