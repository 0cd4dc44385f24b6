"""
Backend configuration variants.

One frozen pydantic model per provider, combined into the discriminated
union ``BackendConfig`` (discriminator: ``provider``). A config is chosen
once at process start and never mutated afterwards.

Example:
    >>> from pydantic import TypeAdapter
    >>> cfg = TypeAdapter(BackendConfig).validate_python(
    ...     {"provider": "kv-store", "endpoint": "https://vault:8200", "token": "s.x"}
    ... )
    >>> cfg.provider
    'kv-store'
"""

from __future__ import annotations

from typing import Annotated, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

DEFAULT_PROVIDER = "cluster"

# Alternate spellings accepted from configuration.
PROVIDER_ALIASES: dict[str, str] = {
    "cluster": "cluster",
    "kubernetes": "cluster",
    "k8s": "cluster",
    "kv-store": "kv-store",
    "vault": "kv-store",
    "cloud-kms": "cloud-kms",
    "aws": "cloud-kms",
    "aws-secrets-manager": "cloud-kms",
    "composite": "composite",
    "multi": "composite",
}


class _BackendConfigBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ClusterBackendConfig(_BackendConfigBase):
    """Cluster-native secret store (Kubernetes Secrets)."""

    provider: Literal["cluster"] = "cluster"
    namespace: str = Field(default="default", min_length=1)
    api_server: str = "https://kubernetes.default.svc"
    environment: str = "local"
    token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    ca_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
    timeout_seconds: float = Field(default=10.0, gt=0)


class KVStoreBackendConfig(_BackendConfigBase):
    """Distributed KV store (HashiCorp Vault KV v2)."""

    provider: Literal["kv-store"] = "kv-store"
    endpoint: str = Field(min_length=1)
    token: SecretStr | None = None
    mount_point: str = "secret"
    verify: bool = True


class CloudKMSBackendConfig(_BackendConfigBase):
    """Cloud KMS-backed store (AWS Secrets Manager with a customer KMS key)."""

    provider: Literal["cloud-kms"] = "cloud-kms"
    region: str = Field(min_length=1)
    key_id: str | None = None
    name_prefix: str = ""
    recovery_window_days: int = Field(default=7, ge=7, le=30)


LeafBackendConfig: TypeAlias = Annotated[
    ClusterBackendConfig | KVStoreBackendConfig | CloudKMSBackendConfig,
    Field(discriminator="provider"),
]


class CompositeBackendConfig(_BackendConfigBase):
    """Primary store with ordered failover members."""

    provider: Literal["composite"] = "composite"
    primary: Literal["cluster", "kv-store", "cloud-kms"]
    members: tuple[LeafBackendConfig, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _primary_is_member(self) -> CompositeBackendConfig:
        providers = [member.provider for member in self.members]
        if self.primary not in providers:
            raise ValueError(
                f"composite primary '{self.primary}' is not among configured members {providers}"
            )
        if len(set(providers)) != len(providers):
            raise ValueError(f"composite members must be distinct providers, got {providers}")
        return self


BackendConfig: TypeAlias = Annotated[
    ClusterBackendConfig | KVStoreBackendConfig | CloudKMSBackendConfig | CompositeBackendConfig,
    Field(discriminator="provider"),
]


def normalize_provider(name: str | None) -> str:
    """
    Map a configured provider name to its canonical form.

    Empty or missing names select the cluster-native store.

    Raises:
        ValueError: Unknown provider name
    """
    cleaned = (name or "").strip().lower()
    if not cleaned:
        return DEFAULT_PROVIDER
    try:
        return PROVIDER_ALIASES[cleaned]
    except KeyError:
        valid = ", ".join(sorted(set(PROVIDER_ALIASES.values())))
        raise ValueError(f"Unknown secret provider '{name}'. Valid options: {valid}") from None


def config_fingerprint(config: BackendConfig) -> str:
    """Stable identity of a configuration (used to detect duplicate brokers)."""
    return config.model_dump_json()
