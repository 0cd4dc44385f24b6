"""
Secret lifecycle broker.

A process-wide broker fronting one credential store (Kubernetes Secrets,
Vault KV v2, AWS Secrets Manager with KMS, or a composite of these) with an
in-memory TTL cache, an audit trail for every access and mutation, a
caller-side validation policy and CSPRNG-based secret generation.

Architecture:
    - SecretBackend: store contract (backends/base.py) and adapters
    - create_backend(): resolves a BackendConfig variant into a store
    - SecretCache: per-key TTL cache with stale fallback
    - AuditTrail: one AuditEvent per broker operation
    - SecretBroker: orchestration, lifecycle, public contract
    - SecretAccessors: typed bundles for consuming services

Quick Start:
    >>> from libs.secret_broker import broker_lifespan, SecretKeys
    >>> async with broker_lifespan() as broker:
    ...     jwt_secret = await broker.get_secret(SecretKeys.JWT_SECRET)

Security Requirements:
    - Secret values are never logged, audited or included in exceptions
    - Values live in memory only
"""

from libs.secret_broker.accessors import SecretAccessors, SecretPreview
from libs.secret_broker.audit import (
    AuditEvent,
    AuditOperation,
    AuditSink,
    AuditSource,
    AuditTrail,
    LoggingAuditSink,
)
from libs.secret_broker.backends import (
    CompositeSecretBackend,
    KMSSecretBackend,
    KubernetesSecretBackend,
    SecretBackend,
    VaultSecretBackend,
)
from libs.secret_broker.broker import SecretBroker, broker_lifespan, create_secret_broker
from libs.secret_broker.cache import SecretCache
from libs.secret_broker.config import (
    BackendConfig,
    CloudKMSBackendConfig,
    ClusterBackendConfig,
    CompositeBackendConfig,
    KVStoreBackendConfig,
)
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretConfigurationError,
    SecretManagerError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.factory import create_backend
from libs.secret_broker.generator import SecretKind, generate_secret
from libs.secret_broker.models import (
    CRITICAL_SECRETS,
    BrokerHealth,
    LookupStatus,
    Secret,
    SecretKeys,
    SecretLookup,
    SecretMetadata,
)
from libs.secret_broker.validator import validate_secret_value

__all__ = [
    # Broker (recommended entry points)
    "SecretBroker",
    "broker_lifespan",
    "create_secret_broker",
    "SecretAccessors",
    "SecretPreview",
    # Domain types
    "CRITICAL_SECRETS",
    "BrokerHealth",
    "LookupStatus",
    "Secret",
    "SecretKeys",
    "SecretLookup",
    "SecretMetadata",
    # Configuration
    "BackendConfig",
    "CloudKMSBackendConfig",
    "ClusterBackendConfig",
    "CompositeBackendConfig",
    "KVStoreBackendConfig",
    # Backends
    "SecretBackend",
    "create_backend",
    "CompositeSecretBackend",
    "KMSSecretBackend",
    "KubernetesSecretBackend",
    "VaultSecretBackend",
    # Cache, audit, policy
    "SecretCache",
    "AuditEvent",
    "AuditOperation",
    "AuditSink",
    "AuditSource",
    "AuditTrail",
    "LoggingAuditSink",
    "SecretKind",
    "generate_secret",
    "validate_secret_value",
    # Exceptions (callers should catch these)
    "SecretManagerError",
    "SecretNotFoundError",
    "SecretAccessError",
    "SecretWriteError",
    "SecretConfigurationError",
]
