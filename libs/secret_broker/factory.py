"""
Factory resolving a backend configuration into a backend store.

    - ClusterBackendConfig   → KubernetesSecretBackend
    - KVStoreBackendConfig   → VaultSecretBackend
    - CloudKMSBackendConfig  → KMSSecretBackend
    - CompositeBackendConfig → CompositeSecretBackend (primary + fallbacks in
      configured order)

Resolution happens once, when the broker is constructed. Nothing here opens
a connection; that is the broker's initialize().

Example Usage:
    >>> backend = create_backend(ClusterBackendConfig(namespace="nexus"))
    >>> backend.provider
    'cluster'
"""

import logging

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.backends.composite import CompositeSecretBackend
from libs.secret_broker.backends.kms import KMSSecretBackend
from libs.secret_broker.backends.kubernetes import KubernetesSecretBackend
from libs.secret_broker.backends.vault import VaultSecretBackend
from libs.secret_broker.config import (
    BackendConfig,
    CloudKMSBackendConfig,
    ClusterBackendConfig,
    CompositeBackendConfig,
    KVStoreBackendConfig,
)
from libs.secret_broker.exceptions import SecretConfigurationError

logger = logging.getLogger(__name__)


def create_backend(config: BackendConfig) -> SecretBackend:
    """
    Build the backend store for a configuration variant.

    Args:
        config: One of the BackendConfig variants

    Returns:
        Unconnected backend store

    Raises:
        SecretConfigurationError: Unknown configuration type
    """
    if isinstance(config, ClusterBackendConfig):
        return KubernetesSecretBackend(config)
    if isinstance(config, KVStoreBackendConfig):
        return VaultSecretBackend(config)
    if isinstance(config, CloudKMSBackendConfig):
        return KMSSecretBackend(config)
    if isinstance(config, CompositeBackendConfig):
        members = [create_backend(member) for member in config.members]
        primary = next(member for member in members if member.provider == config.primary)
        fallbacks = [member for member in members if member is not primary]
        logger.info(
            "Composite backend resolved",
            extra={
                "primary": primary.provider,
                "fallbacks": [fallback.provider for fallback in fallbacks],
            },
        )
        return CompositeSecretBackend(primary, fallbacks)

    raise SecretConfigurationError(
        f"Unsupported backend configuration: {type(config).__name__}. "
        "Valid providers: cluster, kv-store, cloud-kms, composite"
    )
