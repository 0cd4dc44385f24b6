"""Backend store adapters."""

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.backends.composite import CompositeSecretBackend
from libs.secret_broker.backends.kms import KMSSecretBackend
from libs.secret_broker.backends.kubernetes import KubernetesSecretBackend
from libs.secret_broker.backends.vault import VaultSecretBackend

__all__ = [
    "CompositeSecretBackend",
    "KMSSecretBackend",
    "KubernetesSecretBackend",
    "SecretBackend",
    "VaultSecretBackend",
]
