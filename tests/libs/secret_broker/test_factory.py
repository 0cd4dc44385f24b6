"""Tests for libs/secret_broker/factory.py."""

import pytest

from libs.secret_broker.backends import (
    CompositeSecretBackend,
    KMSSecretBackend,
    KubernetesSecretBackend,
    VaultSecretBackend,
)
from libs.secret_broker.config import (
    CloudKMSBackendConfig,
    ClusterBackendConfig,
    CompositeBackendConfig,
    KVStoreBackendConfig,
)
from libs.secret_broker.exceptions import SecretConfigurationError
from libs.secret_broker.factory import create_backend


@pytest.mark.unit()
class TestCreateBackend:
    def test_cluster(self) -> None:
        backend = create_backend(ClusterBackendConfig(namespace="nexus"))
        assert isinstance(backend, KubernetesSecretBackend)
        assert backend.provider == "cluster"
        assert backend.namespace == "nexus"

    def test_kv_store(self) -> None:
        backend = create_backend(KVStoreBackendConfig(endpoint="https://vault:8200"))
        assert isinstance(backend, VaultSecretBackend)
        assert backend.provider == "kv-store"

    def test_cloud_kms(self) -> None:
        backend = create_backend(CloudKMSBackendConfig(region="eu-west-1"))
        assert isinstance(backend, KMSSecretBackend)
        assert backend.provider == "cloud-kms"

    def test_composite_orders_primary_first(self) -> None:
        config = CompositeBackendConfig(
            primary="kv-store",
            members=(
                ClusterBackendConfig(),
                KVStoreBackendConfig(endpoint="https://vault:8200"),
                CloudKMSBackendConfig(region="us-west-2"),
            ),
        )

        backend = create_backend(config)

        assert isinstance(backend, CompositeSecretBackend)
        assert [member.provider for member in backend.members] == [
            "kv-store",
            "cluster",
            "cloud-kms",
        ]

    def test_construction_does_no_io(self) -> None:
        # No client exists until connect()
        backend = create_backend(CloudKMSBackendConfig(region="us-west-2"))
        assert backend._client is None

    def test_unknown_config_rejected(self) -> None:
        with pytest.raises(SecretConfigurationError, match="Unsupported backend configuration"):
            create_backend(object())  # type: ignore[arg-type]
