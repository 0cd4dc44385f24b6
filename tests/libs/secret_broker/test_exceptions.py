"""Tests for libs/secret_broker/exceptions.py."""

import pytest

from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretConfigurationError,
    SecretManagerError,
    SecretNotFoundError,
    SecretWriteError,
)


@pytest.mark.unit()
class TestSecretManagerError:
    def test_str_includes_secret_and_backend(self) -> None:
        error = SecretManagerError("Timeout", "database/url", "kv-store")
        assert str(error) == "Timeout (secret: database/url, backend: kv-store)"

    def test_str_without_context(self) -> None:
        assert str(SecretManagerError("Broker is closed")) == "Broker is closed"

    def test_subclasses_share_base(self) -> None:
        for cls in (
            SecretNotFoundError,
            SecretAccessError,
            SecretWriteError,
            SecretConfigurationError,
        ):
            assert issubclass(cls, SecretManagerError)


@pytest.mark.unit()
class TestSecretNotFoundError:
    def test_message_with_context(self) -> None:
        error = SecretNotFoundError("auth/jwt-secret", "cluster", "Cannot rotate a missing secret")
        assert error.secret_name == "auth/jwt-secret"
        assert error.backend == "cluster"
        assert "Secret 'auth/jwt-secret' not found in cluster. Cannot rotate" in str(error)

    @pytest.mark.parametrize(("name", "backend"), [("", "cluster"), ("key", "")])
    def test_rejects_empty_arguments(self, name: str, backend: str) -> None:
        with pytest.raises(TypeError):
            SecretNotFoundError(name, backend)


@pytest.mark.unit()
class TestAccessAndWriteErrors:
    def test_access_error_message(self) -> None:
        error = SecretAccessError("database/url", "kv-store", "Vault is sealed")
        assert str(error) == "Access denied: Vault is sealed (secret: database/url, backend: kv-store)"

    def test_write_error_message(self) -> None:
        error = SecretWriteError("redis/password", "cloud-kms", "throttled")
        assert error.message == "Failed to write secret: throttled"

    @pytest.mark.parametrize("cls", [SecretAccessError, SecretWriteError])
    def test_rejects_empty_reason(self, cls: type[SecretManagerError]) -> None:
        with pytest.raises(TypeError, match="reason"):
            cls("database/url", "kv-store", "")
