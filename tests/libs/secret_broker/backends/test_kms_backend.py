"""
Test Suite for KMSSecretBackend (libs/secret_broker/backends/kms.py).

Secrets Manager is replaced by a MagicMock client; AWS failures are raised
as botocore ClientError / BotoCoreError so the adapter's error translation
and retry policy run unchanged.
"""

import json
from unittest.mock import MagicMock, Mock, patch

import pytest
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError
from tenacity import wait_none

from libs.secret_broker.backends.kms import KMSSecretBackend
from libs.secret_broker.config import CloudKMSBackendConfig
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.models import SecretMetadata


def _client_error(code: str, operation: str = "GetSecretValue") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture(autouse=True)
def fast_retry_sleep(monkeypatch):
    """Eliminate retry backoff delays in tests to keep the suite fast."""
    for method in (
        "_get_with_retry",
        "_set_with_retry",
        "_delete_with_retry",
        "_rotate_with_retry",
        "_list_with_retry",
        "_describe_with_retry",
    ):
        monkeypatch.setattr(getattr(KMSSecretBackend, method).retry, "wait", wait_none())


@pytest.fixture()
def mock_sm() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def config() -> CloudKMSBackendConfig:
    return CloudKMSBackendConfig(
        region="us-west-2", key_id="alias/nexus-secrets", name_prefix="nexus/"
    )


@pytest.fixture()
def backend(config, mock_sm) -> KMSSecretBackend:
    return KMSSecretBackend(config, client=mock_sm)


class TestConnect:
    @pytest.mark.unit()
    @pytest.mark.asyncio()
    @patch("libs.secret_broker.backends.kms.boto3.client")
    async def test_creates_client_for_region(self, mock_boto_client: Mock, config) -> None:
        backend = KMSSecretBackend(config)

        await backend.connect()

        mock_boto_client.assert_called_once_with("secretsmanager", region_name="us-west-2")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    @patch("libs.secret_broker.backends.kms.boto3.client")
    async def test_sdk_error_raises_access_error(self, mock_boto_client: Mock, config) -> None:
        mock_boto_client.side_effect = BotoCoreError()

        with pytest.raises(SecretAccessError, match="initialization"):
            await KMSSecretBackend(config).connect()

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_not_connected(self, config) -> None:
        with pytest.raises(SecretAccessError, match="not connected"):
            await KMSSecretBackend(config).get("database/url")


class TestGet:
    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_plain_string(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.return_value = {"SecretString": "postgresql://db", "VersionId": "v-1"}

        secret = await backend.get("database/url")

        assert secret.value == "postgresql://db"
        assert secret.version == "v-1"
        mock_sm.get_secret_value.assert_called_once_with(SecretId="nexus/database/url")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_json_object_decoded_to_dict(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.return_value = {
            "SecretString": json.dumps({"username": "app", "password": "pw"})
        }

        secret = await backend.get("database/credentials")

        assert secret.value == {"username": "app", "password": "pw"}

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_json_scalar_kept_as_string(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.return_value = {"SecretString": "12345678"}

        secret = await backend.get("pin")

        assert secret.value == "12345678"

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_binary_secret_decoded(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.return_value = {"SecretBinary": b"binary-text"}

        secret = await backend.get("blob")

        assert secret.value == "binary-text"

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_not_found_is_none(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.side_effect = _client_error("ResourceNotFoundException")

        assert await backend.get("missing") is None

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_access_denied(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.side_effect = _client_error("AccessDeniedException")

        with pytest.raises(SecretAccessError, match="kms:Decrypt"):
            await backend.get("database/url")
        assert mock_sm.get_secret_value.call_count == 1

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_throttling_retried_then_raises(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.side_effect = _client_error("ThrottlingException")

        with pytest.raises(SecretAccessError, match="ThrottlingException"):
            await backend.get("database/url")
        assert mock_sm.get_secret_value.call_count == 3

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_network_error_recovers(self, backend, mock_sm) -> None:
        mock_sm.get_secret_value.side_effect = [
            EndpointConnectionError(endpoint_url="https://secretsmanager.us-west-2.amazonaws.com"),
            {"SecretString": "ok"},
        ]

        secret = await backend.get("database/url")

        assert secret.value == "ok"


class TestWrites:
    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_update_existing(self, backend, mock_sm) -> None:
        await backend.set("auth/jwt-secret", "new-signing-secret")

        mock_sm.put_secret_value.assert_called_once_with(
            SecretId="nexus/auth/jwt-secret", SecretString="new-signing-secret"
        )
        mock_sm.create_secret.assert_not_called()
        mock_sm.tag_resource.assert_not_called()

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_update_existing_applies_tags(self, backend, mock_sm) -> None:
        await backend.set("auth/jwt-secret", "x" * 12, SecretMetadata(owner="auth-team"))

        mock_sm.tag_resource.assert_called_once_with(
            SecretId="nexus/auth/jwt-secret", Tags=[{"Key": "owner", "Value": "auth-team"}]
        )

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_create_when_missing_uses_kms_key(self, backend, mock_sm) -> None:
        mock_sm.put_secret_value.side_effect = _client_error(
            "ResourceNotFoundException", "PutSecretValue"
        )

        await backend.set(
            "database/credentials",
            {"username": "app"},
            SecretMetadata(description="primary db", labels={"tier": "1"}),
        )

        mock_sm.create_secret.assert_called_once_with(
            Name="nexus/database/credentials",
            SecretString=json.dumps({"username": "app"}),
            KmsKeyId="alias/nexus-secrets",
            Description="primary db",
            Tags=[{"Key": "tier", "Value": "1"}, {"Key": "description", "Value": "primary db"}],
        )

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_access_denied_write(self, backend, mock_sm) -> None:
        mock_sm.put_secret_value.side_effect = _client_error("AccessDeniedException", "PutSecretValue")

        with pytest.raises(SecretWriteError, match="PutSecretValue"):
            await backend.set("k", "value")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_delete_uses_recovery_window(self, backend, mock_sm) -> None:
        await backend.delete("old/key")

        mock_sm.delete_secret.assert_called_once_with(SecretId="nexus/old/key", RecoveryWindowInDays=7)

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_delete_missing(self, backend, mock_sm) -> None:
        mock_sm.delete_secret.side_effect = _client_error("ResourceNotFoundException", "DeleteSecret")

        with pytest.raises(SecretNotFoundError):
            await backend.delete("missing")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_rotate_is_native(self, backend, mock_sm) -> None:
        await backend.rotate("database/password")

        mock_sm.rotate_secret.assert_called_once_with(
            SecretId="nexus/database/password", RotateImmediately=True
        )
        mock_sm.get_secret_value.assert_not_called()

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_rotate_without_rotation_function(self, backend, mock_sm) -> None:
        mock_sm.rotate_secret.side_effect = _client_error("InvalidRequestException", "RotateSecret")

        with pytest.raises(SecretWriteError, match="InvalidRequestException"):
            await backend.rotate("database/password")


class TestListAndHealth:
    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_list_strips_prefix_and_filters(self, backend, mock_sm) -> None:
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"SecretList": [{"Name": "nexus/auth/jwt-secret"}, {"Name": "other/secret"}]},
            {"SecretList": [{"Name": "nexus/database/url"}, {"Name": "nexus/auth/session-secret"}]},
        ]
        mock_sm.get_paginator.return_value = paginator

        assert await backend.list_keys() == [
            "auth/jwt-secret",
            "auth/session-secret",
            "database/url",
        ]
        assert await backend.list_keys("auth/") == ["auth/jwt-secret", "auth/session-secret"]

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_list_access_denied(self, backend, mock_sm) -> None:
        mock_sm.get_paginator.return_value.paginate.side_effect = _client_error(
            "AccessDeniedException", "ListSecrets"
        )

        with pytest.raises(SecretAccessError, match="AccessDeniedException"):
            await backend.list_keys()

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_health(self, backend, mock_sm) -> None:
        report = await backend.health()

        assert report.status == "healthy"
        assert report.details == {"region": "us-west-2", "kms_key_id": "alias/nexus-secrets"}
        mock_sm.list_secrets.assert_called_once_with(MaxResults=1)

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_health_failure(self, backend, mock_sm) -> None:
        mock_sm.list_secrets.side_effect = _client_error("AccessDeniedException", "ListSecrets")

        report = await backend.health()

        assert report.status == "unhealthy"
        assert "AccessDeniedException" in (report.error or "")


class TestVersions:
    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_current_version_listed_first(self, backend, mock_sm) -> None:
        mock_sm.describe_secret.return_value = {
            "VersionIdsToStages": {
                "v-old": ["AWSPREVIOUS"],
                "v-new": ["AWSCURRENT"],
                "v-pending": ["AWSPENDING"],
            }
        }

        versions = await backend.list_versions("database/url")

        assert versions[0] == "v-new"
        assert sorted(versions) == ["v-new", "v-old", "v-pending"]
        mock_sm.describe_secret.assert_called_once_with(SecretId="nexus/database/url")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_no_versions(self, backend, mock_sm) -> None:
        mock_sm.describe_secret.return_value = {"Name": "nexus/database/url"}

        assert await backend.list_versions("database/url") == []

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_missing_secret(self, backend, mock_sm) -> None:
        mock_sm.describe_secret.side_effect = _client_error(
            "ResourceNotFoundException", "DescribeSecret"
        )

        with pytest.raises(SecretNotFoundError):
            await backend.list_versions("database/url")

    @pytest.mark.unit()
    @pytest.mark.asyncio()
    async def test_throttling_raises_access_error(self, backend, mock_sm) -> None:
        mock_sm.describe_secret.side_effect = _client_error("ThrottlingException", "DescribeSecret")

        with pytest.raises(SecretAccessError, match="ThrottlingException"):
            await backend.list_versions("database/url")

        assert mock_sm.describe_secret.call_count == 3
