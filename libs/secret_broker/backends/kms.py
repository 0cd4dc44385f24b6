"""
Cloud KMS-backed store: AWS Secrets Manager encrypting with a customer KMS key.

Architecture:
    - boto3 client (blocking); every call runs in a worker thread via
      asyncio.to_thread
    - IAM role authentication (default credential chain)
    - Name convention: "{name_prefix}{key}", e.g. "prod/database/url"
    - SecretString holding a JSON object is returned as a dict; anything
      else is returned as the raw string
    - New secrets are created with KmsKeyId and tags from metadata labels
    - Deletes keep a recovery window (7-30 days) instead of forcing removal
    - Rotation uses the native RotateSecret API

Retries:
    Transient AWS errors (throttling, 5xx, network) are retried 3 times with
    exponential backoff. Permanent errors propagate immediately.

IAM Permissions Required:
    - secretsmanager:GetSecretValue, secretsmanager:ListSecrets,
      secretsmanager:DescribeSecret (read)
    - secretsmanager:PutSecretValue, secretsmanager:CreateSecret,
      secretsmanager:TagResource (write)
    - secretsmanager:DeleteSecret, secretsmanager:RotateSecret (lifecycle)
    - kms:Encrypt, kms:Decrypt, kms:GenerateDataKey on the configured key
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.config import CloudKMSBackendConfig
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "InternalServiceError",
        "InternalFailure",
    }
)


def _error_code(exception: ClientError) -> str:
    return str(exception.response.get("Error", {}).get("Code", "Unknown"))


def _is_transient_aws_error(exception: BaseException) -> bool:
    """
    Check if an AWS exception is transient and should be retried.

    Network/SDK errors (BotoCoreError) are always transient. ClientErrors are
    transient only for throttling and service-side failures; permission,
    validation and not-found errors are permanent.
    """
    if isinstance(exception, BotoCoreError):
        return True
    if isinstance(exception, ClientError):
        return _error_code(exception) in TRANSIENT_ERROR_CODES
    return False


_aws_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception(_is_transient_aws_error),
    reraise=True,
)


def _decode_secret_string(raw: str) -> SecretValue:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    return parsed if isinstance(parsed, dict) else raw


class KMSSecretBackend(SecretBackend):
    """
    AWS Secrets Manager store with customer-managed KMS encryption.

    Example:
        >>> backend = KMSSecretBackend(
        ...     CloudKMSBackendConfig(region="us-west-2", key_id="alias/nexus-secrets")
        ... )
        >>> await backend.connect()
        >>> await backend.set("auth/jwt-secret", "...")
    """

    provider = "cloud-kms"

    def __init__(self, config: CloudKMSBackendConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client

    def _secret_id(self, key: str) -> str:
        return f"{self._config.name_prefix}{key}"

    async def connect(self) -> None:
        """
        Create the Secrets Manager client.

        Credentials are validated lazily on first use so read-only roles
        without secretsmanager:ListSecrets can still connect.

        Raises:
            SecretAccessError: Client could not be created (bad region, SDK error)
        """
        if self._client is not None:
            return
        try:
            self._client = await asyncio.to_thread(
                boto3.client, "secretsmanager", region_name=self._config.region
            )
        except BotoCoreError as e:
            raise SecretAccessError(
                "aws_initialization",
                self.provider,
                f"AWS SDK error during initialization: {e}",
            ) from e
        logger.info(
            "AWS Secrets Manager client initialized",
            extra={
                "region": self._config.region,
                "kms_key_configured": self._config.key_id is not None,
                "backend": self.provider,
            },
        )

    @property
    def _sm(self) -> Any:
        if self._client is None:
            raise SecretAccessError(
                "aws_initialization", self.provider, "Secrets Manager client is not connected"
            )
        return self._client

    async def get(self, key: str) -> Secret | None:
        return await asyncio.to_thread(self._get_sync, key)

    def _get_sync(self, key: str) -> Secret | None:
        try:
            response = self._get_with_retry(key)
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceNotFoundException":
                return None
            if code == "AccessDeniedException":
                raise SecretAccessError(
                    key,
                    self.provider,
                    "Access denied. Verify IAM role has secretsmanager:GetSecretValue "
                    "and kms:Decrypt permissions.",
                ) from e
            if code == "InvalidRequestException":
                raise SecretAccessError(
                    key, self.provider, "Secret is marked for deletion"
                ) from e
            raise SecretAccessError(key, self.provider, f"AWS API error: {code}") from e
        except BotoCoreError as e:
            raise SecretAccessError(
                key, self.provider, f"AWS SDK error retrieving secret: {e}"
            ) from e

        if "SecretString" in response:
            value = _decode_secret_string(response["SecretString"])
        elif "SecretBinary" in response:
            try:
                value = bytes(response["SecretBinary"]).decode("utf-8")
            except UnicodeDecodeError as e:
                raise SecretAccessError(
                    key, self.provider, "Secret is binary and not valid UTF-8"
                ) from e
        else:
            return None

        logger.debug("Secret loaded from AWS Secrets Manager", extra={"secret_name": key})
        return Secret(key=key, value=value, version=response.get("VersionId"))

    @_aws_retry
    def _get_with_retry(self, key: str) -> dict[str, Any]:
        return self._sm.get_secret_value(SecretId=self._secret_id(key))  # type: ignore[no-any-return]

    async def set(
        self,
        key: str,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
    ) -> None:
        await asyncio.to_thread(self._set_sync, key, value, metadata)

    def _set_sync(self, key: str, value: SecretValue, metadata: SecretMetadata | None) -> None:
        try:
            self._set_with_retry(key, value, metadata)
        except ClientError as e:
            code = _error_code(e)
            if code == "AccessDeniedException":
                raise SecretWriteError(
                    key,
                    self.provider,
                    "Access denied. Verify IAM role has secretsmanager:PutSecretValue "
                    "and secretsmanager:CreateSecret permissions.",
                ) from e
            if code == "InvalidRequestException":
                raise SecretWriteError(key, self.provider, "Secret is marked for deletion") from e
            raise SecretWriteError(key, self.provider, f"AWS error writing secret: {code}") from e
        except BotoCoreError as e:
            raise SecretWriteError(key, self.provider, f"AWS SDK error writing secret: {e}") from e

    @_aws_retry
    def _set_with_retry(
        self, key: str, value: SecretValue, metadata: SecretMetadata | None
    ) -> None:
        secret_id = self._secret_id(key)
        secret_string = value if isinstance(value, str) else json.dumps(value)
        tags = [{"Key": k, "Value": v} for k, v in (metadata.to_labels() if metadata else {}).items()]

        try:
            self._sm.put_secret_value(SecretId=secret_id, SecretString=secret_string)
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise
            create_kwargs: dict[str, Any] = {"Name": secret_id, "SecretString": secret_string}
            if self._config.key_id:
                create_kwargs["KmsKeyId"] = self._config.key_id
            if metadata is not None and metadata.description:
                create_kwargs["Description"] = metadata.description
            if tags:
                create_kwargs["Tags"] = tags
            self._sm.create_secret(**create_kwargs)
            logger.info("Secret created in AWS Secrets Manager", extra={"secret_name": key})
            return

        if tags:
            self._sm.tag_resource(SecretId=secret_id, Tags=tags)
        logger.info("Secret updated in AWS Secrets Manager", extra={"secret_name": key})

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    def _delete_sync(self, key: str) -> None:
        try:
            self._delete_with_retry(key)
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(key, self.provider) from e
            raise SecretWriteError(key, self.provider, f"AWS error deleting secret: {code}") from e
        except BotoCoreError as e:
            raise SecretWriteError(key, self.provider, f"AWS SDK error deleting secret: {e}") from e

    @_aws_retry
    def _delete_with_retry(self, key: str) -> None:
        self._sm.delete_secret(
            SecretId=self._secret_id(key),
            RecoveryWindowInDays=self._config.recovery_window_days,
        )
        logger.info(
            "Secret scheduled for deletion",
            extra={"secret_name": key, "recovery_window_days": self._config.recovery_window_days},
        )

    async def rotate(self, key: str) -> None:
        """Trigger native rotation (requires a rotation function on the secret)."""
        await asyncio.to_thread(self._rotate_sync, key)

    def _rotate_sync(self, key: str) -> None:
        try:
            self._rotate_with_retry(key)
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(key, self.provider) from e
            raise SecretWriteError(key, self.provider, f"AWS error rotating secret: {code}") from e
        except BotoCoreError as e:
            raise SecretWriteError(key, self.provider, f"AWS SDK error rotating secret: {e}") from e

    @_aws_retry
    def _rotate_with_retry(self, key: str) -> None:
        self._sm.rotate_secret(SecretId=self._secret_id(key), RotateImmediately=True)
        logger.info("Secret rotation started", extra={"secret_name": key})

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    def _list_sync(self, prefix: str | None) -> list[str]:
        try:
            return self._list_with_retry(prefix)
        except ClientError as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"AWS API error: {_error_code(e)}",
            ) from e
        except BotoCoreError as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"AWS SDK error listing secrets: {e}",
            ) from e

    @_aws_retry
    def _list_with_retry(self, prefix: str | None) -> list[str]:
        name_prefix = self._config.name_prefix
        keys: list[str] = []
        # Filters match names exactly, so prefix filtering happens client-side
        for page in self._sm.get_paginator("list_secrets").paginate():
            for entry in page.get("SecretList", []):
                name = entry.get("Name", "")
                if not name.startswith(name_prefix):
                    continue
                key = name[len(name_prefix) :]
                if key and (prefix is None or key.startswith(prefix)):
                    keys.append(key)
        return sorted(keys)

    async def list_versions(self, key: str) -> list[str]:
        """Version ids from DescribeSecret (VersionIdsToStages), current version first."""
        return await asyncio.to_thread(self._versions_sync, key)

    def _versions_sync(self, key: str) -> list[str]:
        try:
            response = self._describe_with_retry(key)
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(key, self.provider) from e
            raise SecretAccessError(key, self.provider, f"AWS API error: {code}") from e
        except BotoCoreError as e:
            raise SecretAccessError(
                key, self.provider, f"AWS SDK error describing secret: {e}"
            ) from e

        stages: dict[str, list[str]] = response.get("VersionIdsToStages") or {}
        return sorted(stages, key=lambda version_id: "AWSCURRENT" not in stages[version_id])

    @_aws_retry
    def _describe_with_retry(self, key: str) -> dict[str, Any]:
        return self._sm.describe_secret(SecretId=self._secret_id(key))  # type: ignore[no-any-return]

    async def health(self) -> BackendHealth:
        return await asyncio.to_thread(self._health_sync)

    def _health_sync(self) -> BackendHealth:
        details = {"region": self._config.region, "kms_key_id": self._config.key_id}
        try:
            self._sm.list_secrets(MaxResults=1)
        except (ClientError, BotoCoreError, SecretAccessError) as e:
            return BackendHealth(
                status="unhealthy", provider=self.provider, details=details, error=str(e)
            )
        return BackendHealth(status="healthy", provider=self.provider, details=details)
