"""
Distributed KV store backed by HashiCorp Vault (KV v2 engine).

Architecture:
    - hvac client (blocking); every call runs in a worker thread via
      asyncio.to_thread so the event loop never blocks on Vault
    - Token authentication (explicit token or VAULT_TOKEN from the environment)
    - Path convention: key "database/url" → "{mount_point}/data/database/url"
    - Single-value secrets are stored as {"value": <str>}; dict secrets as-is
    - SecretMetadata is stored as KV v2 custom metadata (str → str)
    - VaultDown is retried 3 times with exponential backoff; other errors are not

Security Considerations:
    - Secret values are never logged (only paths)
    - Sealed Vault is detected on connect and reported by health()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import hvac
from hvac.exceptions import (
    Forbidden,
    InvalidPath,
    InvalidRequest,
    Unauthorized,
    VaultDown,
    VaultError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.config import KVStoreBackendConfig
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretManagerError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

logger = logging.getLogger(__name__)

_vault_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(VaultDown),
    reraise=True,
)


class VaultSecretBackend(SecretBackend):
    """
    HashiCorp Vault KV v2 store.

    Example:
        >>> backend = VaultSecretBackend(
        ...     KVStoreBackendConfig(endpoint="https://vault:8200", token="s.abc")
        ... )
        >>> await backend.connect()
        >>> secret = await backend.get("database/url")
    """

    provider = "kv-store"

    def __init__(self, config: KVStoreBackendConfig, client: hvac.Client | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def _kv(self) -> Any:
        if self._client is None:
            raise SecretManagerError("Vault backend is not connected", backend=self.provider)
        return self._client.secrets.kv.v2

    async def connect(self) -> None:
        """
        Create the hvac client and verify authentication and seal status.

        Tokens without the 'lookup-self' or 'sys/seal-status' capability are
        accepted; validation is then deferred to the first secret access.

        Raises:
            SecretAccessError: Authentication failed, Vault sealed or unreachable
        """
        await asyncio.to_thread(self._connect_sync)

    def _connect_sync(self) -> None:
        endpoint = self._config.endpoint
        token = self._config.token.get_secret_value() if self._config.token else None
        try:
            if self._client is None:
                self._client = hvac.Client(url=endpoint, token=token, verify=self._config.verify)

            try:
                if not self._client.is_authenticated():
                    raise SecretAccessError(
                        "vault_auth",
                        self.provider,
                        f"Vault authentication failed for {endpoint}. "
                        "Verify token is valid and not expired.",
                    )
            except Forbidden:
                logger.info(
                    "Vault token lacks 'lookup-self' capability, deferring validation",
                    extra={"vault_url": endpoint, "backend": self.provider},
                )

            try:
                if self._client.sys.is_sealed():
                    raise SecretAccessError(
                        "vault_status",
                        self.provider,
                        f"Vault is sealed at {endpoint}. Unseal Vault before accessing secrets.",
                    )
            except Forbidden:
                logger.info(
                    "Vault token lacks 'sys/seal-status' capability, skipping seal check",
                    extra={"vault_url": endpoint, "backend": self.provider},
                )
        except SecretManagerError:
            raise
        except (Unauthorized, Forbidden) as e:
            raise SecretAccessError(
                "vault_auth", self.provider, f"Vault authentication failed: {e}"
            ) from e
        except VaultDown as e:
            raise SecretAccessError(
                "vault_connectivity",
                self.provider,
                f"Vault server unreachable at {endpoint}: {e}",
            ) from e
        except VaultError as e:
            raise SecretAccessError(
                "vault_init", self.provider, f"Vault initialization failed: {e}"
            ) from e

        logger.info(
            "Connected to Vault successfully",
            extra={
                "vault_url": endpoint,
                "mount_point": self._config.mount_point,
                "backend": self.provider,
            },
        )

    async def close(self) -> None:
        adapter = getattr(self._client, "adapter", None)
        if adapter is not None and hasattr(adapter, "close"):
            await asyncio.to_thread(adapter.close)
        logger.info("Vault backend closed", extra={"backend": self.provider})

    async def get(self, key: str) -> Secret | None:
        return await asyncio.to_thread(self._get_sync, key)

    def _get_sync(self, key: str) -> Secret | None:
        try:
            return self._read_with_retry(key)
        except VaultDown as e:
            logger.error(
                "Vault unreachable after retries",
                extra={"secret_path": key, "backend": self.provider},
            )
            raise SecretAccessError(key, self.provider, f"Vault server unreachable: {e}") from e

    @_vault_retry
    def _read_with_retry(self, key: str) -> Secret | None:
        try:
            response = self._kv.read_secret_version(
                path=key,
                mount_point=self._config.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath:
            return None
        except Forbidden as e:
            raise SecretAccessError(
                key,
                self.provider,
                f"Permission denied reading '{key}'. "
                f"Verify token has read access to {self._config.mount_point}/{key}",
            ) from e
        except VaultDown:
            raise
        except VaultError as e:
            logger.error(
                "Vault secret read failed - server error",
                extra={
                    "secret_name": key,
                    "backend": self.provider,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise SecretAccessError(key, self.provider, f"Vault error reading '{key}': {e}") from e

        body = response.get("data") or {}
        secret_data = body.get("data") or {}
        if not secret_data:
            return None

        version_info = body.get("metadata") or {}
        custom = version_info.get("custom_metadata") or {}
        value: SecretValue = (
            str(secret_data["value"]) if set(secret_data) == {"value"} else dict(secret_data)
        )
        version = version_info.get("version")
        logger.debug("Secret loaded from Vault", extra={"secret_path": key})
        return Secret(
            key=key,
            value=value,
            metadata=SecretMetadata.from_labels(custom) if custom else None,
            version=str(version) if version is not None else None,
        )

    async def set(
        self,
        key: str,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
    ) -> None:
        await asyncio.to_thread(self._set_sync, key, value, metadata)

    def _set_sync(self, key: str, value: SecretValue, metadata: SecretMetadata | None) -> None:
        try:
            self._write_with_retry(key, value, metadata)
        except VaultDown as e:
            raise SecretWriteError(
                key, self.provider, f"Vault server unreachable during write: {e}"
            ) from e

    @_vault_retry
    def _write_with_retry(
        self, key: str, value: SecretValue, metadata: SecretMetadata | None
    ) -> None:
        payload = {"value": value} if isinstance(value, str) else dict(value)
        try:
            self._kv.create_or_update_secret(
                path=key,
                secret=payload,
                mount_point=self._config.mount_point,
            )
            if metadata is not None:
                self._kv.update_metadata(
                    path=key,
                    mount_point=self._config.mount_point,
                    custom_metadata=metadata.to_labels(),
                )
        except Forbidden as e:
            raise SecretWriteError(
                key,
                self.provider,
                f"Permission denied writing '{key}'. "
                f"Verify token has create/update capability on {self._config.mount_point}/{key}",
            ) from e
        except InvalidRequest as e:
            raise SecretWriteError(key, self.provider, f"Invalid write request: {e}") from e
        except VaultDown:
            raise
        except VaultError as e:
            raise SecretWriteError(key, self.provider, f"Vault error writing '{key}': {e}") from e

        logger.info("Secret written to Vault", extra={"secret_path": key})

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    def _delete_sync(self, key: str) -> None:
        try:
            self._delete_with_retry(key)
        except VaultDown as e:
            raise SecretWriteError(
                key, self.provider, f"Vault server unreachable during delete: {e}"
            ) from e

    @_vault_retry
    def _delete_with_retry(self, key: str) -> None:
        try:
            self._kv.read_secret_metadata(path=key, mount_point=self._config.mount_point)
        except InvalidPath as e:
            raise SecretNotFoundError(key, self.provider) from e
        except VaultDown:
            raise
        except VaultError as e:
            raise SecretWriteError(key, self.provider, f"Vault error deleting '{key}': {e}") from e

        try:
            self._kv.delete_metadata_and_all_versions(
                path=key, mount_point=self._config.mount_point
            )
        except Forbidden as e:
            raise SecretWriteError(
                key, self.provider, f"Permission denied deleting '{key}'"
            ) from e
        except VaultDown:
            raise
        except VaultError as e:
            raise SecretWriteError(key, self.provider, f"Vault error deleting '{key}': {e}") from e

        logger.info("Secret deleted from Vault", extra={"secret_path": key})

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    def _list_sync(self, prefix: str | None) -> list[str]:
        try:
            return self._list_with_retry(prefix)
        except VaultDown as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"Vault server unreachable: {e}",
            ) from e

    @_vault_retry
    def _list_with_retry(self, prefix: str | None) -> list[str]:
        # Walk the metadata tree iteratively; entries ending in "/" are folders
        all_paths: list[str] = []
        stack = [prefix.rstrip("/") if prefix else ""]
        try:
            while stack:
                current_path = stack.pop()
                response = self._kv.list_secrets(
                    path=current_path,
                    mount_point=self._config.mount_point,
                )
                for entry in response.get("data", {}).get("keys", []):
                    full_path = f"{current_path}/{entry}" if current_path else entry
                    if entry.endswith("/"):
                        stack.append(full_path.rstrip("/"))
                    else:
                        all_paths.append(full_path)
        except InvalidPath:
            # Empty folder or unknown prefix
            pass
        except Forbidden as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"Permission denied listing secrets. Verify token has list capability on "
                f"{self._config.mount_point}/metadata/*",
            ) from e
        except VaultDown:
            raise
        except VaultError as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"Vault error listing secrets: {e}",
            ) from e

        return sorted(all_paths)

    async def health(self) -> BackendHealth:
        return await asyncio.to_thread(self._health_sync)

    def _health_sync(self) -> BackendHealth:
        details: dict[str, Any] = {
            "endpoint": self._config.endpoint,
            "mount_point": self._config.mount_point,
        }
        if self._client is None:
            return BackendHealth(
                status="unhealthy", provider=self.provider, details=details, error="not connected"
            )
        try:
            status = self._client.sys.read_seal_status()
        except Exception as e:
            return BackendHealth(
                status="unhealthy", provider=self.provider, details=details, error=str(e)
            )

        details["version"] = status.get("version")
        if status.get("sealed"):
            return BackendHealth(
                status="unhealthy", provider=self.provider, details=details, error="Vault is sealed"
            )
        return BackendHealth(status="healthy", provider=self.provider, details=details)
