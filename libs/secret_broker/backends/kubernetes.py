"""
Cluster-native secret store backed by Kubernetes Secrets.

Talks to the Kubernetes REST API directly with httpx.AsyncClient using the
pod's service-account credentials.

Object layout:
    - Name: ``nexus-{environment}-{key sanitized}``; every character outside
      [a-z0-9-] becomes "-" (so "database/url" → "nexus-prod-database-url")
    - Labels: ``nexus.workspace/managed=true`` and the environment
    - Annotations: the original key, the JSON-encoded SecretMetadata and the
      last write time
    - Data: base64 fields; a string secret is stored under a single ``value``
      field, a dict secret field by field

Retries:
    Transport errors and 5xx responses are retried 3 times with exponential
    backoff. 4xx responses are never retried.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from libs.secret_broker.backends.base import SecretBackend
from libs.secret_broker.config import ClusterBackendConfig
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretManagerError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.models import BackendHealth, Secret, SecretMetadata, SecretValue

logger = logging.getLogger(__name__)

MANAGED_LABEL = "nexus.workspace/managed"
ENVIRONMENT_LABEL = "nexus.workspace/environment"
KEY_ANNOTATION = "nexus.workspace/secret-key"
METADATA_ANNOTATION = "nexus.workspace/metadata"
UPDATED_AT_ANNOTATION = "nexus.workspace/updated-at"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def secret_object_name(environment: str, key: str) -> str:
    """Kubernetes object name for a secret key."""
    safe_key = _UNSAFE_NAME_CHARS.sub("-", key.lower())
    safe_env = _UNSAFE_NAME_CHARS.sub("-", environment.lower())
    return f"nexus-{safe_env}-{safe_key}"


def _is_transient_http_error(exception: BaseException) -> bool:
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code >= 500
    return False


def _encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _decode(encoded: str) -> str:
    return base64.b64decode(encoded, validate=True).decode("utf-8")


class KubernetesSecretBackend(SecretBackend):
    """
    Kubernetes Secrets in one namespace.

    Example:
        >>> backend = KubernetesSecretBackend(ClusterBackendConfig(namespace="nexus"))
        >>> async with backend:
        ...     secret = await backend.get("database/url")
    """

    provider = "cluster"

    def __init__(
        self,
        config: ClusterBackendConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            config: Cluster store configuration
            client: Pre-built client (base_url set to the API server). When
                    omitted, connect() builds one from the service-account
                    token and CA bundle.
        """
        self._config = config
        self._client = client
        self._owns_client = client is None

    @property
    def namespace(self) -> str:
        return self._config.namespace

    def _secrets_path(self, name: str | None = None) -> str:
        path = f"/api/v1/namespaces/{self._config.namespace}/secrets"
        return f"{path}/{name}" if name else path

    def _object_name(self, key: str) -> str:
        return secret_object_name(self._config.environment, key)

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        token_file = Path(self._config.token_path)
        if token_file.is_file():
            headers["Authorization"] = f"Bearer {token_file.read_text().strip()}"
        else:
            logger.warning(
                "Service account token not found, calling API server unauthenticated",
                extra={"token_path": self._config.token_path, "backend": self.provider},
            )
        ca_file = Path(self._config.ca_path)
        verify: str | bool = str(ca_file) if ca_file.is_file() else True
        return httpx.AsyncClient(
            base_url=self._config.api_server,
            headers=headers,
            timeout=self._config.timeout_seconds,
            verify=verify,
        )

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise SecretManagerError("Kubernetes backend is not connected", backend=self.provider)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception(_is_transient_http_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._http.request(method, path, **kwargs)
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def connect(self) -> None:
        """
        Build the API client and check the namespace is reachable.

        A 403 on the namespace lookup is tolerated (service accounts commonly
        lack namespace read access); any other failure is fatal.

        Raises:
            SecretAccessError: API server unreachable or credentials rejected
        """
        if self._client is None:
            self._client = self._build_client()
            self._owns_client = True

        try:
            response = await self._request("GET", f"/api/v1/namespaces/{self.namespace}")
        except httpx.HTTPError as e:
            raise SecretAccessError(
                "__namespace__",
                self.provider,
                f"Kubernetes API unreachable at {self._config.api_server}: {e}",
            ) from e

        if response.status_code == 403:
            logger.info(
                "Service account cannot read namespace, deferring validation",
                extra={"namespace": self.namespace, "backend": self.provider},
            )
        elif response.status_code == 401:
            raise SecretAccessError(
                "__namespace__",
                self.provider,
                "Kubernetes API rejected the service account token",
            )
        elif response.is_error:
            raise SecretAccessError(
                "__namespace__",
                self.provider,
                f"Namespace '{self.namespace}' lookup returned HTTP {response.status_code}",
            )

        logger.info(
            "Connected to Kubernetes API",
            extra={
                "api_server": self._config.api_server,
                "namespace": self.namespace,
                "backend": self.provider,
            },
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Secret | None:
        name = self._object_name(key)
        try:
            response = await self._request("GET", self._secrets_path(name))
        except httpx.HTTPError as e:
            raise SecretAccessError(key, self.provider, f"Kubernetes API request failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code in (401, 403):
            raise SecretAccessError(
                key,
                self.provider,
                f"Permission denied reading secret object '{name}' (HTTP {response.status_code})",
            )
        if response.is_error:
            raise SecretAccessError(
                key, self.provider, f"Kubernetes API returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
            data: dict[str, str] = body.get("data") or {}
            if not data:
                return None
            decoded = {field_name: _decode(raw) for field_name, raw in data.items()}
            object_meta = body.get("metadata") or {}
            annotations: dict[str, str] = object_meta.get("annotations") or {}
            metadata = self._parse_metadata(annotations)
        except (ValueError, binascii.Error, ValidationError, AttributeError) as e:
            raise SecretAccessError(
                key, self.provider, f"Malformed secret object '{name}': {type(e).__name__}"
            ) from e

        # Distinct keys can sanitize to the same object name
        stored_key = annotations.get(KEY_ANNOTATION)
        if stored_key is not None and stored_key != key:
            raise SecretAccessError(
                key,
                self.provider,
                f"Secret object '{name}' holds key '{stored_key}', not the requested key",
            )

        value: SecretValue = decoded["value"] if set(decoded) == {"value"} else decoded
        logger.debug("Secret loaded from Kubernetes", extra={"secret_name": key})
        return Secret(
            key=key,
            value=value,
            metadata=metadata,
            version=object_meta.get("resourceVersion"),
        )

    @staticmethod
    def _parse_metadata(annotations: dict[str, str]) -> SecretMetadata | None:
        raw = annotations.get(METADATA_ANNOTATION)
        if not raw:
            return None
        return SecretMetadata.model_validate_json(raw)

    def _manifest(
        self, key: str, value: SecretValue, metadata: SecretMetadata | None
    ) -> dict[str, Any]:
        if isinstance(value, str):
            data = {"value": _encode(value)}
        else:
            data = {
                field_name: _encode(
                    field_value if isinstance(field_value, str) else json.dumps(field_value)
                )
                for field_name, field_value in value.items()
            }

        annotations = {
            KEY_ANNOTATION: key,
            UPDATED_AT_ANNOTATION: datetime.now(UTC).isoformat(),
        }
        if metadata is not None:
            annotations[METADATA_ANNOTATION] = metadata.model_dump_json()

        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": self._object_name(key),
                "namespace": self.namespace,
                "labels": {
                    MANAGED_LABEL: "true",
                    ENVIRONMENT_LABEL: _UNSAFE_NAME_CHARS.sub(
                        "-", self._config.environment.lower()
                    ),
                },
                "annotations": annotations,
            },
            "data": data,
        }

    async def set(
        self,
        key: str,
        value: SecretValue,
        metadata: SecretMetadata | None = None,
    ) -> None:
        manifest = self._manifest(key, value, metadata)
        name = manifest["metadata"]["name"]
        try:
            response = await self._request("PUT", self._secrets_path(name), json=manifest)
            created = False
            if response.status_code == 404:
                response = await self._request("POST", self._secrets_path(), json=manifest)
                created = True
        except httpx.HTTPError as e:
            raise SecretWriteError(key, self.provider, f"Kubernetes API request failed: {e}") from e

        if response.is_error:
            raise SecretWriteError(
                key,
                self.provider,
                f"Kubernetes API rejected write of '{name}' (HTTP {response.status_code})",
            )
        logger.info(
            "Secret created in Kubernetes" if created else "Secret updated in Kubernetes",
            extra={"secret_name": key, "object_name": name, "namespace": self.namespace},
        )

    async def delete(self, key: str) -> None:
        name = self._object_name(key)
        try:
            response = await self._request("DELETE", self._secrets_path(name))
        except httpx.HTTPError as e:
            raise SecretWriteError(key, self.provider, f"Kubernetes API request failed: {e}") from e

        if response.status_code == 404:
            raise SecretNotFoundError(key, self.provider, f"No secret object named '{name}'")
        if response.is_error:
            raise SecretWriteError(
                key,
                self.provider,
                f"Kubernetes API rejected delete of '{name}' (HTTP {response.status_code})",
            )
        logger.info(
            "Secret deleted from Kubernetes",
            extra={"secret_name": key, "object_name": name, "namespace": self.namespace},
        )

    def _key_from_object(self, item: dict[str, Any]) -> str | None:
        object_meta = item.get("metadata") or {}
        annotations = object_meta.get("annotations") or {}
        if annotations.get(KEY_ANNOTATION):
            return str(annotations[KEY_ANNOTATION])
        # Objects written without the key annotation: recover it from the name
        prefix = secret_object_name(self._config.environment, "")
        name = object_meta.get("name", "")
        if name.startswith(prefix) and len(name) > len(prefix):
            return name[len(prefix) :].replace("-", "/")
        return None

    async def list_keys(self, prefix: str | None = None) -> list[str]:
        selector = f"{MANAGED_LABEL}=true"
        try:
            response = await self._request(
                "GET", self._secrets_path(), params={"labelSelector": selector}
            )
        except httpx.HTTPError as e:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"Kubernetes API request failed: {e}",
            ) from e
        if response.is_error:
            raise SecretAccessError(
                f"list_secrets(prefix={prefix})",
                self.provider,
                f"Listing secrets returned HTTP {response.status_code}",
            )

        keys = []
        for item in response.json().get("items") or []:
            key = self._key_from_object(item)
            if key is not None and (prefix is None or key.startswith(prefix)):
                keys.append(key)
        return sorted(keys)

    async def health(self) -> BackendHealth:
        details = {"namespace": self.namespace, "api_server": self._config.api_server}
        try:
            response = await self._request("GET", self._secrets_path(), params={"limit": 1})
        except (httpx.HTTPError, SecretManagerError) as e:
            return BackendHealth(
                status="unhealthy", provider=self.provider, details=details, error=str(e)
            )
        if response.is_error:
            return BackendHealth(
                status="unhealthy",
                provider=self.provider,
                details=details,
                error=f"Kubernetes API returned HTTP {response.status_code}",
            )
        return BackendHealth(status="healthy", provider=self.provider, details=details)
