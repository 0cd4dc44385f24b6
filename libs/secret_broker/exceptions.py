"""
Secret Broker Exception Hierarchy.

Exception hierarchy:
    SecretManagerError (base)
    ├── SecretNotFoundError - Secret doesn't exist in the backend store
    ├── SecretAccessError - Authentication, connectivity or read failure
    ├── SecretWriteError - set/delete/rotate failed in the backend store
    └── SecretConfigurationError - Invalid provider configuration or broker misuse

Read-path callers rarely see these: the broker absorbs read faults and
degrades to the last known value. Write-path callers always see them.

All exceptions carry the secret name and backend provider as context and
MUST NOT include secret values.
"""


class SecretManagerError(Exception):
    """
    Base exception for all secret broker errors.

    Attributes:
        secret_name: Key of the secret (e.g., "database/url")
        backend: Provider name ("cluster", "kv-store", "cloud-kms", "composite")
        message: Human-readable error message (never includes the secret value)

    Example:
        >>> str(SecretManagerError("Timeout", "database/url", "kv-store"))
        'Timeout (secret: database/url, backend: kv-store)'
    """

    def __init__(
        self,
        message: str,
        secret_name: str | None = None,
        backend: str | None = None,
    ) -> None:
        super().__init__(message)
        self.secret_name = secret_name
        self.backend = backend
        self.message = message

    def __str__(self) -> str:
        context_parts = []
        if self.secret_name:
            context_parts.append(f"secret: {self.secret_name}")
        if self.backend:
            context_parts.append(f"backend: {self.backend}")

        if context_parts:
            context = ", ".join(context_parts)
            return f"{self.message} ({context})"
        return self.message


class SecretNotFoundError(SecretManagerError):
    """
    Raised when an operation needs a secret that doesn't exist.

    The broker's read path maps this to an absent result; it surfaces only
    from mutations that require an existing secret (rotate, delete).
    """

    def __init__(
        self,
        secret_name: str,
        backend: str,
        additional_context: str | None = None,
    ) -> None:
        if not isinstance(secret_name, str) or not secret_name:
            raise TypeError("secret_name must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")

        base_message = f"Secret '{secret_name}' not found in {backend}"
        if additional_context:
            base_message += f". {additional_context}"

        super().__init__(
            message=base_message,
            secret_name=secret_name,
            backend=backend,
        )


class SecretAccessError(SecretManagerError):
    """
    Raised when the backend store cannot be read.

    Common causes:
    - Expired token or missing IAM permission
    - Backend unreachable (timeout, connection refused, DNS)
    - Backend sealed or returning 5xx

    Example:
        >>> raise SecretAccessError("database/url", "kv-store", "Vault is sealed")
    """

    def __init__(
        self,
        secret_name: str,
        backend: str,
        reason: str,
    ) -> None:
        if not isinstance(secret_name, str) or not secret_name:
            raise TypeError("secret_name must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")
        if not isinstance(reason, str) or not reason:
            raise TypeError("reason must be a non-empty string")

        super().__init__(
            message=f"Access denied: {reason}",
            secret_name=secret_name,
            backend=backend,
        )


class SecretWriteError(SecretManagerError):
    """
    Raised when a mutation (set, delete, rotate) fails in the backend store.

    These are operator-invoked state changes, so the broker never swallows
    them: the caller receives this error with the underlying cause chained.
    """

    def __init__(
        self,
        secret_name: str,
        backend: str,
        reason: str,
    ) -> None:
        if not isinstance(secret_name, str) or not secret_name:
            raise TypeError("secret_name must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")
        if not isinstance(reason, str) or not reason:
            raise TypeError("reason must be a non-empty string")

        super().__init__(
            message=f"Failed to write secret: {reason}",
            secret_name=secret_name,
            backend=backend,
        )


class SecretConfigurationError(SecretManagerError):
    """Raised for invalid backend configuration or a duplicate live broker."""
