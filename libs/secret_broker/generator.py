"""
Secret material generation.

All randomness comes from the ``secrets`` module (OS CSPRNG).

Kinds:
    password: 32 characters drawn uniformly from [A-Za-z0-9!@#$%^&*]
    key:      32 random bytes, hex encoded (64 characters)
    token:    32 random bytes, standard base64 (44 characters)
"""

from __future__ import annotations

import base64
import secrets
import string
from enum import Enum

from libs.secret_broker.models import SecretKeys, key_name

PASSWORD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "!@#$%^&*"
PASSWORD_LENGTH = 32
RANDOM_BYTES = 32


class SecretKind(str, Enum):
    PASSWORD = "password"
    KEY = "key"
    TOKEN = "token"


def generate_secret(key: str | SecretKeys, kind: SecretKind | str = SecretKind.PASSWORD) -> str:
    """
    Generate new secret material.

    Args:
        key: Secret the material is intended for. Context only; it does not
             influence the generated value.
        kind: "password", "key" or "token"

    Returns:
        Generated secret value

    Raises:
        ValueError: Unsupported kind
    """
    try:
        selected = SecretKind(kind)
    except ValueError:
        raise ValueError(
            f"Unsupported secret kind '{kind}' for '{key_name(key)}'. "
            f"Valid options: {', '.join(k.value for k in SecretKind)}"
        ) from None

    if selected is SecretKind.PASSWORD:
        return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(PASSWORD_LENGTH))
    if selected is SecretKind.KEY:
        return secrets.token_bytes(RANDOM_BYTES).hex()
    return base64.b64encode(secrets.token_bytes(RANDOM_BYTES)).decode("ascii")


def rotation_value(key: str) -> str:
    """
    Replacement material for stores without native rotation.

    Chosen by key name: password/secret → base64 of 32 bytes, key → hex of
    32 bytes, anything else → base64 of 16 bytes.
    """
    if "password" in key or "secret" in key:
        return base64.b64encode(secrets.token_bytes(32)).decode("ascii")
    if "key" in key:
        return secrets.token_bytes(32).hex()
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")
