"""
Key-name driven validation policy for candidate secret values.

The broker does not enforce this policy: callers (operator CLI, admin
endpoints) run it before ``set_secret``. Rules are selected by substrings of
the key name and checked in this order:

    1. Every value: at least 8 characters
    2. "password" or "secret" in key: at least 12 characters with an
       uppercase letter, a lowercase letter and a digit
    3. "key" and "encryption" in key: entirely hex or entirely base64 alphabet
    4. "url" in key: must parse as an absolute URL

The first matching rule of 2-4 decides. The result is a plain bool; which
rule rejected the value is not reported.

Example:
    >>> validate_secret_value("db-password", "Abcdefgh1234")
    True
    >>> validate_secret_value("api-url", "not a url")
    False
"""

from __future__ import annotations

import re

from pydantic import AnyUrl, TypeAdapter, ValidationError

from libs.secret_broker.models import SecretKeys, key_name

MIN_LENGTH = 8
MIN_PASSWORD_LENGTH = 12

_HEX_PATTERN = re.compile(r"^[A-Fa-f0-9]+$")
_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*$")
_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


def _is_complex_password(value: str) -> bool:
    return (
        len(value) >= MIN_PASSWORD_LENGTH
        and any(ch.isupper() for ch in value)
        and any(ch.islower() for ch in value)
        and any(ch.isdigit() for ch in value)
    )


def _is_encoded_key(value: str) -> bool:
    return bool(_HEX_PATTERN.fullmatch(value) or _BASE64_PATTERN.fullmatch(value))


def _is_url(value: str) -> bool:
    if any(ch.isspace() for ch in value):
        return False
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        return False
    return True


def validate_secret_value(key: str | SecretKeys, value: str) -> bool:
    """
    Check a candidate value against the policy selected by its key name.

    Args:
        key: Secret key the value is destined for
        value: Candidate secret value

    Returns:
        True if the value satisfies the policy, False otherwise
    """
    if not isinstance(value, str) or len(value) < MIN_LENGTH:
        return False

    name = key_name(key)
    if "password" in name or "secret" in name:
        return _is_complex_password(value)
    if "key" in name and "encryption" in name:
        return _is_encoded_key(value)
    if "url" in name:
        return _is_url(value)
    return True
