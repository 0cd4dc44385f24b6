"""Tests for libs/secret_broker/generator.py."""

import base64
import re

import pytest

from libs.secret_broker.generator import (
    PASSWORD_ALPHABET,
    SecretKind,
    generate_secret,
    rotation_value,
)


@pytest.mark.unit()
class TestGenerateSecret:
    def test_password_length_and_alphabet(self) -> None:
        value = generate_secret("database/password", "password")
        assert len(value) == 32
        assert set(value) <= set(PASSWORD_ALPHABET)

    def test_key_is_64_hex_chars(self) -> None:
        value = generate_secret("encryption/primary-key", SecretKind.KEY)
        assert re.fullmatch(r"[0-9a-f]{64}", value)

    def test_token_is_base64_of_32_bytes(self) -> None:
        value = generate_secret("auth/jwt-secret", "token")
        assert len(base64.b64decode(value, validate=True)) == 32

    def test_default_kind_is_password(self) -> None:
        assert len(generate_secret("anything")) == 32

    def test_values_are_not_repeated(self) -> None:
        values = {generate_secret("k", "key") for _ in range(50)}
        assert len(values) == 50

    def test_key_name_does_not_influence_value(self) -> None:
        # Same name, independent draws
        assert generate_secret("same", "token") != generate_secret("same", "token")

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported secret kind 'pin'"):
            generate_secret("k", "pin")


@pytest.mark.unit()
class TestRotationValue:
    def test_password_and_secret_keys_get_base64_32(self) -> None:
        for key in ("database/password", "auth/jwt-secret"):
            assert len(base64.b64decode(rotation_value(key), validate=True)) == 32

    def test_key_names_get_hex_32(self) -> None:
        assert re.fullmatch(r"[0-9a-f]{64}", rotation_value("api-key-stripe"))

    def test_other_names_get_base64_16(self) -> None:
        assert len(base64.b64decode(rotation_value("database/url"), validate=True)) == 16
