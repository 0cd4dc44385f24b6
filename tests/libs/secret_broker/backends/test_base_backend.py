"""Tests for the default behavior in libs/secret_broker/backends/base.py."""

import pytest

from libs.secret_broker.backends.base import ROTATED_AT_LABEL
from libs.secret_broker.exceptions import (
    SecretAccessError,
    SecretNotFoundError,
    SecretWriteError,
)
from libs.secret_broker.models import SecretMetadata


@pytest.mark.unit()
class TestDefaultRotation:
    @pytest.mark.asyncio()
    async def test_string_secret_replaced_with_label(self, fake_backend) -> None:
        fake_backend.seed("db/password", "old-value", SecretMetadata(owner="platform"))

        await fake_backend.rotate("db/password")

        rotated = fake_backend.secrets["db/password"]
        assert rotated.value != "old-value"
        assert rotated.metadata.owner == "platform"
        assert ROTATED_AT_LABEL in rotated.metadata.labels

    @pytest.mark.asyncio()
    async def test_dict_secret_keeps_other_fields(self, fake_backend) -> None:
        fake_backend.seed("oauth/github", {"client_id": "nexus", "value": "old"})

        await fake_backend.rotate("oauth/github")

        rotated = fake_backend.secrets["oauth/github"].value
        assert rotated["client_id"] == "nexus"
        assert rotated["value"] != "old"

    @pytest.mark.asyncio()
    async def test_missing_secret(self, fake_backend) -> None:
        with pytest.raises(SecretNotFoundError):
            await fake_backend.rotate("never/existed")

    @pytest.mark.asyncio()
    async def test_read_failure_is_a_write_error(self, fake_backend) -> None:
        fake_backend.seed("db/password", "old-value")
        fake_backend.failing_keys.add("db/password")

        with pytest.raises(SecretWriteError, match="rotation") as exc_info:
            await fake_backend.rotate("db/password")

        assert isinstance(exc_info.value.__cause__, SecretAccessError)
        assert fake_backend.calls["set"] == 0
        assert fake_backend.secrets["db/password"].value == "old-value"


@pytest.mark.unit()
class TestDefaultVersions:
    @pytest.mark.asyncio()
    async def test_current_version_only(self, fake_backend) -> None:
        fake_backend.seed("db/password", "v1")
        fake_backend.seed("db/password", "v2")

        assert await fake_backend.list_versions("db/password") == [
            fake_backend.secrets["db/password"].version
        ]

    @pytest.mark.asyncio()
    async def test_missing_secret(self, fake_backend) -> None:
        with pytest.raises(SecretNotFoundError):
            await fake_backend.list_versions("never/existed")
