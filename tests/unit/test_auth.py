"""Unit tests for auth module: password hashing, JWT round trip, public paths."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import jwt
import pytest
from fastapi import HTTPException

from finvision_service.auth import (
    create_access_token,
    decode_access_token,
    get_identity,
    hash_password,
    is_public_path,
    require_secret_on_cloud_run,
    verify_password,
)


def _make_request(auth_header: str | None = None, path: str = "/api/transactions") -> MagicMock:
    """Create a mock FastAPI Request."""
    request = MagicMock()
    request.url.path = path
    request.headers = {}
    if auth_header:
        request.headers["authorization"] = auth_header
    return request


class TestPublicPaths:
    def test_liveness_is_public(self):
        assert is_public_path("/liveness")

    def test_readiness_is_public(self):
        assert is_public_path("/readiness")

    def test_docs_is_public(self):
        assert is_public_path("/docs")

    def test_auth_endpoints_are_public(self):
        assert is_public_path("/api/auth/register")
        assert is_public_path("/api/auth/login")

    def test_transactions_is_not_public(self):
        assert not is_public_path("/api/transactions")

    def test_uploads_is_not_public(self):
        assert not is_public_path("/api/uploads")


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed.startswith("scrypt$16384$8$1$")
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_blank_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("   ")

    @pytest.mark.parametrize("stored", ["", "plain", "bcrypt$1$2$3$a$b", "scrypt$x$8$1$a$b"])
    def test_malformed_hash_never_verifies(self, stored):
        assert not verify_password("anything", stored)


class TestTokens:
    def test_round_trip(self):
        token = create_access_token(user_id="u-1", email="ada@example.com", name="Ada")
        identity = decode_access_token(token)
        assert identity.user_id == "u-1"
        assert identity.email == "ada@example.com"
        assert identity.name == "Ada"

    def test_expired_token(self):
        token = create_access_token(
            user_id="u-1",
            email="ada@example.com",
            name="Ada",
            now=datetime.now(UTC) - timedelta(days=30),
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token expired"

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "u-1"}, "some-other-secret-key-of-decent-length", algorithm="HS256")
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401

    @patch("finvision_service.auth.FINVISION_JWT_SECRET", "unit-test-secret-with-enough-length")
    def test_missing_sub_claim(self):
        token = jwt.encode(
            {"email": "ada@example.com"}, "unit-test-secret-with-enough-length", algorithm="HS256"
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.detail == "Token missing sub claim"


class TestGetIdentity:
    async def test_missing_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_identity(_make_request())
        assert exc_info.value.status_code == 401

    async def test_non_bearer_header_raises_401(self):
        with pytest.raises(HTTPException):
            await get_identity(_make_request(auth_header="Basic YWRhOnB3"))

    async def test_valid_bearer_token(self):
        token = create_access_token(user_id="u-1", email="ada@example.com", name="Ada")
        identity = await get_identity(_make_request(auth_header=f"Bearer {token}"))
        assert identity.user_id == "u-1"

    async def test_garbage_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_identity(_make_request(auth_header="Bearer not-a-jwt"))
        assert exc_info.value.status_code == 401


class TestCloudRunSafety:
    @patch("finvision_service.auth.IS_CLOUD_RUN", True)
    @patch("finvision_service.auth.FINVISION_JWT_SECRET", "finvision-dev-secret-change-me-in-production")
    def test_dev_secret_rejected_on_cloud_run(self):
        with pytest.raises(RuntimeError):
            require_secret_on_cloud_run()

    @patch("finvision_service.auth.IS_CLOUD_RUN", False)
    @patch("finvision_service.auth.FINVISION_JWT_SECRET", "finvision-dev-secret-change-me-in-production")
    def test_dev_secret_allowed_locally(self):
        require_secret_on_cloud_run()

    @patch("finvision_service.auth.IS_CLOUD_RUN", True)
    @patch("finvision_service.auth.FINVISION_JWT_SECRET", "a-real-production-secret")
    def test_custom_secret_on_cloud_run(self):
        require_secret_on_cloud_run()
