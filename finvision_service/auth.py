"""Authentication for the FinVision service.

Users register with email and password (scrypt hashes). Login and
registration return an HS256 JWT carrying ``sub``, ``email`` and ``name``;
the auth middleware decodes it into an ``Identity`` for each request.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from hmac import compare_digest

import jwt
from fastapi import HTTPException, Request

from finvision_service.config import (
    FINVISION_JWT_ALGORITHM,
    FINVISION_JWT_SECRET,
    FINVISION_TOKEN_TTL_HOURS,
    IS_CLOUD_RUN,
)

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "finvision-dev-secret-change-me-in-production"

# Paths that skip auth
_PUBLIC_PATHS = {
    "/liveness",
    "/readiness",
    "/docs",
    "/openapi.json",
    "/api/auth/register",
    "/api/auth/login",
}

_SALT_BYTES = 16
_KEY_LEN = 32
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


@dataclass
class Identity:
    """Authenticated caller identity."""

    user_id: str
    email: str
    name: str


# -- Passwords ----------------------------------------------------------------


def _encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def hash_password(password: str) -> str:
    """Return an scrypt hash for the supplied password."""
    if not password.strip():
        raise ValueError("Password must not be empty")

    salt = secrets.token_bytes(_SALT_BYTES)
    key = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LEN,
    )
    return "scrypt$%d$%d$%d$%s$%s" % (_SCRYPT_N, _SCRYPT_R, _SCRYPT_P, _encode(salt), _encode(key))


def verify_password(password: str, hashed: str) -> bool:
    try:
        scheme, n_str, r_str, p_str, salt_b64, key_b64 = hashed.split("$", 5)
        if scheme != "scrypt":
            return False
        n, r, p = int(n_str), int(r_str), int(p_str)
        salt = _decode(salt_b64)
        expected = _decode(key_b64)
    except (ValueError, TypeError):
        return False

    try:
        candidate = hashlib.scrypt(
            password.encode("utf-8"), salt=salt, n=n, r=r, p=p, dklen=len(expected)
        )
    except ValueError:
        return False
    return compare_digest(candidate, expected)


# -- Tokens -------------------------------------------------------------------


def create_access_token(*, user_id: str, email: str, name: str, now: datetime | None = None) -> str:
    issued = now or datetime.now(UTC)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": issued,
        "exp": issued + timedelta(hours=FINVISION_TOKEN_TTL_HOURS),
    }
    return jwt.encode(payload, FINVISION_JWT_SECRET, algorithm=FINVISION_JWT_ALGORITHM)


def decode_access_token(token: str) -> Identity:
    """Verify a token and return its identity. Raises HTTPException 401."""
    try:
        claims = jwt.decode(token, FINVISION_JWT_SECRET, algorithms=[FINVISION_JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(status_code=401, detail="Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token") from e

    user_id = str(claims.get("sub", "")).strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Token missing sub claim")
    return Identity(
        user_id=user_id,
        email=str(claims.get("email", "")),
        name=str(claims.get("name", "")),
    )


async def get_identity(request: Request) -> Identity:
    """Extract and verify caller identity from the request.

    Raises HTTPException 401 if no valid credentials are provided.
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    return decode_access_token(token)


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def is_public_path(path: str) -> bool:
    """Check if the request path skips authentication."""
    return path in _PUBLIC_PATHS or path.startswith("/docs")


def require_secret_on_cloud_run() -> None:
    """Safety check: the development signing key must not be used on Cloud Run."""
    if FINVISION_JWT_SECRET == DEV_JWT_SECRET:
        if IS_CLOUD_RUN:
            raise RuntimeError("FINVISION_JWT_SECRET must be set on Cloud Run")
        logger.warning("FINVISION_JWT_SECRET is not set; using the development signing key")
