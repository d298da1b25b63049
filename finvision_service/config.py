"""Environment-variable-driven configuration for the FinVision service.

All config comes from env vars; nothing is read from disk.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Auth ---------------------------------------------------------------------
FINVISION_JWT_SECRET: str = os.getenv(
    "FINVISION_JWT_SECRET", "finvision-dev-secret-change-me-in-production"
)
FINVISION_JWT_ALGORITHM: str = os.getenv("FINVISION_JWT_ALGORITHM", "HS256")
FINVISION_TOKEN_TTL_HOURS: int = int(os.getenv("FINVISION_TOKEN_TTL_HOURS", "168"))

# -- Extraction ---------------------------------------------------------------
FINVISION_EXTRACTION_MODEL: str = os.getenv(
    "FINVISION_EXTRACTION_MODEL", "gemini-3-flash-preview"
)
FINVISION_EXTRACTION_TIMEOUT_SECONDS: float = float(
    os.getenv("FINVISION_EXTRACTION_TIMEOUT_SECONDS", "120")
)

# -- Upload queue -------------------------------------------------------------
FINVISION_DEFAULT_BATCH_POLICY: str = os.getenv("FINVISION_DEFAULT_BATCH_POLICY", "auto")
FINVISION_ACCEPTED_MIME_PREFIXES: list[str] = _env_csv(
    "FINVISION_ACCEPTED_MIME_PREFIXES", "image/,application/pdf"
)

# -- Request limits -----------------------------------------------------------
FINVISION_MAX_BODY_BYTES: int = int(os.getenv("FINVISION_MAX_BODY_BYTES", str(50 * 1024 * 1024)))

# -- GCP ----------------------------------------------------------------------
VERTEX_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
VERTEX_LOCATION: str = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")

# -- CORS ---------------------------------------------------------------------
FINVISION_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "FINVISION_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
FINVISION_CORS_ALLOW_METHODS: list[str] = _env_csv(
    "FINVISION_CORS_ALLOW_METHODS",
    "GET,POST,PUT,DELETE,OPTIONS",
)
FINVISION_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "FINVISION_CORS_ALLOW_HEADERS",
    "Authorization,Content-Type",
)
FINVISION_CORS_ALLOW_CREDENTIALS: bool = _env_bool("FINVISION_CORS_ALLOW_CREDENTIALS", False)

# -- Server -------------------------------------------------------------------
IS_CLOUD_RUN: bool = bool(os.getenv("K_SERVICE"))
