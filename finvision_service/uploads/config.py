from __future__ import annotations

import os
from dataclasses import dataclass

from finvision_service.config import (
    FINVISION_ACCEPTED_MIME_PREFIXES,
    FINVISION_DEFAULT_BATCH_POLICY,
    FINVISION_EXTRACTION_TIMEOUT_SECONDS,
)
from finvision_service.uploads.types import BATCH_POLICIES


@dataclass(frozen=True)
class UploadClientConfig:
    server_url: str
    token: str
    policy: str
    accepted_mime_prefixes: tuple[str, ...]
    timeout_seconds: float

    @classmethod
    def from_env(cls) -> UploadClientConfig:
        return cls(
            server_url=os.getenv("FINVISION_SERVER_URL", "http://localhost:8080"),
            token=os.getenv("FINVISION_TOKEN", ""),
            policy=FINVISION_DEFAULT_BATCH_POLICY,
            accepted_mime_prefixes=tuple(FINVISION_ACCEPTED_MIME_PREFIXES),
            timeout_seconds=FINVISION_EXTRACTION_TIMEOUT_SECONDS,
        )

    def validate(self) -> None:
        if not self.server_url.startswith(("http://", "https://")):
            raise ValueError("FINVISION_SERVER_URL must be an http(s) URL")
        if not self.token:
            raise ValueError("FINVISION_TOKEN is required (or pass --token)")
        if self.policy not in BATCH_POLICIES:
            raise ValueError(f"Unknown batch policy: {self.policy!r}")
        if not self.accepted_mime_prefixes:
            raise ValueError("FINVISION_ACCEPTED_MIME_PREFIXES was set but parsed as empty")
        if self.timeout_seconds <= 0:
            raise ValueError("FINVISION_EXTRACTION_TIMEOUT_SECONDS must be > 0")
