"""Extraction clients and the remote-server client used by the upload CLI.

The queue only depends on ``ExtractionClient``. ``GeminiExtractionClient``
calls the model in-process (server-hosted queues); ``HttpExtractionClient``
goes through a FinVision server's ``POST /api/analyze`` (client-side queues).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any

import httpx
from pydantic import ValidationError

from finvision_service.extraction import ExtractionError, analyze_document
from finvision_service.models import DocumentRecord, ExtractionResult, TransactionRecord

logger = logging.getLogger(__name__)

_MAX_CONNECT_RETRIES = 2
_RETRY_BACKOFF_BASE = 0.5


class ExtractionClient(ABC):
    @abstractmethod
    async def extract(self, *, data: str, mime_type: str, user_name: str) -> ExtractionResult:
        """Return structured fields for a base64 document or raise."""


class GeminiExtractionClient(ExtractionClient):
    async def extract(self, *, data: str, mime_type: str, user_name: str) -> ExtractionResult:
        return await analyze_document(data, mime_type, user_name)


class ServiceError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _sanitize_error(status_code: int) -> str:
    """Return a user-safe error message without leaking internal details."""
    if status_code == 401:
        return "Authentication failed. Please check your token."
    if status_code == 403:
        return "Access denied."
    if status_code == 429:
        return "Rate limit exceeded. Please try again later."
    if status_code >= 500:
        return "The FinVision service is temporarily unavailable."
    return f"Request failed with status {status_code}."


class ServiceClient:
    """Async HTTP client for a FinVision server, authenticated with a bearer token."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ServiceClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> httpx.Response:
        """Send a request, retrying only when the connection itself could not be made."""
        for attempt in range(_MAX_CONNECT_RETRIES + 1):
            try:
                return await self._client.request(method, path, json=json)
            except httpx.ConnectError as e:
                if attempt >= _MAX_CONNECT_RETRIES:
                    raise
                logger.warning(
                    "Connection to %s failed (attempt %d/%d): %s",
                    path,
                    attempt + 1,
                    _MAX_CONNECT_RETRIES + 1,
                    e,
                )
            await asyncio.sleep(_RETRY_BACKOFF_BASE * (2**attempt))
        raise RuntimeError("Unreachable retry path")

    async def _send(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> Any:
        resp = await self._request(method, path, json=json)
        if resp.status_code >= 400:
            raise ServiceError(resp.status_code, _sanitize_error(resp.status_code))
        return resp.json()

    async def analyze(self, base64_data: str, mime_type: str) -> ExtractionResult:
        try:
            payload = await self._send(
                "POST", "/api/analyze", json={"base64_data": base64_data, "mime_type": mime_type}
            )
        except (ServiceError, httpx.HTTPError) as e:
            raise ExtractionError(f"Remote extraction failed: {e}") from e
        except ValueError as e:
            raise ExtractionError("Remote extraction returned a non-JSON response") from e
        try:
            return ExtractionResult.model_validate(payload)
        except ValidationError as e:
            raise ExtractionError("Remote extraction returned an invalid result") from e

    async def save_document(self, document: DocumentRecord) -> dict[str, Any]:
        return await self._send("POST", "/api/documents", json=document.model_dump())

    async def save_transaction(self, transaction: TransactionRecord) -> dict[str, Any]:
        return await self._send("POST", "/api/transactions", json=transaction.model_dump())

    async def delete_transaction(self, transaction_id: str) -> dict[str, Any]:
        return await self._send("DELETE", f"/api/transactions/{transaction_id}")

    async def save_records(self, document: DocumentRecord, transaction: TransactionRecord) -> None:
        """Record callback for an ``UploadQueue`` running outside the server.

        The transaction is posted first and deleted again if the document
        cannot be saved, so a failed job leaves neither record behind.
        """
        await self.save_transaction(transaction)
        try:
            await self.save_document(document)
        except (ServiceError, httpx.HTTPError):
            try:
                await self.delete_transaction(transaction.id)
            except (ServiceError, httpx.HTTPError) as e:
                logger.error("Could not roll back transaction %s: %s", transaction.id, e)
            raise


class HttpExtractionClient(ExtractionClient):
    def __init__(self, service: ServiceClient) -> None:
        self._service = service

    async def extract(self, *, data: str, mime_type: str, user_name: str) -> ExtractionResult:
        # The server derives the user's name from the bearer token.
        return await self._service.analyze(data, mime_type)
