"""Unit test conftest: no database or model access required."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable

import pytest

from finvision_service.models import DocumentRecord, ExtractionResult, TransactionRecord
from finvision_service.uploads.clients import ExtractionClient
from finvision_service.uploads.types import SourceFile


class FakeExtractor(ExtractionClient):
    """Scriptable extraction client.

    Outcomes are keyed by the raw file bytes; anything unscripted returns
    ``default``. While ``gate`` is an unset event, calls block on it.
    """

    def __init__(self, default: ExtractionResult) -> None:
        self.default = default
        self.outcomes: dict[bytes, ExtractionResult | BaseException] = {}
        self.calls: list[tuple[bytes, str, str]] = []
        self.started = asyncio.Event()
        self.gate: asyncio.Event | None = None

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def extract(self, *, data: str, mime_type: str, user_name: str) -> ExtractionResult:
        raw = base64.b64decode(data)
        self.calls.append((raw, mime_type, user_name))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.get(raw, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordSink:
    """Record callback that keeps emitted pairs and fails for chosen file names."""

    def __init__(self) -> None:
        self.records: list[tuple[DocumentRecord, TransactionRecord]] = []
        self.fail_names: set[str] = set()

    async def __call__(self, document: DocumentRecord, transaction: TransactionRecord) -> None:
        if document.name in self.fail_names:
            raise RuntimeError("storage unavailable")
        self.records.append((document, transaction))

    @property
    def names(self) -> list[str]:
        return [doc.name for doc, _ in self.records]


def _pdf(name: str, content: bytes | None = None) -> SourceFile:
    return SourceFile.from_bytes(name, content or name.encode(), mime_type="application/pdf")


@pytest.fixture
def extractor(make_result) -> FakeExtractor:
    return FakeExtractor(make_result())


@pytest.fixture
def sink() -> RecordSink:
    return RecordSink()


@pytest.fixture
def pdf() -> Callable[..., SourceFile]:
    """Factory for in-memory PDF source files whose bytes default to the name."""
    return _pdf
