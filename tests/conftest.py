"""Shared test fixtures for the FinVision test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from finvision_service.models import ExtractionResult


def _make_result(**overrides: Any) -> ExtractionResult:
    fields: dict[str, Any] = {
        "date": "2026-09-14",
        "vendor": "City Cafe",
        "total_amount": 46.2,
        "tax_amount": 3.7,
        "category": "Meals",
        "currency": "PLN",
        "type": "expense",
    }
    fields.update(overrides)
    return ExtractionResult(**fields)


@pytest.fixture
def make_result() -> Callable[..., ExtractionResult]:
    """Factory for extraction results with sensible receipt defaults."""
    return _make_result


@pytest.fixture
def test_user_id() -> str:
    return "user-1"


@pytest.fixture
def other_user_id() -> str:
    return "user-2"
