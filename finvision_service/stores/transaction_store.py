"""CRUD for transactions, always scoped to the owning user.

Listing omits ``document_data``; the encoded document is only returned by
``get``, which backs the document preview endpoint.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import asyncpg

from finvision_service.db import connection, is_db_connected
from finvision_service.models import TransactionRecord

logger = logging.getLogger(__name__)

_SUMMARY_COLUMNS = (
    "id, date, vendor, amount, tax, category, currency, type, document_id, mime_type, "
    "(document_data IS NOT NULL) AS has_document, created_at"
)
_ALL_COLUMNS = (
    "id, date, vendor, amount, tax, category, currency, type, document_id, mime_type, "
    "document_data, (document_data IS NOT NULL) AS has_document, created_at"
)
_UPDATABLE = ("date", "vendor", "amount", "tax", "category", "currency", "type")


def _summary(row: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in row.items() if k not in ("document_data", "user_id")}
    out["has_document"] = row.get("document_data") is not None
    return out


class TransactionStore:
    def __init__(self) -> None:
        self._memory: dict[str, dict[str, Any]] = {}

    async def create(
        self,
        user_id: str,
        record: TransactionRecord,
        *,
        conn: asyncpg.Connection | None = None,
    ) -> dict[str, Any] | None:
        """Insert a transaction. Returns None when the id is already taken."""
        if is_db_connected():
            async with connection(conn) as conn:
                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO transactions
                            (id, user_id, date, vendor, amount, tax, category,
                             currency, type, document_id, document_data, mime_type)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                        RETURNING {_SUMMARY_COLUMNS}
                        """,
                        record.id,
                        user_id,
                        record.date,
                        record.vendor,
                        record.amount,
                        record.tax,
                        record.category,
                        record.currency,
                        record.type,
                        record.document_id,
                        record.document_data,
                        record.mime_type,
                    )
                except asyncpg.UniqueViolationError:
                    return None
            return dict(row) if row else None

        if record.id in self._memory:
            return None
        row = {**record.model_dump(), "user_id": user_id, "created_at": datetime.now(UTC)}
        self._memory[record.id] = row
        return _summary(row)

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Newest first."""
        if is_db_connected():
            async with connection() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_SUMMARY_COLUMNS} FROM transactions
                    WHERE user_id = $1
                    ORDER BY created_at DESC
                    """,
                    user_id,
                )
            return [dict(r) for r in rows]

        owned = [r for r in self._memory.values() if r["user_id"] == user_id]
        return [_summary(r) for r in reversed(owned)]

    async def get(self, user_id: str, transaction_id: str) -> dict[str, Any] | None:
        if is_db_connected():
            async with connection() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_ALL_COLUMNS} FROM transactions WHERE id = $1 AND user_id = $2",
                    transaction_id,
                    user_id,
                )
            return dict(row) if row else None

        row = self._memory.get(transaction_id)
        if row is None or row["user_id"] != user_id:
            return None
        return {**_summary(row), "document_data": row.get("document_data")}

    async def update(
        self, user_id: str, transaction_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        changes = {k: v for k, v in changes.items() if k in _UPDATABLE and v is not None}

        if is_db_connected():
            if not changes:
                current = await self.get(user_id, transaction_id)
                return _summary(current) if current else None
            assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(changes, start=3))
            async with connection() as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE transactions SET {assignments}
                    WHERE id = $1 AND user_id = $2
                    RETURNING {_SUMMARY_COLUMNS}
                    """,
                    transaction_id,
                    user_id,
                    *changes.values(),
                )
            return dict(row) if row else None

        row = self._memory.get(transaction_id)
        if row is None or row["user_id"] != user_id:
            return None
        row.update(changes)
        return _summary(row)

    async def delete(self, user_id: str, transaction_id: str) -> bool:
        if is_db_connected():
            async with connection() as conn:
                deleted = await conn.fetchval(
                    "DELETE FROM transactions WHERE id = $1 AND user_id = $2 RETURNING id",
                    transaction_id,
                    user_id,
                )
            return deleted is not None

        row = self._memory.get(transaction_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self._memory[transaction_id]
        return True
