"""Provenance records for uploaded documents."""

from __future__ import annotations

from typing import Any

import asyncpg

from finvision_service.db import connection, is_db_connected
from finvision_service.models import DocumentRecord

_COLUMNS = "id, name, upload_date, status, file_size"


class DocumentStore:
    def __init__(self) -> None:
        self._memory: dict[str, dict[str, Any]] = {}

    async def create(
        self,
        user_id: str,
        record: DocumentRecord,
        *,
        conn: asyncpg.Connection | None = None,
    ) -> dict[str, Any] | None:
        """Insert a document record. Returns None when the id is already taken.

        Pass ``conn`` to write inside the caller's transaction.
        """
        if is_db_connected():
            async with connection(conn) as conn:
                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO documents (id, user_id, name, upload_date, status, file_size)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING {_COLUMNS}
                        """,
                        record.id,
                        user_id,
                        record.name,
                        record.upload_date,
                        record.status,
                        record.file_size,
                    )
                except asyncpg.UniqueViolationError:
                    return None
            return dict(row) if row else None

        if record.id in self._memory:
            return None
        self._memory[record.id] = {**record.model_dump(), "user_id": user_id}
        return record.model_dump()

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        if is_db_connected():
            async with connection() as conn:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM documents WHERE user_id = $1 ORDER BY upload_date DESC",
                    user_id,
                )
            return [dict(r) for r in rows]

        owned = [r for r in self._memory.values() if r["user_id"] == user_id]
        owned.sort(key=lambda r: r["upload_date"], reverse=True)
        return [{k: v for k, v in r.items() if k != "user_id"} for r in owned]

    async def delete(self, user_id: str, document_id: str) -> bool:
        if is_db_connected():
            async with connection() as conn:
                deleted = await conn.fetchval(
                    "DELETE FROM documents WHERE id = $1 AND user_id = $2 RETURNING id",
                    document_id,
                    user_id,
                )
            return deleted is not None

        row = self._memory.get(document_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self._memory[document_id]
        return True
