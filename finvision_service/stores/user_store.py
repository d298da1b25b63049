"""Users: credentials, display name and storage-provider settings."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import asyncpg

from finvision_service.db import connection, is_db_connected

logger = logging.getLogger(__name__)

_COLUMNS = "id, email, password_hash, name, gdrive_folder_id, storage_provider, created_at"


class UserStore:
    """User accounts, in PostgreSQL when connected and in process memory otherwise."""

    def __init__(self) -> None:
        self._memory: dict[str, dict[str, Any]] = {}

    async def create(self, *, email: str, password_hash: str, name: str) -> dict[str, Any] | None:
        """Insert a user. Returns None when the email is already registered."""
        email = email.strip().lower()
        user_id = uuid.uuid4().hex

        if is_db_connected():
            async with connection() as conn:
                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO users (id, email, password_hash, name)
                        VALUES ($1, $2, $3, $4)
                        RETURNING {_COLUMNS}
                        """,
                        user_id,
                        email,
                        password_hash,
                        name,
                    )
                except asyncpg.UniqueViolationError:
                    return None
            return dict(row) if row else None

        if any(u["email"] == email for u in self._memory.values()):
            return None
        user = {
            "id": user_id,
            "email": email,
            "password_hash": password_hash,
            "name": name,
            "gdrive_folder_id": "",
            "storage_provider": "local",
            "created_at": datetime.now(UTC),
        }
        self._memory[user_id] = user
        return dict(user)

    async def get_by_email(self, email: str) -> dict[str, Any] | None:
        email = email.strip().lower()
        if is_db_connected():
            async with connection() as conn:
                row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM users WHERE email = $1", email)
            return dict(row) if row else None

        user = next((u for u in self._memory.values() if u["email"] == email), None)
        return dict(user) if user else None

    async def get_by_id(self, user_id: str) -> dict[str, Any] | None:
        if is_db_connected():
            async with connection() as conn:
                row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM users WHERE id = $1", user_id)
            return dict(row) if row else None

        user = self._memory.get(user_id)
        return dict(user) if user else None

    async def update_storage(
        self,
        user_id: str,
        *,
        storage_provider: str,
        gdrive_folder_id: str,
    ) -> dict[str, Any] | None:
        if is_db_connected():
            async with connection() as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE users
                    SET storage_provider = $2, gdrive_folder_id = $3
                    WHERE id = $1
                    RETURNING {_COLUMNS}
                    """,
                    user_id,
                    storage_provider,
                    gdrive_folder_id,
                )
            return dict(row) if row else None

        user = self._memory.get(user_id)
        if user is None:
            return None
        user["storage_provider"] = storage_provider
        user["gdrive_folder_id"] = gdrive_folder_id
        return dict(user)
