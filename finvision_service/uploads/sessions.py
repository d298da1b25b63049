"""Per-user upload queues for the HTTP API.

Each authenticated user gets a private ``UploadQueue`` whose record callback
persists straight into the document and transaction stores. Sessions live in
process memory and end on ``discard`` or server shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import asyncpg

from finvision_service.auth import Identity
from finvision_service.db import connection, is_db_connected
from finvision_service.models import DocumentRecord, TransactionRecord
from finvision_service.stores.document_store import DocumentStore
from finvision_service.stores.transaction_store import TransactionStore
from finvision_service.uploads.clients import ExtractionClient, GeminiExtractionClient
from finvision_service.uploads.queue import RecordCallback, UploadQueue

logger = logging.getLogger(__name__)


class UploadSessions:
    def __init__(
        self,
        *,
        documents: DocumentStore,
        transactions: TransactionStore,
        extractor_factory: Callable[[], ExtractionClient] = GeminiExtractionClient,
    ) -> None:
        self._documents = documents
        self._transactions = transactions
        self._extractor_factory = extractor_factory
        self._queues: dict[str, UploadQueue] = {}

    def get(self, user_id: str) -> UploadQueue | None:
        return self._queues.get(user_id)

    def get_or_create(self, identity: Identity) -> UploadQueue:
        queue = self._queues.get(identity.user_id)
        if queue is None:
            queue = UploadQueue(
                extractor=self._extractor_factory(),
                on_record=self._persist_for(identity.user_id),
                on_drained=lambda: logger.info("Upload batch finished for user %s", identity.user_id),
                user_name=identity.name,
            )
            self._queues[identity.user_id] = queue
        return queue

    def _persist_for(self, user_id: str) -> RecordCallback:
        async def _persist(document: DocumentRecord, transaction: TransactionRecord) -> None:
            if is_db_connected():
                # One transaction: any failure rolls back both rows.
                async with connection() as conn:
                    await self._write_pair(user_id, document, transaction, conn=conn)
                return
            await self._write_pair(user_id, document, transaction)

        return _persist

    async def _write_pair(
        self,
        user_id: str,
        document: DocumentRecord,
        transaction: TransactionRecord,
        *,
        conn: asyncpg.Connection | None = None,
    ) -> None:
        if await self._documents.create(user_id, document, conn=conn) is None:
            raise RuntimeError(f"Document {document.id} already exists")
        try:
            if await self._transactions.create(user_id, transaction, conn=conn) is None:
                raise RuntimeError(f"Transaction {transaction.id} already exists")
        except Exception:
            if conn is None:
                await self._documents.delete(user_id, document.id)
            raise

    async def discard(self, user_id: str) -> bool:
        queue = self._queues.pop(user_id, None)
        if queue is None:
            return False
        await queue.aclose()
        return True

    async def close_all(self) -> None:
        for user_id in list(self._queues):
            await self.discard(user_id)
