"""Unit tests for per-user upload sessions and how they persist record pairs."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from finvision_service.auth import Identity
from finvision_service.stores.document_store import DocumentStore
from finvision_service.stores.transaction_store import TransactionStore
from finvision_service.uploads.queue import SAVE_FAILED_MESSAGE
from finvision_service.uploads.sessions import UploadSessions


@pytest.fixture
def stores() -> tuple[DocumentStore, TransactionStore]:
    return DocumentStore(), TransactionStore()


@pytest.fixture
def sessions(stores, extractor) -> UploadSessions:
    documents, transactions = stores
    return UploadSessions(
        documents=documents,
        transactions=transactions,
        extractor_factory=lambda: extractor,
    )


ADA = Identity(user_id="user-1", email="ada@example.com", name="Ada")
GRACE = Identity(user_id="user-2", email="grace@example.com", name="Grace")


class TestUploadSessions:
    def test_one_queue_per_user(self, sessions):
        assert sessions.get_or_create(ADA) is sessions.get_or_create(ADA)
        assert sessions.get_or_create(ADA) is not sessions.get_or_create(GRACE)
        assert sessions.get("nobody") is None

    async def test_records_persist_to_owner(self, sessions, stores, extractor, pdf):
        documents, transactions = stores
        queue = sessions.get_or_create(ADA)
        queue.submit([pdf("a.pdf")])
        await queue.wait_idle()

        [tx] = await transactions.list_for_user("user-1")
        [doc] = await documents.list_for_user("user-1")
        assert tx["document_id"] == doc["id"]
        assert tx["has_document"] is True
        assert await transactions.list_for_user("user-2") == []
        assert extractor.calls[0][2] == "Ada"

    async def test_rejected_transaction_fails_job(self, sessions, stores, pdf):
        _, transactions = stores
        queue = sessions.get_or_create(ADA)
        with patch.object(transactions, "create", new_callable=AsyncMock, return_value=None):
            queue.submit([pdf("a.pdf")])
            await queue.wait_idle()

        [job] = queue.store.jobs()
        assert job.status == "failed"
        assert job.error == SAVE_FAILED_MESSAGE

    async def test_failed_transaction_write_leaves_no_document(self, sessions, stores, pdf):
        documents, transactions = stores
        queue = sessions.get_or_create(ADA)
        with patch.object(
            transactions, "create", new_callable=AsyncMock, side_effect=RuntimeError("db down")
        ):
            queue.submit([pdf("a.pdf")])
            await queue.wait_idle()

        [job] = queue.store.jobs()
        assert job.status == "failed"
        assert job.error == SAVE_FAILED_MESSAGE
        assert await documents.list_for_user("user-1") == []
        assert await transactions.list_for_user("user-1") == []

    async def test_duplicate_document_is_not_removed(self, sessions, stores, pdf):
        documents, _ = stores
        queue = sessions.get_or_create(ADA)
        with (
            patch.object(documents, "create", new_callable=AsyncMock, return_value=None),
            patch.object(documents, "delete", new_callable=AsyncMock) as delete,
        ):
            queue.submit([pdf("a.pdf")])
            await queue.wait_idle()

        assert queue.store.jobs()[0].status == "failed"
        delete.assert_not_awaited()

    async def test_database_mode_writes_pair_in_one_transaction(self, sessions, stores, pdf):
        documents, transactions = stores
        conn = MagicMock(name="conn")
        opened: list[object] = []

        @asynccontextmanager
        async def fake_connection():
            opened.append(conn)
            yield conn

        with (
            patch("finvision_service.uploads.sessions.is_db_connected", return_value=True),
            patch("finvision_service.uploads.sessions.connection", fake_connection),
            patch.object(documents, "create", new_callable=AsyncMock, return_value={"id": "doc"}) as doc_create,
            patch.object(
                transactions, "create", new_callable=AsyncMock, side_effect=RuntimeError("db down")
            ) as tx_create,
            patch.object(documents, "delete", new_callable=AsyncMock) as delete,
        ):
            queue = sessions.get_or_create(ADA)
            queue.submit([pdf("a.pdf")])
            await queue.wait_idle()

        assert opened == [conn]
        assert doc_create.await_args.kwargs["conn"] is conn
        assert tx_create.await_args.kwargs["conn"] is conn
        # The enclosing transaction rolls back; no compensating delete.
        delete.assert_not_awaited()
        assert queue.store.jobs()[0].error == SAVE_FAILED_MESSAGE

    async def test_discard_stops_worker(self, sessions, extractor, pdf):
        queue = sessions.get_or_create(ADA)
        extractor.hold()
        [job] = queue.submit([pdf("a.pdf")])
        await asyncio.wait_for(extractor.started.wait(), timeout=1)

        assert await sessions.discard("user-1") is True
        assert job.status == "failed"
        assert sessions.get("user-1") is None
        assert await sessions.discard("user-1") is False

    async def test_close_all(self, sessions):
        sessions.get_or_create(ADA)
        sessions.get_or_create(GRACE)
        await sessions.close_all()
        assert sessions.get("user-1") is None
        assert sessions.get("user-2") is None
