"""Sequential upload/extraction queue.

``UploadQueue`` drains submitted files one at a time through
encode -> extract -> resolve type -> emit. A single asyncio worker task is
started by ``submit()`` and keeps pulling the earliest pending job until none
remain, so at most one job is ever ``analyzing`` or ``saving`` and records
reach the host in submission order.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Iterator
from datetime import UTC, datetime

from finvision_service.config import (
    FINVISION_DEFAULT_BATCH_POLICY,
    FINVISION_EXTRACTION_TIMEOUT_SECONDS,
)
from finvision_service.models import (
    DocumentRecord,
    ExtractionResult,
    TransactionRecord,
    TransactionType,
)
from finvision_service.uploads.clients import ExtractionClient
from finvision_service.uploads.errors import JobActiveError, JobNotFoundError, QueueBusyError
from finvision_service.uploads.types import (
    BATCH_POLICIES,
    BatchPolicy,
    EncodedDocument,
    JobStatus,
    QueueJob,
    SourceFile,
)

logger = logging.getLogger(__name__)

RecordCallback = Callable[[DocumentRecord, TransactionRecord], Awaitable[None]]
DrainedCallback = Callable[[], None]
QueueListener = Callable[[QueueJob], None]

ENCODE_FAILED_MESSAGE = "Could not read file"
EXTRACT_FAILED_MESSAGE = "Failed to process document"
SAVE_FAILED_MESSAGE = "Failed to save transaction"
CANCELLED_MESSAGE = "Upload cancelled"

_STATUS_RANK: dict[str, int] = {
    "pending": 0,
    "analyzing": 1,
    "saving": 2,
    "completed": 3,
    "failed": 3,
}


def resolve_transaction_type(policy: BatchPolicy, inferred: str | None) -> TransactionType:
    """Apply the batch policy to the model's inferred type.

    Under ``auto`` anything other than the exact value ``"income"``
    (including a missing inference) resolves to ``expense``.
    """
    if policy == "auto":
        return "income" if inferred == "income" else "expense"
    return "income" if policy == "income" else "expense"


def encode_file(file: SourceFile) -> EncodedDocument:
    data = file.read_bytes()
    return EncodedDocument(
        base64_data=base64.b64encode(data).decode("ascii"),
        mime_type=file.mime_type,
    )


def build_records(
    file: SourceFile,
    encoded: EncodedDocument,
    result: ExtractionResult,
    *,
    transaction_type: TransactionType,
    now: datetime | None = None,
) -> tuple[DocumentRecord, TransactionRecord]:
    uploaded = now or datetime.now(UTC)
    document = DocumentRecord(
        id=f"doc-{uuid.uuid4().hex}",
        name=file.name,
        upload_date=uploaded.isoformat(),
        status="COMPLETED",
        file_size=file.size,
    )
    transaction = TransactionRecord(
        id=f"tr-{uuid.uuid4().hex}",
        date=result.date,
        vendor=result.vendor,
        amount=result.total_amount,
        tax=result.tax_amount,
        category=result.category,
        currency=result.currency,
        type=transaction_type,
        document_id=document.id,
        document_data=encoded.data_url,
        mime_type=file.mime_type,
    )
    return document, transaction


def _validate_policy(policy: str) -> BatchPolicy:
    if policy not in BATCH_POLICIES:
        raise ValueError(f"Unknown batch policy: {policy!r}")
    return policy  # type: ignore[return-value]


class QueueStore:
    """Ordered jobs of one upload session.

    Jobs iterate in submission order. Listeners are called after a job is
    added or changes status/progress; they must not mutate the store.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, QueueJob] = {}
        self._listeners: list[QueueListener] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[QueueJob]:
        return iter(list(self._jobs.values()))

    def jobs(self) -> list[QueueJob]:
        return list(self._jobs.values())

    def get(self, job_id: str) -> QueueJob | None:
        return self._jobs.get(job_id)

    def add(self, job: QueueJob) -> None:
        if job.id in self._jobs:
            raise ValueError(f"Duplicate job id: {job.id}")
        self._jobs[job.id] = job
        self._notify(job)

    def remove(self, job_id: str) -> QueueJob | None:
        return self._jobs.pop(job_id, None)

    def next_pending(self) -> QueueJob | None:
        return next((j for j in self._jobs.values() if j.status == "pending"), None)

    def update(
        self,
        job: QueueJob,
        *,
        status: JobStatus,
        progress: int,
        error: str | None = None,
    ) -> None:
        if job.is_finished:
            raise RuntimeError(f"Job {job.id} is already {job.status}")
        if _STATUS_RANK[status] < _STATUS_RANK[job.status]:
            raise RuntimeError(f"Job {job.id} cannot move from {job.status} to {status}")
        if progress < job.progress:
            raise RuntimeError(f"Job {job.id} progress cannot go from {job.progress} to {progress}")
        job.status = status
        job.progress = progress
        job.error = error
        self._notify(job)

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, job: QueueJob) -> None:
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception:
                logger.exception("Queue listener failed for job %s", job.id)


class UploadQueue:
    def __init__(
        self,
        *,
        extractor: ExtractionClient,
        on_record: RecordCallback,
        on_drained: DrainedCallback | None = None,
        user_name: str = "",
        policy: str = FINVISION_DEFAULT_BATCH_POLICY,
        store: QueueStore | None = None,
        extraction_timeout: float | None = FINVISION_EXTRACTION_TIMEOUT_SECONDS,
    ) -> None:
        self._extractor = extractor
        self._on_record = on_record
        self._on_drained = on_drained
        self._user_name = user_name
        self._policy = _validate_policy(policy)
        self._store = store if store is not None else QueueStore()
        self._extraction_timeout = extraction_timeout
        self._worker: asyncio.Task[None] | None = None
        self._active_id: str | None = None

    @property
    def store(self) -> QueueStore:
        return self._store

    @property
    def policy(self) -> BatchPolicy:
        return self._policy

    @property
    def is_processing(self) -> bool:
        return self._active_id is not None

    @property
    def active_job(self) -> QueueJob | None:
        return self._store.get(self._active_id) if self._active_id else None

    # -- Commands -------------------------------------------------------------

    def submit(self, files: Iterable[SourceFile]) -> list[QueueJob]:
        """Append one pending job per file and make sure the worker is running."""
        jobs = [QueueJob(id=uuid.uuid4().hex, file=f) for f in files]
        for job in jobs:
            self._store.add(job)
        if jobs:
            logger.info("Queued %d file(s) for extraction", len(jobs))
            self._kick()
        return jobs

    def set_batch_policy(self, policy: str) -> None:
        validated = _validate_policy(policy)
        if self.is_processing:
            raise QueueBusyError("Batch policy cannot change while a document is processing")
        self._policy = validated

    def remove_job(self, job_id: str) -> QueueJob:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job_id == self._active_id:
            raise JobActiveError(job_id)
        self._store.remove(job_id)
        return job

    def clear_finished(self) -> int:
        finished = [j.id for j in self._store if j.is_finished]
        for job_id in finished:
            self._store.remove(job_id)
        return len(finished)

    async def wait_idle(self) -> None:
        """Wait until no job is pending or active."""
        while (worker := self._worker) is not None and not worker.done():
            await asyncio.wait({worker})

    async def aclose(self) -> None:
        """Stop the worker; an in-flight job ends ``failed``."""
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    # -- Worker ---------------------------------------------------------------

    def _kick(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        processed = 0
        while (job := self._store.next_pending()) is not None:
            await self._process(job)
            processed += 1

        if processed and self._on_drained is not None:
            try:
                self._on_drained()
            except Exception:
                logger.exception("Queue drained callback failed")

    async def _process(self, job: QueueJob) -> None:
        self._active_id = job.id
        # Policy is read when the job starts, so a change made while it was
        # still pending applies to it.
        policy = self._policy
        try:
            await self._run_pipeline(job, policy)
        except asyncio.CancelledError:
            self._fail(job, CANCELLED_MESSAGE)
            raise
        except Exception:
            logger.exception("Unexpected error processing %s (job %s)", job.file.name, job.id)
            self._fail(job, EXTRACT_FAILED_MESSAGE)
        finally:
            self._active_id = None
            if job.is_finished:
                job.file = job.file.without_content()

    async def _run_pipeline(self, job: QueueJob, policy: BatchPolicy) -> None:
        self._store.update(job, status="analyzing", progress=20)
        try:
            encoded = await asyncio.to_thread(encode_file, job.file)
        except Exception as e:
            logger.warning("Could not read %s (job %s): %s", job.file.name, job.id, e)
            self._fail(job, ENCODE_FAILED_MESSAGE)
            return

        self._store.update(job, status="analyzing", progress=40)
        try:
            result = await self._extract(encoded)
        except Exception as e:
            logger.warning(
                "Extraction failed for %s (job %s): %s: %s",
                job.file.name,
                job.id,
                type(e).__name__,
                e,
            )
            self._fail(job, EXTRACT_FAILED_MESSAGE)
            return

        self._store.update(job, status="saving", progress=80)
        document, transaction = build_records(
            job.file,
            encoded,
            result,
            transaction_type=resolve_transaction_type(policy, result.type),
        )
        try:
            await self._on_record(document, transaction)
        except Exception:
            logger.exception("Saving records for %s failed (job %s)", job.file.name, job.id)
            self._fail(job, SAVE_FAILED_MESSAGE)
            return

        self._store.update(job, status="completed", progress=100)
        logger.info(
            "Processed %s as %s %s (job %s)",
            job.file.name,
            transaction.type,
            transaction.id,
            job.id,
        )

    async def _extract(self, encoded: EncodedDocument) -> ExtractionResult:
        call = self._extractor.extract(
            data=encoded.base64_data,
            mime_type=encoded.mime_type,
            user_name=self._user_name,
        )
        result = await asyncio.wait_for(call, timeout=self._extraction_timeout)
        if not isinstance(result, ExtractionResult):
            raise ValueError("Extraction returned no result")
        return result

    def _fail(self, job: QueueJob, message: str) -> None:
        if not job.is_finished:
            self._store.update(job, status="failed", progress=100, error=message)
