from __future__ import annotations


class UploadQueueError(Exception):
    """Base class for rejected queue commands."""


class QueueBusyError(UploadQueueError):
    """A job is mid-pipeline; the command is not allowed until the queue is idle."""


class JobNotFoundError(UploadQueueError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Unknown upload job: {job_id}")
        self.job_id = job_id


class JobActiveError(UploadQueueError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Upload job {job_id} is being processed and cannot be removed")
        self.job_id = job_id
