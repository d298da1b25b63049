"""Read-only projections of an upload queue for the API and the CLI."""

from __future__ import annotations

from collections.abc import Iterable

from finvision_service.models import QueueJobView, QueueSnapshot, QueueStats
from finvision_service.uploads.queue import UploadQueue
from finvision_service.uploads.types import QueueJob

_BAR_WIDTH = 20

_BADGES = {
    "pending": "PENDING",
    "analyzing": "ANALYZING",
    "saving": "SAVING",
    "completed": "DONE",
    "failed": "FAILED",
}


def queue_stats(jobs: Iterable[QueueJob]) -> QueueStats:
    total = completed = failed = remaining = 0
    for job in jobs:
        total += 1
        if job.status == "completed":
            completed += 1
        elif job.status == "failed":
            failed += 1
        else:
            remaining += 1
    return QueueStats(total=total, completed=completed, failed=failed, remaining=remaining)


def is_batch_complete(stats: QueueStats) -> bool:
    return stats.total > 0 and stats.remaining == 0


def overall_progress(stats: QueueStats) -> int:
    """Share of jobs completed successfully, as a whole percentage."""
    if stats.total == 0:
        return 0
    return round(stats.completed / stats.total * 100)


def can_submit(queue: UploadQueue) -> bool:
    return not queue.is_processing


def can_change_policy(queue: UploadQueue) -> bool:
    return not queue.is_processing


def job_view(job: QueueJob) -> QueueJobView:
    return QueueJobView(
        id=job.id,
        filename=job.file.name,
        file_size=job.file.size,
        mime_type=job.file.mime_type,
        status=job.status,
        progress=job.progress,
        error=job.error,
        submitted_at=job.submitted_at,
    )


def build_snapshot(queue: UploadQueue) -> QueueSnapshot:
    jobs = queue.store.jobs()
    stats = queue_stats(jobs)
    return QueueSnapshot(
        jobs=[job_view(j) for j in jobs],
        stats=stats,
        policy=queue.policy,
        is_processing=queue.is_processing,
        batch_complete=is_batch_complete(stats),
        overall_progress=overall_progress(stats),
    )


def _bar(progress: int) -> str:
    filled = round(progress / 100 * _BAR_WIDTH)
    return "#" * filled + "-" * (_BAR_WIDTH - filled)


def render_job(job: QueueJobView) -> str:
    line = (
        f"{_BADGES[job.status]:<9} [{_bar(job.progress)}] {job.progress:>3}%  "
        f"{job.filename} ({job.file_size / 1024:.0f} KB)"
    )
    if job.error:
        line += f"\n          ! {job.error}"
    return line


def render_queue(snapshot: QueueSnapshot) -> str:
    """Plain-text queue listing with a status header."""
    stats = snapshot.stats
    if snapshot.batch_complete:
        header = f"Batch complete: {stats.completed} completed, {stats.failed} failed"
    else:
        header = (
            f"Processing queue ({snapshot.policy}): {stats.remaining} remaining, "
            f"{snapshot.overall_progress}% done"
        )
    lines = [header]
    lines.extend(render_job(j) for j in snapshot.jobs)
    return "\n".join(lines)
