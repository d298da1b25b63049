from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Sequence

import httpx

from finvision_service.logging_config import setup_logging
from finvision_service.uploads.cli import build_parser
from finvision_service.uploads.clients import HttpExtractionClient, ServiceClient
from finvision_service.uploads.config import UploadClientConfig
from finvision_service.uploads.planner import discover_files
from finvision_service.uploads.queue import UploadQueue
from finvision_service.uploads.types import QueueJob
from finvision_service.uploads.view import build_snapshot, job_view, queue_stats, render_job, render_queue


async def _amain(
    argv: Sequence[str] | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level.upper(), json_output=False)
    logger = logging.getLogger("finvision_service.uploads")

    cfg = UploadClientConfig.from_env()
    # CLI overrides
    cfg = dataclasses.replace(
        cfg,
        server_url=args.server or cfg.server_url,
        token=args.token or cfg.token,
        policy=args.policy or cfg.policy,
    )
    try:
        cfg.validate()
        files = discover_files(args.paths, accepted_prefixes=cfg.accepted_mime_prefixes)
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    if not files:
        logger.warning("No supported files found. Exiting.")
        return 0

    async with ServiceClient(
        base_url=cfg.server_url,
        token=cfg.token,
        timeout=cfg.timeout_seconds,
        transport=transport,
    ) as service:
        queue = UploadQueue(
            extractor=HttpExtractionClient(service),
            on_record=service.save_records,
            policy=cfg.policy,
            extraction_timeout=cfg.timeout_seconds,
        )
        if not args.quiet:

            def _print_job(job: QueueJob) -> None:
                print(render_job(job_view(job)), flush=True)

            queue.store.subscribe(_print_job)

        queue.submit(files)
        try:
            await queue.wait_idle()
        finally:
            await queue.aclose()

        snapshot = build_snapshot(queue)
        print(render_queue(snapshot))

    stats = queue_stats(queue.store)
    logger.info("DONE totals=%s", stats.model_dump())
    return 0 if stats.failed == 0 else 2


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
