from __future__ import annotations

import argparse
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="finvision-upload",
        description="Extract transactions from receipts and invoices through a FinVision server",
    )
    p.add_argument("paths", nargs="+", type=Path, help="Files or directories to upload")
    p.add_argument("--server", default=None, help="Server base URL (default from env FINVISION_SERVER_URL)")
    p.add_argument("--token", default=None, help="Bearer token (default from env FINVISION_TOKEN)")
    p.add_argument(
        "--policy",
        choices=["auto", "income", "expense"],
        default=None,
        help="Batch policy for income/expense (default from env FINVISION_DEFAULT_BATCH_POLICY)",
    )
    p.add_argument("--quiet", action="store_true", help="Only print the final summary")
    p.add_argument("--log-level", default="WARNING", help="Python logging level (INFO, DEBUG, ...)")
    return p
