"""Seed a development user and sample transactions into FinVision.

Usage:
    python scripts/seed-dev-data.py

Requires:
    - Database running (DATABASE_URL or DB_HOST set)
    - Migration applied (alembic upgrade head)

Prints a bearer token for the seeded user, usable with finvision-upload.
"""

from __future__ import annotations

import asyncio
import os
import sys
import uuid

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DEV_EMAIL = "dev@finvision.local"
DEV_PASSWORD = "finvision-dev"

SAMPLE_TRANSACTIONS = [
    ("2026-08-03", "Acme Consulting", 4200.0, 0.0, "Services", "income"),
    ("2026-08-11", "Office Depot", 189.5, 35.4, "Office Supplies", "expense"),
    ("2026-08-27", "Cloud Hosting Co", 320.0, 0.0, "Software", "expense"),
    ("2026-09-02", "Acme Consulting", 5100.0, 0.0, "Services", "income"),
    ("2026-09-14", "City Cafe", 46.2, 3.7, "Meals", "expense"),
    ("2026-09-21", "Cloud Hosting Co", 320.0, 0.0, "Software", "expense"),
]


async def main() -> None:
    from finvision_service.auth import create_access_token, hash_password
    from finvision_service.db import close_pool, init_db
    from finvision_service.models import TransactionRecord
    from finvision_service.stores.transaction_store import TransactionStore
    from finvision_service.stores.user_store import UserStore

    if not await init_db():
        print("No database available; nothing to seed.")
        return

    users = UserStore()
    transactions = TransactionStore()

    user = await users.get_by_email(DEV_EMAIL)
    if user is None:
        user = await users.create(
            email=DEV_EMAIL, password_hash=hash_password(DEV_PASSWORD), name="Dev User"
        )
    assert user is not None

    print(f"Seeding {len(SAMPLE_TRANSACTIONS)} transactions for '{DEV_EMAIL}'...")
    for date, vendor, amount, tax, category, tx_type in SAMPLE_TRANSACTIONS:
        record = TransactionRecord(
            id=f"tr-{uuid.uuid4().hex}",
            date=date,
            vendor=vendor,
            amount=amount,
            tax=tax,
            category=category,
            currency="PLN",
            type=tx_type,
        )
        await transactions.create(user["id"], record)
        print(f"  {date} {vendor}: {amount:.2f} ({tx_type})")

    token = create_access_token(user_id=user["id"], email=user["email"], name=user["name"])
    await close_pool()
    print("Done!")
    print(f"FINVISION_TOKEN={token}")


if __name__ == "__main__":
    asyncio.run(main())
