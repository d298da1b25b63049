"""Create users, documents and transactions tables.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # -- users ----------------------------------------------------------------
    op.execute(
        """
        CREATE TABLE users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            name TEXT NOT NULL,
            gdrive_folder_id TEXT NOT NULL DEFAULT '',
            storage_provider TEXT NOT NULL DEFAULT 'local'
                CHECK (storage_provider IN ('local', 'gdrive')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )

    # -- documents ------------------------------------------------------------
    op.execute(
        """
        CREATE TABLE documents (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            upload_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'COMPLETED'
                CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
            file_size BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )
    op.execute("CREATE INDEX idx_documents_user ON documents (user_id, upload_date DESC)")

    # -- transactions ---------------------------------------------------------
    op.execute(
        """
        CREATE TABLE transactions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            vendor TEXT NOT NULL,
            amount DOUBLE PRECISION NOT NULL,
            tax DOUBLE PRECISION NOT NULL DEFAULT 0,
            category TEXT NOT NULL,
            currency TEXT NOT NULL,
            type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
            document_id TEXT NOT NULL DEFAULT 'manual',
            document_data TEXT,
            mime_type TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )
    op.execute("CREATE INDEX idx_transactions_user ON transactions (user_id, created_at DESC)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transactions")
    op.execute("DROP TABLE IF EXISTS documents")
    op.execute("DROP TABLE IF EXISTS users")
