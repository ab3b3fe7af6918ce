"""
Database migrations for devmetrics.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent, indexes
are created with IF NOT EXISTS.

Called automatically from init_db() after create_all() so both fresh
installs and databases created by older versions are handled.
"""
from sqlalchemy import text

# (table, column, SQLite type with default) added after the first schema
_ADDED_COLUMNS = [
    ("pull_requests", "body", "TEXT NOT NULL DEFAULT ''"),
    ("pull_requests", "merged_by", "TEXT"),
    ("pull_requests", "head_branch", "TEXT"),
    ("pull_requests", "base_branch", "TEXT"),
    ("pull_requests", "requested_reviewers_json", "TEXT NOT NULL DEFAULT '[]'"),
    ("commits", "parent_count", "INTEGER NOT NULL DEFAULT 1"),
    ("commits", "pull_request_id", "INTEGER"),
]


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times. Supports SQLite only (uses PRAGMA table_info).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        for table, column, col_type in _ADDED_COLUMNS:
            _add_column_if_missing(conn, table, column, col_type)

        # Ledger tables created before the natural-key constraint existed
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_daily_sync_natural_key "
                "ON daily_sync_metadata "
                "(resource_type, organization, repository, sync_date)"
            )
        )
        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS ix_commits_pull_request_id "
                "ON commits (pull_request_id)"
            )
        )
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist."""
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if existing_columns and column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
