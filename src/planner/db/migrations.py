"""
Database migrations for the planner backend.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from init_db() after create_all() so both fresh
installs and databases created before calendar sync existed are handled
without manual steps.
"""
from sqlalchemy import text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column existence before altering.
    Other dialects are expected to be managed externally and are skipped.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    if engine.dialect.name != "sqlite":
        return

    with engine.connect() as conn:
        # events: provider sync bookkeeping
        _add_column_if_missing(conn, "events", "sync_source", "VARCHAR DEFAULT 'manual'")
        _add_column_if_missing(conn, "events", "external_id", "JSON")
        _add_column_if_missing(conn, "events", "is_read_only", "BOOLEAN DEFAULT 0")
        _add_column_if_missing(conn, "events", "last_external_sync", "DATETIME")

        # events: notification dedup marker
        _add_column_if_missing(conn, "events", "last_notification_sent", "DATETIME")

        # integrations: stale-lock detection for the soft sync lock
        _add_column_if_missing(conn, "integrations", "sync_started_at", "DATETIME")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name.
        column: Column name to add.
        col_type: SQLite type string, e.g. "DATETIME", "JSON".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
