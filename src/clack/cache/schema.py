"""Cache database schema and its migration ledger.

Each entry of :data:`MIGRATIONS` is a ``(version, statements)`` pair.
:func:`apply_migrations` runs the statements of every version missing
from the ``schema_version`` table inside a single ``BEGIN IMMEDIATE``
transaction, so two processes starting at the same time cannot both apply
the same version. Every statement is also written as
``CREATE ... IF NOT EXISTS`` and the ledger insert is ``INSERT OR IGNORE``,
which keeps a re-run harmless.

Timestamps (``cached_at``, ``deleted_at``) are UTC epoch seconds.
"""

from __future__ import annotations

import sqlite3
import time

from clack.models import ObjectKind

TABLES: dict[ObjectKind, str] = {
    ObjectKind.USER: "users",
    ObjectKind.CONVERSATION: "conversations",
    ObjectKind.MESSAGE: "messages",
}

_V1 = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT NOT NULL,
        workspace_id TEXT NOT NULL,
        name TEXT NOT NULL,
        real_name TEXT,
        deleted INTEGER NOT NULL DEFAULT 0,
        is_bot INTEGER NOT NULL DEFAULT 0,
        is_admin INTEGER,
        is_owner INTEGER,
        tz TEXT,
        profile_email TEXT,
        profile_display_name TEXT,
        profile_status_emoji TEXT,
        profile_status_text TEXT,
        profile_image_72 TEXT,
        name_folded TEXT NOT NULL,
        display_name_folded TEXT,
        real_name_folded TEXT,
        snapshot TEXT NOT NULL,
        cached_at REAL NOT NULL,
        deleted_at REAL,
        PRIMARY KEY (id, workspace_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_workspace ON users(workspace_id)",
    "CREATE INDEX IF NOT EXISTS idx_users_name ON users(workspace_id, name_folded)",
    "CREATE INDEX IF NOT EXISTS idx_users_display_name ON users(workspace_id, display_name_folded)",
    "CREATE INDEX IF NOT EXISTS idx_users_real_name ON users(workspace_id, real_name_folded)",
    "CREATE INDEX IF NOT EXISTS idx_users_cached_at ON users(cached_at)",
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT NOT NULL,
        workspace_id TEXT NOT NULL,
        name TEXT NOT NULL,
        name_folded TEXT NOT NULL,
        is_channel INTEGER,
        is_group INTEGER,
        is_im INTEGER,
        is_mpim INTEGER,
        is_private INTEGER,
        is_archived INTEGER NOT NULL DEFAULT 0,
        topic_value TEXT,
        purpose_value TEXT,
        num_members INTEGER,
        snapshot TEXT NOT NULL,
        cached_at REAL NOT NULL,
        deleted_at REAL,
        PRIMARY KEY (id, workspace_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_workspace ON conversations(workspace_id)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_name ON conversations(workspace_id, name_folded)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_archived ON conversations(workspace_id, is_archived)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_cached_at ON conversations(cached_at)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        conversation_id TEXT NOT NULL,
        workspace_id TEXT NOT NULL,
        ts TEXT NOT NULL,
        user_id TEXT,
        text TEXT NOT NULL,
        thread_ts TEXT,
        permalink TEXT,
        snapshot TEXT NOT NULL,
        cached_at REAL NOT NULL,
        deleted_at REAL,
        PRIMARY KEY (conversation_id, workspace_id, ts)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(workspace_id, conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON messages(workspace_id, user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(workspace_id, thread_ts)",
    "CREATE INDEX IF NOT EXISTS idx_messages_cached_at ON messages(cached_at)",
)

MIGRATIONS: tuple[tuple[int, tuple[str, ...]], ...] = ((1, _V1),)

SCHEMA_VERSION = MIGRATIONS[-1][0]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied schema version, or 0 for a fresh file."""
    exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if not exists:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return int(row[0] or 0)


def apply_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply every pending migration and return the versions applied.

    *conn* must be in autocommit mode (``isolation_level=None``); the
    transaction is managed here.
    """
    applied: list[int] = []
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at REAL NOT NULL
            )
            """
        )
        done = {row[0] for row in conn.execute("SELECT version FROM schema_version")}
        for version, statements in MIGRATIONS:
            if version in done:
                continue
            for statement in statements:
                conn.execute(statement)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, time.time()),
            )
            applied.append(version)
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    return applied
