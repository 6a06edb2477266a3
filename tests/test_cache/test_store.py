"""Tests for CacheStore: file setup, migrations, pooling, and error mapping."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from clack.cache import CacheStore, open_store
from clack.cache.schema import MIGRATIONS, SCHEMA_VERSION, apply_migrations, current_version
from clack.exceptions import EncodeError, StoreUnavailableError


# ------------------------------------------------------------------ #
# Open and migrate
# ------------------------------------------------------------------ #


class TestOpen:
    def test_creates_parent_directory_and_file(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "cache.db"
        with CacheStore(path) as store:
            assert path.is_file()
            assert store.path == path

    def test_enables_wal(self, store: CacheStore) -> None:
        assert store.journal_mode() == "wal"

    def test_applies_current_schema(self, store: CacheStore) -> None:
        assert store.schema_version() == SCHEMA_VERSION
        with store.connection() as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        assert {"users", "conversations", "messages", "schema_version"} <= tables

    def test_migrations_are_idempotent(self, store: CacheStore) -> None:
        with store.connection() as conn:
            assert apply_migrations(conn) == []
            assert current_version(conn) == SCHEMA_VERSION
            count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert count == len(MIGRATIONS)

    def test_reopen_keeps_data(self, db_path: Path) -> None:
        with CacheStore(db_path) as first:
            with first.transaction() as conn:
                conn.execute(
                    "INSERT INTO messages (conversation_id, workspace_id, ts, text, snapshot, cached_at) "
                    "VALUES ('C1', 'T1', '1.0', 'hi', '{}', 0)"
                )
        with CacheStore(db_path) as second:
            with second.connection() as conn:
                assert conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 1

    def test_unwritable_location_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = CacheStore(blocker / "cache.db")
        with pytest.raises(StoreUnavailableError):
            store.open()
        store.close()

    def test_open_store_returns_none_when_unusable(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        assert open_store(blocker / "cache.db") is None

    def test_open_store_returns_opened_store(self, db_path: Path) -> None:
        store = open_store(db_path)
        assert store is not None
        try:
            assert store.schema_version() == SCHEMA_VERSION
        finally:
            store.close()

    def test_rejects_empty_pool(self, db_path: Path) -> None:
        with pytest.raises(ValueError):
            CacheStore(db_path, pool_size=0)


# ------------------------------------------------------------------ #
# Pool
# ------------------------------------------------------------------ #


class TestPool:
    def test_connections_are_reused(self, store: CacheStore) -> None:
        with store.connection():
            pass
        with store.connection():
            pass
        assert store.open_connections == 1

    def test_opens_connections_lazily_up_to_pool_size(self, db_path: Path) -> None:
        with CacheStore(db_path, pool_size=3) as store:
            held = [store.acquire() for _ in range(3)]
            assert store.open_connections == 3
            for conn in held:
                store.release(conn)

    def test_exhausted_pool_queues_instead_of_failing(self, db_path: Path) -> None:
        with CacheStore(db_path, pool_size=1) as store:
            held = store.acquire()
            acquired = threading.Event()

            def worker() -> None:
                conn = store.acquire()
                acquired.set()
                store.release(conn)

            thread = threading.Thread(target=worker)
            thread.start()
            assert not acquired.wait(timeout=0.2)

            store.release(held)
            assert acquired.wait(timeout=5)
            thread.join(timeout=5)
            assert store.open_connections == 1

    def test_closed_store_refuses_connections(self, db_path: Path) -> None:
        store = CacheStore(db_path)
        store.open()
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.acquire()


# ------------------------------------------------------------------ #
# Error mapping and transactions
# ------------------------------------------------------------------ #


class TestErrors:
    def test_sqlite_errors_become_store_unavailable(self, store: CacheStore) -> None:
        with pytest.raises(StoreUnavailableError) as exc_info:
            with store.connection() as conn:
                conn.execute("SELECT * FROM no_such_table")
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    def test_transaction_rolls_back_on_error(self, store: CacheStore) -> None:
        with pytest.raises(StoreUnavailableError):
            with store.transaction() as conn:
                conn.execute(
                    "INSERT INTO messages (conversation_id, workspace_id, ts, text, snapshot, cached_at) "
                    "VALUES ('C1', 'T1', '1.0', 'hi', '{}', 0)"
                )
                conn.execute("INSERT INTO no_such_table VALUES (1)")
        with store.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0
            assert not conn.in_transaction

    def test_unbindable_value_becomes_store_unavailable(self, store: CacheStore) -> None:
        with pytest.raises(StoreUnavailableError):
            with store.connection() as conn:
                conn.execute("SELECT ?", (2**64,))

    def test_savepoint_undoes_only_failed_row(self, store: CacheStore) -> None:
        insert = (
            "INSERT INTO messages (conversation_id, workspace_id, ts, text, snapshot, cached_at) "
            "VALUES ('C1', 'T1', ?, 'hi', '{}', ?)"
        )
        with store.transaction() as conn:
            with store.savepoint(conn):
                conn.execute(insert, ("1.0", 0))
            with pytest.raises(EncodeError):
                with store.savepoint(conn):
                    conn.execute(insert, ("2.0", 0))
                    conn.execute(insert, ("3.0", 2**64))
        with store.connection() as conn:
            rows = conn.execute("SELECT ts FROM messages").fetchall()
        assert [r["ts"] for r in rows] == ["1.0"]

    def test_size_bytes_counts_database_files(self, store: CacheStore) -> None:
        assert store.size_bytes() > 0
