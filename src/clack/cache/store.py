"""SQLite storage for the object cache: file, journal mode, connection pool.

:class:`CacheStore` owns the database file. On :meth:`CacheStore.open` it
creates the parent directory, switches the file to WAL journalling (many
readers alongside one writer, no application locks), and applies pending
migrations from :mod:`clack.cache.schema`.

Connections come from a small bounded pool. They are opened lazily, up to
``pool_size``; once every connection is checked out, further callers wait
for one to be returned instead of failing. Connections run in autocommit
mode and :meth:`CacheStore.transaction` issues ``BEGIN IMMEDIATE``
explicitly, so a writer takes the write lock up front rather than
upgrading from a read lock halfway through a batch.

Every :class:`sqlite3.Error` (and every value too large to bind) raised
while a connection is in use is re-raised as
:class:`~clack.exceptions.StoreUnavailableError`.
"""

from __future__ import annotations

import queue
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from clack.cache.schema import apply_migrations, current_version
from clack.exceptions import EncodeError, StoreUnavailableError
from clack.output import debug

DEFAULT_POOL_SIZE = 4


class CacheStore:
    """Bounded pool of SQLite connections to one cache database file.

    Args:
        path: Database file. Parent directories are created on open.
        pool_size: Maximum number of simultaneously open connections.
        busy_timeout_ms: How long SQLite waits on a lock held by another
            connection or process before giving up.

    Example::

        store = CacheStore(Path("~/.cache/clack/cache.db").expanduser())
        store.open()
        with store.connection() as conn:
            conn.execute("SELECT COUNT(*) FROM users").fetchone()
        store.close()
    """

    def __init__(
        self,
        path: str | Path,
        pool_size: int = DEFAULT_POOL_SIZE,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self._path = Path(path).expanduser()
        self._pool_size = pool_size
        self._busy_timeout_ms = busy_timeout_ms
        self._slots = threading.BoundedSemaphore(pool_size)
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        self._all: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._opened = False
        self._closed = False

    @property
    def path(self) -> Path:
        """The database file path."""
        return self._path

    @property
    def pool_size(self) -> int:
        """Maximum number of open connections."""
        return self._pool_size

    @property
    def open_connections(self) -> int:
        """Number of connections opened so far (idle or checked out)."""
        with self._lock:
            return len(self._all)

    def open(self) -> None:
        """Create the file if needed, enable WAL, and migrate the schema.

        Raises:
            StoreUnavailableError: If the file cannot be created, opened,
                or migrated.
        """
        if self._opened:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(
                f"Cannot create cache directory {self._path.parent}: {exc}"
            ) from exc
        with self.connection() as conn:
            applied = apply_migrations(conn)
        if applied:
            debug(f"[cache] migrated {self._path} to schema {applied[-1]}")
        self._opened = True

    def close(self) -> None:
        """Close every connection. Later acquisitions raise StoreUnavailableError."""
        with self._lock:
            self._closed = True
            conns, self._all = self._all, []
        while True:
            try:
                self._idle.get_nowait()
            except queue.Empty:
                break
        for conn in conns:
            conn.close()

    def __enter__(self) -> CacheStore:
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Pool
    # ------------------------------------------------------------------ #

    def acquire(self) -> sqlite3.Connection:
        """Check out a connection, waiting while the pool is exhausted."""
        if self._closed:
            raise StoreUnavailableError(f"Cache store {self._path} is closed")
        self._slots.acquire()
        try:
            try:
                return self._idle.get_nowait()
            except queue.Empty:
                return self._connect()
        except BaseException:
            self._slots.release()
            raise

    def release(self, conn: sqlite3.Connection) -> None:
        """Return a connection obtained from :meth:`acquire`."""
        if self._closed:
            conn.close()
        else:
            self._idle.put(conn)
        self._slots.release()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a pooled connection for the duration of the block."""
        conn = self.acquire()
        try:
            yield conn
        except (sqlite3.Error, OverflowError) as exc:
            raise StoreUnavailableError(f"Cache database error: {exc}") from exc
        finally:
            self.release(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

        The transaction is rolled back if the block raises.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def savepoint(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """Run the block inside a savepoint of an open transaction.

        A statement that fails inside the block undoes only the block's
        changes; the surrounding transaction carries on.

        Raises:
            EncodeError: If SQLite rejects the statement or cannot bind one
                of its values.
        """
        conn.execute("SAVEPOINT row_write")
        try:
            yield conn
        except (sqlite3.Error, OverflowError) as exc:
            conn.execute("ROLLBACK TO row_write")
            conn.execute("RELEASE row_write")
            raise EncodeError(f"Cannot store row: {exc}") from exc
        conn.execute("RELEASE row_write")

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def journal_mode(self) -> str:
        """Return the journal mode reported by SQLite (``wal`` when enabled)."""
        with self.connection() as conn:
            return str(conn.execute("PRAGMA journal_mode").fetchone()[0]).lower()

    def schema_version(self) -> int:
        """Return the highest applied migration version."""
        with self.connection() as conn:
            return current_version(conn)

    def size_bytes(self) -> int:
        """Total on-disk size of the database and its WAL/SHM side files."""
        total = 0
        for suffix in ("", "-wal", "-shm"):
            candidate = self._path.with_name(self._path.name + suffix)
            if candidate.is_file():
                total += candidate.stat().st_size
        return total

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self._path),
                timeout=self._busy_timeout_ms / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                f"Cannot open cache database {self._path}: {exc}"
            ) from exc
        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
            try:
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.OperationalError:
                conn.execute("PRAGMA journal_mode = DELETE")
            conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as exc:
            conn.close()
            raise StoreUnavailableError(
                f"Cannot configure cache database {self._path}: {exc}"
            ) from exc
        with self._lock:
            self._all.append(conn)
        return conn


def open_store(
    path: str | Path,
    pool_size: int = DEFAULT_POOL_SIZE,
    busy_timeout_ms: int = 5000,
) -> Optional[CacheStore]:
    """Open a :class:`CacheStore`, returning ``None`` when it is unusable.

    Used by callers that treat the cache as optional: a store that cannot
    be opened is logged in verbose mode and the command carries on against
    the remote API alone.
    """
    store = CacheStore(path, pool_size=pool_size, busy_timeout_ms=busy_timeout_ms)
    try:
        store.open()
    except StoreUnavailableError as exc:
        debug(f"[cache] unavailable, continuing without it: {exc}")
        store.close()
        return None
    return store
