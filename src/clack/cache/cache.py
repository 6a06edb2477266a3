"""Workspace-scoped, TTL-governed cache of users, conversations, and messages.

:class:`ObjectCache` sits between the command layer and the remote API.
Commands consult it before fetching and write every successful fetch back
through it. The cache is advisory: the remote API is the source of truth,
so nothing that goes wrong in here may fail a command.

* **Reads** (:meth:`ObjectCache.get`, :meth:`ObjectCache.list_all`) return
  :class:`~clack.cache.results.Hit` only for live, fresh rows. Storage
  errors and corrupt snapshots turn into a
  :class:`~clack.cache.results.Miss`.
* **Writes** (:meth:`ObjectCache.upsert`, :meth:`ObjectCache.mark_deleted`)
  are best effort. Objects that fail to encode or store are skipped,
  store-wide errors make the call write nothing, and neither raises.
* **Name resolution** (:meth:`ObjectCache.resolve_name`) matches names
  case-insensitively and reports every candidate. The caller may widen the
  TTL, up to :data:`~clack.cache.policy.ANY_AGE`.
* **Clear** (:meth:`ObjectCache.clear`) is an explicit user request and is
  the only operation here that raises on storage failure.

Every decision is traced through :func:`clack.output.debug`, which prints
only in verbose mode.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from clack.cache.codec import decode, encode, fold
from clack.cache.policy import Clock, FreshnessPolicy
from clack.cache.results import (
    MISS_ABSENT,
    MISS_CORRUPT,
    MISS_DISABLED,
    MISS_EMPTY,
    MISS_REFRESH,
    MISS_STALE,
    MISS_UNAVAILABLE,
    CacheContext,
    Hit,
    Lookup,
    Miss,
    NameMatch,
    Resolution,
)
from clack.cache.schema import TABLES
from clack.cache.store import CacheStore, open_store
from clack.config import get_cache_db_path
from clack.exceptions import DecodeError, EncodeError, StoreUnavailableError
from clack.models import (
    CachedConversation,
    CachedMessage,
    CachedUser,
    GlobalConfig,
    ObjectKind,
)
from clack.output import debug

_ROW_MODELS = {
    ObjectKind.USER: CachedUser,
    ObjectKind.CONVERSATION: CachedConversation,
    ObjectKind.MESSAGE: CachedMessage,
}

_PRIMARY_KEYS = {
    ObjectKind.USER: ("id", "workspace_id"),
    ObjectKind.CONVERSATION: ("id", "workspace_id"),
    ObjectKind.MESSAGE: ("conversation_id", "workspace_id", "ts"),
}

_ORDER_BY = {
    ObjectKind.USER: "name, id",
    ObjectKind.CONVERSATION: "name, id",
    ObjectKind.MESSAGE: "ts",
}

_NAME_PREFIXES = {
    ObjectKind.USER: "@",
    ObjectKind.CONVERSATION: "#",
}


def _trace(message: str) -> None:
    debug(f"[cache] {message}")


def _upsert_sql(kind: ObjectKind) -> tuple[str, tuple[str, ...]]:
    """Build the insert-or-replace statement for *kind*.

    Every non-key column is overwritten on conflict, ``deleted_at``
    included, so the latest fetch wins outright and re-observing a
    soft-deleted object undeletes it.
    """
    columns = tuple(_ROW_MODELS[kind].model_fields)
    keys = _PRIMARY_KEYS[kind]
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in keys)
    sql = (
        f"INSERT INTO {TABLES[kind]} ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)}) "
        f"ON CONFLICT ({', '.join(keys)}) DO UPDATE SET {updates}"
    )
    return sql, columns


_UPSERT_SQL = {kind: _upsert_sql(kind) for kind in ObjectKind}


class ObjectCache:
    """Read, write-through, resolve, and clear cached API objects.

    Args:
        store: An opened :class:`~clack.cache.store.CacheStore`, or
            ``None`` for a disabled/unavailable cache (every read misses,
            every write is a no-op).
        policy: Freshness policy; defaults to the module TTLs and the
            system clock.
        cache_messages: Messages are only read and written when true.

    Example::

        cache = ObjectCache.from_config(resolve_config())
        ctx = CacheContext(workspace_id="T123")
        result = cache.get(ObjectKind.USER, ctx, "U1")
        if not result:
            user = api.user_info("U1")
            cache.upsert(ObjectKind.USER, ctx, [user])
    """

    def __init__(
        self,
        store: Optional[CacheStore],
        policy: Optional[FreshnessPolicy] = None,
        cache_messages: bool = False,
    ) -> None:
        self._store = store
        self._policy = policy or FreshnessPolicy()
        self._cache_messages = cache_messages

    @classmethod
    def from_config(cls, config: GlobalConfig, clock: Clock = time.time) -> ObjectCache:
        """Open the cache described by *config*.

        A disabled cache, or one whose database cannot be opened, yields an
        instance that always misses; opening never raises.
        """
        cache_cfg = config.cache
        store = None
        if cache_cfg.enabled:
            try:
                path = get_cache_db_path(config)
            except OSError as exc:
                _trace(f"unavailable, continuing without it: {exc}")
            else:
                store = open_store(
                    path,
                    pool_size=cache_cfg.pool_size,
                    busy_timeout_ms=cache_cfg.busy_timeout_ms,
                )
        else:
            _trace("disabled by configuration")
        return cls(
            store,
            FreshnessPolicy.from_config(cache_cfg, clock),
            cache_messages=cache_cfg.cache_messages,
        )

    @property
    def enabled(self) -> bool:
        """Whether a usable store backs this cache."""
        return self._store is not None

    @property
    def database_path(self) -> Optional[Path]:
        """The database file, or ``None`` when no store backs this cache."""
        return self._store.path if self._store is not None else None

    @property
    def store(self) -> Optional[CacheStore]:
        return self._store

    @property
    def policy(self) -> FreshnessPolicy:
        return self._policy

    def close(self) -> None:
        if self._store is not None:
            self._store.close()

    def __enter__(self) -> ObjectCache:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Read path
    # ------------------------------------------------------------------ #

    def get(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        key: str,
        conversation_id: Optional[str] = None,
        ttl_override: Optional[float] = None,
    ) -> Lookup[Any]:
        """Look up one object by id (messages: by ``ts`` within *conversation_id*).

        Returns:
            ``Hit(obj)`` when a live row exists and is fresh, else a ``Miss``
            whose ``reason`` says why.
        """
        label = f"{kind.value} {key}"
        skipped = self._skip_read(kind, ctx, label)
        if skipped is not None:
            return skipped
        assert self._store is not None

        where, params = self._key_filter(kind, ctx, key, conversation_id)
        try:
            with self._store.connection() as conn:
                row = conn.execute(
                    f"SELECT snapshot, cached_at FROM {TABLES[kind]} "
                    f"WHERE {where} AND deleted_at IS NULL",
                    params,
                ).fetchone()
        except StoreUnavailableError as exc:
            _trace(f"{label} - MISS (unavailable: {exc})")
            return Miss(MISS_UNAVAILABLE)

        if row is None:
            _trace(f"{label} - MISS (not found)")
            return Miss(MISS_ABSENT)
        if not self._policy.is_fresh(kind, row["cached_at"], ttl_override):
            _trace(f"{label} - MISS (stale)")
            return Miss(MISS_STALE)
        try:
            value = decode(kind, row["snapshot"])
        except DecodeError as exc:
            _trace(f"{label} - MISS ({exc})")
            return Miss(MISS_CORRUPT)
        _trace(f"{label} - HIT (fresh)")
        return Hit(value)

    def list_all(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        conversation_id: Optional[str] = None,
        ttl_override: Optional[float] = None,
    ) -> Lookup[list[Any]]:
        """Return every live cached object of *kind* in the workspace.

        Messages are listed per conversation, so *conversation_id* is
        required for them. The result is a hit only when at least one live
        row exists and every live row is fresh: one stale row turns the
        whole list into a miss, since a partial set cannot stand in for the
        current full set.
        """
        if kind is ObjectKind.MESSAGE and not conversation_id:
            raise ValueError("conversation_id is required to list messages")
        label = f"{kind.value}s" + (f" (conv {conversation_id})" if conversation_id else "")
        skipped = self._skip_read(kind, ctx, label)
        if skipped is not None:
            return skipped
        assert self._store is not None

        where = "workspace_id = ? AND deleted_at IS NULL"
        params: tuple[str, ...] = (ctx.workspace_id,)
        if kind is ObjectKind.MESSAGE:
            where += " AND conversation_id = ?"
            params += (conversation_id,)  # type: ignore[assignment]
        try:
            with self._store.connection() as conn:
                rows = conn.execute(
                    f"SELECT snapshot, cached_at FROM {TABLES[kind]} "
                    f"WHERE {where} ORDER BY {_ORDER_BY[kind]}",
                    params,
                ).fetchall()
        except StoreUnavailableError as exc:
            _trace(f"{label} - MISS (unavailable: {exc})")
            return Miss(MISS_UNAVAILABLE)

        if not rows:
            _trace(f"{label} - MISS (empty)")
            return Miss(MISS_EMPTY)
        now = self._policy.now()
        if not all(self._policy.is_fresh(kind, r["cached_at"], ttl_override, now) for r in rows):
            _trace(f"{label} - MISS (some stale)")
            return Miss(MISS_STALE)
        try:
            values = [decode(kind, r["snapshot"]) for r in rows]
        except DecodeError as exc:
            _trace(f"{label} - MISS ({exc})")
            return Miss(MISS_CORRUPT)
        _trace(f"{label} - HIT ({len(values)} {kind.value}s)")
        return Hit(values)

    # ------------------------------------------------------------------ #
    # Write path
    # ------------------------------------------------------------------ #

    def upsert(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        objects: Iterable[Any],
        conversation_id: Optional[str] = None,
    ) -> int:
        """Write freshly fetched objects through to the cache.

        Each object replaces any existing row with the same key, gets
        ``cached_at = now``, and has its deletion mark cleared. Refresh
        mode does not affect writes. An object that cannot be encoded or
        stored is skipped and the rest of the batch is still written.

        Returns:
            Number of rows written. ``0`` when the cache is disabled or the
            store failed; this method never raises for cache failures.
        """
        if not self._writable(kind):
            return 0
        assert self._store is not None

        now = self._policy.now()
        sql, columns = _UPSERT_SQL[kind]
        batch = []
        for obj in objects:
            try:
                row = encode(kind, obj, ctx.workspace_id, now, conversation_id)
            except EncodeError as exc:
                _trace(f"{kind.value} - SKIPPED ({exc})")
                continue
            values = row.model_dump()
            batch.append(tuple(values[c] for c in columns))
        if not batch:
            return 0

        written = 0
        try:
            with self._store.transaction() as conn:
                for params in batch:
                    try:
                        with self._store.savepoint(conn):
                            conn.execute(sql, params)
                    except EncodeError as exc:
                        _trace(f"{kind.value} - SKIPPED ({exc})")
                        continue
                    written += 1
        except StoreUnavailableError as exc:
            _trace(f"{kind.value}s - UPSERT FAILED ({exc})")
            return 0
        _trace(f"{kind.value}s - UPSERTED {written}")
        return written

    def mark_deleted(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        keys: Iterable[str],
        conversation_id: Optional[str] = None,
    ) -> int:
        """Soft-delete rows the remote API explicitly reported as deleted.

        Only call this on an explicit deletion report; an object missing
        from a listing says nothing about whether it still exists.

        Returns:
            Number of rows newly marked. Never raises for cache failures.
        """
        if not self._writable(kind):
            return 0
        assert self._store is not None

        now = self._policy.now()
        batch = []
        for key in keys:
            where, params = self._key_filter(kind, ctx, key, conversation_id)
            batch.append((now, *params))
        if not batch:
            return 0
        try:
            with self._store.transaction() as conn:
                cursor = conn.executemany(
                    f"UPDATE {TABLES[kind]} SET deleted_at = ? "
                    f"WHERE {where} AND deleted_at IS NULL",
                    batch,
                )
                marked = max(cursor.rowcount, 0)
        except StoreUnavailableError as exc:
            _trace(f"{kind.value}s - DELETE MARK FAILED ({exc})")
            return 0
        _trace(f"{kind.value}s - MARKED DELETED {marked}")
        return marked

    # ------------------------------------------------------------------ #
    # Name resolution
    # ------------------------------------------------------------------ #

    def resolve_name(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        name: str,
        ttl_override: Optional[float] = None,
    ) -> Resolution:
        """Find cached users or conversations whose name equals *name*, ignoring case.

        A leading ``#`` (conversations) or ``@`` (users) is ignored. Users
        match on handle, display name, or real name. Soft-deleted rows never
        match. Freshness uses the kind's TTL unless *ttl_override* is
        given; pass :data:`~clack.cache.policy.ANY_AGE` to accept any
        previously seen record. The refresh flag does not apply here.
        """
        if kind not in _NAME_PREFIXES:
            raise ValueError(f"Name resolution is not supported for {kind.value}s")
        wanted = fold(name.strip().removeprefix(_NAME_PREFIXES[kind]).strip())
        empty = Resolution(kind=kind, name=name)
        if wanted is None or self._store is None:
            return empty

        if kind is ObjectKind.USER:
            sql = (
                "SELECT id, name, real_name, profile_display_name, cached_at FROM users "
                "WHERE workspace_id = ? AND deleted_at IS NULL "
                "AND (name_folded = ? OR display_name_folded = ? OR real_name_folded = ?) "
                "ORDER BY name, id"
            )
            params: tuple[str, ...] = (ctx.workspace_id, wanted, wanted, wanted)
        else:
            sql = (
                "SELECT id, name, is_archived, cached_at FROM conversations "
                "WHERE workspace_id = ? AND deleted_at IS NULL AND name_folded = ? "
                "ORDER BY id"
            )
            params = (ctx.workspace_id, wanted)
        try:
            with self._store.connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except StoreUnavailableError as exc:
            _trace(f"resolve {kind.value} '{name}' - unavailable ({exc})")
            return empty

        now = self._policy.now()
        matches: list[NameMatch] = []
        seen: set[str] = set()
        for row in rows:
            if row["id"] in seen:
                continue
            if not self._policy.is_fresh(kind, row["cached_at"], ttl_override, now):
                continue
            seen.add(row["id"])
            if kind is ObjectKind.USER:
                label = row["real_name"] or row["profile_display_name"]
            else:
                label = "archived" if row["is_archived"] else None
            matches.append(
                NameMatch(id=row["id"], name=row["name"], cached_at=row["cached_at"], label=label)
            )
        _trace(f"resolve {kind.value} '{name}' - {len(matches)} match(es)")
        return Resolution(kind=kind, name=name, matches=matches)

    def resolve_names(
        self,
        kind: ObjectKind,
        ctx: CacheContext,
        names: Sequence[str],
        ttl_override: Optional[float] = None,
    ) -> dict[str, Resolution]:
        """Resolve several names concurrently over the connection pool.

        Returns:
            Mapping of each distinct input name to its :class:`Resolution`,
            in input order.
        """
        unique = list(dict.fromkeys(names))
        if not unique:
            return {}
        workers = min(len(unique), self._store.pool_size if self._store else 1)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = executor.map(
                lambda n: self.resolve_name(kind, ctx, n, ttl_override), unique
            )
            return dict(zip(unique, results))

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def clear(self, workspace_id: Optional[str] = None) -> dict[str, int]:
        """Hard-delete every row of one workspace, or of all workspaces.

        Soft-deleted rows are removed too. Returns the number of rows
        deleted per kind.

        Raises:
            StoreUnavailableError: If the store is unusable. Clearing is a
                user request, so its failure is reported.
        """
        counts = {kind.value: 0 for kind in ObjectKind}
        if self._store is None:
            return counts
        with self._store.transaction() as conn:
            for kind in (ObjectKind.MESSAGE, ObjectKind.CONVERSATION, ObjectKind.USER):
                if workspace_id is None:
                    cursor = conn.execute(f"DELETE FROM {TABLES[kind]}")
                else:
                    cursor = conn.execute(
                        f"DELETE FROM {TABLES[kind]} WHERE workspace_id = ?", (workspace_id,)
                    )
                counts[kind.value] = cursor.rowcount
        scope = f"workspace {workspace_id}" if workspace_id else "all workspaces"
        _trace(f"cleared {sum(counts.values())} rows for {scope}")
        return counts

    def stats(self, workspace_id: Optional[str] = None) -> dict[str, Any]:
        """Summarise the cache contents.

        Returns:
            ``{"enabled": False}`` for a disabled cache, else a dict with
            ``path``, ``size_bytes``, ``schema_version``, ``workspace_id``
            and, under ``kinds``, per-kind ``total``, ``fresh``, ``stale``,
            ``deleted``, and ``ttl_seconds``.

        Raises:
            StoreUnavailableError: If the store is unusable.
        """
        if self._store is None:
            return {"enabled": False}
        now = self._policy.now()
        kinds: dict[str, dict[str, Any]] = {}
        with self._store.connection() as conn:
            for kind in ObjectKind:
                ttl = self._policy.ttl_for(kind)
                where, params = "", ()
                if workspace_id is not None:
                    where, params = "WHERE workspace_id = ?", (workspace_id,)
                row = conn.execute(
                    "SELECT COUNT(*) AS total, "
                    "COALESCE(SUM(deleted_at IS NOT NULL), 0) AS deleted, "
                    "COALESCE(SUM(deleted_at IS NULL AND cached_at > ?), 0) AS fresh "
                    f"FROM {TABLES[kind]} {where}",
                    (now - ttl, *params),
                ).fetchone()
                live = row["total"] - row["deleted"]
                kinds[kind.value] = {
                    "total": row["total"],
                    "fresh": row["fresh"],
                    "stale": live - row["fresh"],
                    "deleted": row["deleted"],
                    "ttl_seconds": ttl,
                }
        return {
            "enabled": True,
            "path": str(self._store.path),
            "size_bytes": self._store.size_bytes(),
            "schema_version": self._store.schema_version(),
            "workspace_id": workspace_id,
            "cache_messages": self._cache_messages,
            "kinds": kinds,
        }

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _skip_read(self, kind: ObjectKind, ctx: CacheContext, label: str) -> Optional[Miss]:
        """Return a Miss when the read path must not touch the store."""
        if self._store is None:
            return Miss(MISS_DISABLED)
        if kind is ObjectKind.MESSAGE and not self._cache_messages:
            return Miss(MISS_DISABLED)
        if ctx.refresh:
            _trace(f"{label} - SKIP (refresh requested)")
            return Miss(MISS_REFRESH)
        return None

    def _writable(self, kind: ObjectKind) -> bool:
        if self._store is None:
            return False
        return kind is not ObjectKind.MESSAGE or self._cache_messages

    @staticmethod
    def _key_filter(
        kind: ObjectKind,
        ctx: CacheContext,
        key: str,
        conversation_id: Optional[str],
    ) -> tuple[str, tuple[str, ...]]:
        if kind is ObjectKind.MESSAGE:
            if not conversation_id:
                raise ValueError("conversation_id is required for message keys")
            return (
                "workspace_id = ? AND conversation_id = ? AND ts = ?",
                (ctx.workspace_id, conversation_id, key),
            )
        return "workspace_id = ? AND id = ?", (ctx.workspace_id, key)
