"""SQLite-backed object cache for clack.

:class:`ObjectCache` stores users, conversations, and messages fetched from
the remote API, one set per workspace, and answers lookups with
:class:`Hit` or :class:`Miss` according to per-kind TTLs
(:class:`FreshnessPolicy`). Storage lives in :class:`CacheStore`, a small
pool of WAL-mode SQLite connections. :func:`fetch_one`, :func:`fetch_all`,
and :func:`cache_search_messages` implement the read-then-fetch-then-write
flow used by commands.

The cache is controlled by the ``cache`` section of the global
configuration (:class:`~clack.models.CacheConfig`).
"""

from clack.cache.cache import ObjectCache
from clack.cache.fetch import cache_search_messages, fetch_all, fetch_one
from clack.cache.policy import ANY_AGE, FreshnessPolicy
from clack.cache.results import CacheContext, Hit, Miss, NameMatch, Resolution
from clack.cache.store import CacheStore, open_store

__all__ = [
    "ANY_AGE",
    "CacheContext",
    "CacheStore",
    "FreshnessPolicy",
    "Hit",
    "Miss",
    "NameMatch",
    "ObjectCache",
    "Resolution",
    "cache_search_messages",
    "fetch_all",
    "fetch_one",
    "open_store",
]
