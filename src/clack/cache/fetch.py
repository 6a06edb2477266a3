"""Fetch-through helpers: consult the cache, fall back to the remote API, write back.

These functions spell out the consumer protocol once. Commands call them
with a zero-argument *fetch* callable that performs the remote request.
Errors raised by *fetch* propagate unchanged; nothing the cache does can
turn a successful fetch into a failure.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from typing import Any, Callable, Optional

from clack.cache.cache import ObjectCache
from clack.cache.codec import coerce
from clack.cache.results import CacheContext
from clack.exceptions import EncodeError
from clack.models import Message, ObjectKind
from clack.output import debug


def fetch_one(
    cache: ObjectCache,
    kind: ObjectKind,
    ctx: CacheContext,
    key: str,
    fetch: Callable[[], Any],
    conversation_id: Optional[str] = None,
) -> Any:
    """Return the object *key*, from the cache when fresh, else from *fetch*.

    The fetched object is written through before being returned.
    """
    result = cache.get(kind, ctx, key, conversation_id=conversation_id)
    if result:
        return result.value
    obj = fetch()
    cache.upsert(kind, ctx, [obj], conversation_id=conversation_id)
    return obj


def fetch_all(
    cache: ObjectCache,
    kind: ObjectKind,
    ctx: CacheContext,
    fetch: Callable[[], list[Any]],
    conversation_id: Optional[str] = None,
) -> list[Any]:
    """Return every object of *kind*, from the cache when fully fresh, else from *fetch*."""
    result = cache.list_all(kind, ctx, conversation_id=conversation_id)
    if result:
        return result.value
    objects = list(fetch())
    cache.upsert(kind, ctx, objects, conversation_id=conversation_id)
    return objects


def cache_search_messages(
    cache: ObjectCache,
    ctx: CacheContext,
    messages: Iterable[Any],
) -> int:
    """Cache search-result messages, grouped by the conversation each one names.

    Search results carry their conversation in ``channel.id`` rather than
    arriving per conversation. Messages without one are skipped.

    Returns:
        Number of messages written.
    """
    groups: dict[str, list[Message]] = defaultdict(list)
    for raw in messages:
        try:
            message = coerce(ObjectKind.MESSAGE, raw)
        except EncodeError as exc:
            debug(f"[cache] search message - SKIPPED ({exc})")
            continue
        channel = message.channel  # type: ignore[attr-defined]
        if channel is None or not channel.id:
            debug(f"[cache] search message {message.ts} - SKIPPED (no channel)")  # type: ignore[attr-defined]
            continue
        groups[channel.id].append(message)  # type: ignore[arg-type]

    written = 0
    for conversation_id, group in groups.items():
        written += cache.upsert(ObjectKind.MESSAGE, ctx, group, conversation_id=conversation_id)
    return written
