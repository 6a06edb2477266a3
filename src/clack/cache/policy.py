"""Freshness policy: per-kind TTLs and the staleness test.

A cached record is *fresh* iff ``now - cached_at < ttl``. Stale records are
reported as misses by the read path but are never deleted; the name
resolver may still use them when the caller passes a wider TTL, or
:data:`ANY_AGE` to accept a record of any age.
"""

from __future__ import annotations

import math
import time
from typing import Callable, Optional

from clack.models import CacheConfig, ObjectKind

USER_TTL_SECONDS = 3600
CONVERSATION_TTL_SECONDS = 1800
MESSAGE_TTL_SECONDS = 300

ANY_AGE: float = math.inf
"""TTL override under which every present record counts as fresh."""

Clock = Callable[[], float]


class FreshnessPolicy:
    """Decides whether a ``cached_at`` timestamp is still usable.

    Args:
        ttls: TTL in seconds per object kind. Kinds not listed fall back to
            the module defaults.
        clock: Returns the current UTC epoch time. Tests pass a fake clock
            to simulate elapsed time.
    """

    def __init__(
        self,
        ttls: Optional[dict[ObjectKind, float]] = None,
        clock: Clock = time.time,
    ) -> None:
        self._ttls: dict[ObjectKind, float] = {
            ObjectKind.USER: USER_TTL_SECONDS,
            ObjectKind.CONVERSATION: CONVERSATION_TTL_SECONDS,
            ObjectKind.MESSAGE: MESSAGE_TTL_SECONDS,
        }
        if ttls:
            self._ttls.update(ttls)
        self._clock = clock

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Clock = time.time) -> FreshnessPolicy:
        return cls(
            {
                ObjectKind.USER: config.user_ttl_seconds,
                ObjectKind.CONVERSATION: config.conversation_ttl_seconds,
                ObjectKind.MESSAGE: config.message_ttl_seconds,
            },
            clock=clock,
        )

    def now(self) -> float:
        return self._clock()

    def ttl_for(self, kind: ObjectKind, override: Optional[float] = None) -> float:
        """Return *override* when given, else the configured TTL of *kind*."""
        if override is not None:
            return override
        return self._ttls[kind]

    def is_fresh(
        self,
        kind: ObjectKind,
        cached_at: float,
        override: Optional[float] = None,
        now: Optional[float] = None,
    ) -> bool:
        ttl = self.ttl_for(kind, override)
        if ttl == ANY_AGE:
            return True
        current = self.now() if now is None else now
        return current - cached_at < ttl
