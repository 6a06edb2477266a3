"""Value types passed into and returned from :class:`~clack.cache.ObjectCache`.

:class:`CacheContext` travels with every cache call: it names the workspace
the call is confined to and whether this invocation asked to bypass cached
reads. Lookups answer with :class:`Hit` or :class:`Miss`; name lookups
answer with a :class:`Resolution`, which may hold zero, one, or several
candidates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar, Union

from clack.exceptions import AmbiguousNameError, NameNotFoundError
from clack.models import ObjectKind

T = TypeVar("T")


@dataclass(frozen=True)
class CacheContext:
    """Per-invocation scope for cache operations.

    Attributes:
        workspace_id: Every row read or written is confined to this workspace.
        refresh: When true, ``get``/``list_all`` report a miss without reading;
            write-through still happens.
    """

    workspace_id: str
    refresh: bool = False

    def __post_init__(self) -> None:
        if not self.workspace_id:
            raise ValueError("workspace_id must be a non-empty string")


@dataclass(frozen=True)
class Hit(Generic[T]):
    """A fresh cached value."""

    value: T

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Miss:
    """No usable cached value. ``reason`` is one of the ``MISS_*`` constants."""

    reason: str

    def __bool__(self) -> bool:
        return False


MISS_ABSENT = "absent"
MISS_STALE = "stale"
MISS_EMPTY = "empty"
MISS_REFRESH = "refresh"
MISS_DISABLED = "disabled"
MISS_CORRUPT = "corrupt"
MISS_UNAVAILABLE = "unavailable"

Lookup = Union[Hit[T], Miss]


@dataclass(frozen=True)
class NameMatch:
    """One cached object whose name matched a lookup."""

    id: str
    name: str
    cached_at: float
    label: Optional[str] = None


@dataclass(frozen=True)
class Resolution:
    """Outcome of a name lookup.

    Zero matches means "not known locally" and the caller decides whether
    to ask the remote API. Several matches are all kept so the caller can
    ask the user to choose; nothing here ever picks one of them.
    """

    kind: ObjectKind
    name: str
    matches: list[NameMatch] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.matches)

    @property
    def ambiguous(self) -> bool:
        return len(self.matches) > 1

    @property
    def resolved_id(self) -> Optional[str]:
        """The id when exactly one object matched, else ``None``."""
        if len(self.matches) == 1:
            return self.matches[0].id
        return None

    def require_id(self) -> str:
        """Return the single matching id.

        Raises:
            NameNotFoundError: If nothing matched.
            AmbiguousNameError: If several objects matched; the error
                carries every candidate.
        """
        if not self.matches:
            raise NameNotFoundError(f"No cached {self.kind.value} named '{self.name}'")
        if self.ambiguous:
            ids = ", ".join(m.id for m in self.matches)
            raise AmbiguousNameError(
                f"'{self.name}' matches {len(self.matches)} {self.kind.value}s: {ids}",
                self.matches,
            )
        return self.matches[0].id
