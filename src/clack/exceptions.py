"""Exception hierarchy for clack.

All exceptions inherit from :class:`ClackError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`clack.exit_codes`.
The top-level handler in :func:`clack.app.main` catches ``ClackError`` and
exits with the matching code.

Cache errors are mostly internal: :class:`~clack.cache.ObjectCache`
converts them into a Miss (read path) or a no-op (write path) so that a
broken cache never fails a command whose remote fetch succeeded. They only
reach the user from explicit maintenance commands such as ``cache clear``.

Subclass hierarchy::

    ClackError (exit 1)
    +-- InvalidUsageError       (exit 2)
    +-- ConfigError             (exit 1)
    +-- CacheError              (exit 8)
    |   +-- StoreUnavailableError
    |   +-- EncodeError
    |   +-- DecodeError
    +-- NameResolutionError     (exit 4)
        +-- NameNotFoundError
        +-- AmbiguousNameError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from clack.exit_codes import (
    EXIT_CACHE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
)

if TYPE_CHECKING:
    from clack.cache.results import NameMatch


class ClackError(Exception):
    """Base exception for all clack errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(ClackError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(ClackError):
    """Raised for configuration problems (invalid JSON, missing workspace id)."""

    exit_code = EXIT_GENERIC_FAILURE


class CacheError(ClackError):
    """Base class for failures inside the local object cache."""

    exit_code = EXIT_CACHE_ERROR


class StoreUnavailableError(CacheError):
    """The cache database file is missing, locked, corrupt, or failed to migrate."""


class EncodeError(CacheError):
    """An API object could not be serialised into a cache row."""


class DecodeError(CacheError):
    """A stored snapshot could not be turned back into an API object."""


class NameResolutionError(ClackError):
    """Base class for name lookups that did not yield exactly one id."""

    exit_code = EXIT_NOT_FOUND


class NameNotFoundError(NameResolutionError):
    """No cached object carries the requested name."""


class AmbiguousNameError(NameResolutionError):
    """Several cached objects carry the requested name.

    Args:
        message: Human-readable description.
        matches: Every candidate, so the caller can ask the user to pick.
    """

    def __init__(self, message: str, matches: Sequence[NameMatch]):
        super().__init__(message)
        self.matches = list(matches)
