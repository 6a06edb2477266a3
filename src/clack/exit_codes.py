"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to an error category and is referenced by the matching
:class:`~clack.exceptions.ClackError` subclass, so shell wrappers can tell
failure classes apart without parsing stderr.

Example::

    $ clack cache resolve conversation general
    $ echo $?
    4   # EXIT_NOT_FOUND -- no cached conversation has that name
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_NOT_FOUND = 4
"""A name could not be resolved to exactly one cached object."""

EXIT_CACHE_ERROR = 8
"""The cache database could not be opened, migrated, or written."""
