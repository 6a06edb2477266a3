"""clack -- local object cache for a chat workspace CLI.

This package keeps a write-through, TTL-governed copy of remote chat API
objects (users, conversations, messages) in an embedded SQLite database so
that commands can answer lookups and resolve names without a network round
trip. Every cached row is scoped to a workspace.

Typical consumer flow::

    from clack.cache import CacheContext, ObjectCache, fetch_one
    from clack.models import ObjectKind

    cache = ObjectCache.from_config(resolve_config())
    ctx = CacheContext(workspace_id="T123")
    user = fetch_one(cache, ObjectKind.USER, ctx, "U1", lambda: api.user_info("U1"))

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for configuration, API objects, and stored rows.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting and verbose diagnostics.
    cache: The SQLite-backed object cache.
"""

__version__ = "0.3.0"
