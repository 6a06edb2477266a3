"""Cache commands -- inspect, clear, and query the local object cache.

Provides the ``clack cache`` sub-command group. The cache itself is
maintained by write-through from other commands; these commands only
report on it, resolve names against it, and empty it on request.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import typer

from clack.exit_codes import EXIT_CACHE_ERROR, EXIT_NOT_FOUND
from clack.output import error, format_response, info, print_data, print_table, success, warning

if TYPE_CHECKING:
    from clack.cache import ObjectCache
    from clack.models import GlobalConfig


cache_app = typer.Typer(no_args_is_help=True)


class NameKind(str, Enum):
    """Object kinds that can be looked up by name."""

    USER = "user"
    CONVERSATION = "conversation"


def _obj(ctx: typer.Context, key: str, default: object = None) -> object:
    return ctx.obj.get(key, default) if ctx.obj else default


def _load() -> tuple[GlobalConfig, ObjectCache]:
    """Resolve the effective config and open the cache it describes."""
    from clack.cache import ObjectCache
    from clack.config import resolve_config
    from clack.exceptions import ClackError

    try:
        config = resolve_config()
    except ClackError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    return config, ObjectCache.from_config(config)


def _workspace(ctx: typer.Context, config: GlobalConfig) -> str:
    from clack.config import resolve_workspace
    from clack.exceptions import ClackError

    try:
        return resolve_workspace(config, _obj(ctx, "workspace"))  # type: ignore[arg-type]
    except ClackError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@cache_app.command("path")
def cache_path() -> None:
    """Print the cache database path.

    Example::

        clack cache path
    """
    from clack.config import get_cache_db_path, resolve_config

    print_data(str(get_cache_db_path(resolve_config())))


@cache_app.command("stats")
def cache_stats(
    ctx: typer.Context,
    all_workspaces: bool = typer.Option(
        False, "--all-workspaces", help="Count rows of every workspace."
    ),
) -> None:
    """Show per-kind row counts: fresh, stale, and soft-deleted.

    Example::

        clack --workspace T123 cache stats
        clack cache stats --all-workspaces --json
    """
    from clack.exceptions import StoreUnavailableError
    from clack.output import OutputFormat, get_output

    config, cache = _load()
    with cache:
        if not cache.enabled:
            warning("Cache is disabled or unavailable.")
            return
        workspace_id = None if all_workspaces else _workspace(ctx, config)
        try:
            stats = cache.stats(workspace_id)
        except StoreUnavailableError as exc:
            error(str(exc))
            raise typer.Exit(code=EXIT_CACHE_ERROR) from None

    if get_output().format == OutputFormat.JSON:
        format_response(stats)
        return

    info(f"Cache: {stats['path']} ({stats['size_bytes']} bytes, schema v{stats['schema_version']})")
    rows = [
        [
            kind,
            str(counts["total"]),
            str(counts["fresh"]),
            str(counts["stale"]),
            str(counts["deleted"]),
            str(counts["ttl_seconds"]),
        ]
        for kind, counts in stats["kinds"].items()
    ]
    scope = workspace_id or "all workspaces"
    print_table(
        ["kind", "total", "fresh", "stale", "deleted", "ttl_seconds"],
        rows,
        title=f"Cache ({scope})",
    )


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    all_workspaces: bool = typer.Option(
        False, "--all-workspaces", help="Clear every workspace, not just the active one."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete cached users, conversations, and messages.

    Clears the active workspace unless ``--all-workspaces`` is given.
    Asks for confirmation unless ``--force`` is active.

    Example::

        clack --workspace T123 cache clear
        clack cache clear --all-workspaces --force
    """
    from clack.exceptions import StoreUnavailableError

    config, cache = _load()
    with cache:
        if not cache.enabled:
            warning("Cache is disabled or unavailable; nothing to clear.")
            return
        workspace_id = None if all_workspaces else _workspace(ctx, config)
        scope = f"workspace {workspace_id}" if workspace_id else "all workspaces"

        if not (force or _obj(ctx, "force", False)):
            if not typer.confirm(f"Clear cached objects for {scope}?"):
                info("Cancelled.")
                raise typer.Exit()

        try:
            counts = cache.clear(workspace_id)
        except StoreUnavailableError as exc:
            error(f"Could not clear cache: {exc}")
            raise typer.Exit(code=EXIT_CACHE_ERROR) from None

    detail = ", ".join(f"{n} {kind}s" for kind, n in counts.items())
    success(f"Cleared {scope}: {detail}.")


@cache_app.command("resolve")
def cache_resolve(
    ctx: typer.Context,
    kind: NameKind = typer.Argument(help="What to look up: user or conversation."),
    name: str = typer.Argument(help="Name to resolve, e.g. '#general' or '@alice'."),
    any_age: bool = typer.Option(
        False, "--any-age", help="Accept cached records regardless of age."
    ),
) -> None:
    """Resolve a user or conversation name to its id from the cache.

    Prints the id on success. Exits with code 4 when the name is unknown
    or matches more than one object; in the latter case every candidate
    is listed.

    Example::

        clack cache resolve conversation '#general'
        clack cache resolve user alice --any-age
    """
    from clack.cache import ANY_AGE, CacheContext
    from clack.models import ObjectKind

    config, cache = _load()
    with cache:
        workspace_id = _workspace(ctx, config)
        cache_ctx = CacheContext(workspace_id=workspace_id)
        resolution = cache.resolve_name(
            ObjectKind(kind.value),
            cache_ctx,
            name,
            ttl_override=ANY_AGE if any_age else None,
        )

    if not resolution.found:
        error(f"No cached {kind.value} named '{name}' in workspace {workspace_id}.")
        raise typer.Exit(code=EXIT_NOT_FOUND)
    if resolution.ambiguous:
        error(f"'{name}' matches {len(resolution.matches)} {kind.value}s; use an id instead.")
        print_table(
            ["id", "name", "label"],
            [[m.id, m.name, m.label or ""] for m in resolution.matches],
            title="Candidates",
        )
        raise typer.Exit(code=EXIT_NOT_FOUND)
    print_data(resolution.resolved_id or "")
