"""Typer application and CLI entry point for clack.

This module wires together the top-level Typer application and registers
the built-in ``cache`` sub-command group.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
:class:`~clack.exceptions.ClackError` instances exit with their own code;
any other unhandled exception is written to a crash log under the data
directory.

See Also:
    :mod:`clack.config`: Configuration and workspace resolution.
    :mod:`clack.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from clack import __version__
from clack.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="clack",
    help="Chat workspace CLI with a local object cache.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

from clack.commands.cache import cache_app  # noqa: E402

app.add_typer(cache_app, name="cache", help="Local object cache management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"clack {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    workspace: Optional[str] = typer.Option(
        None, "--workspace", "-w", help="Workspace id to use."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output, including cache traces."
    ),
    refresh_cache: bool = typer.Option(
        False, "--refresh-cache", help="Ignore cached reads in data commands; fetched data is still cached. Name resolution is unaffected."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~clack.output.OutputManager` from CLI
    flags and stores shared options (``workspace``, ``refresh_cache``,
    ``force``) in the Typer context so that sub-commands can read them via
    ``ctx.obj``.
    """
    from clack.config import ENV_REFRESH_CACHE, env_flag
    from clack.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace
    ctx.obj["refresh_cache"] = refresh_cache or env_flag(ENV_REFRESH_CACHE)
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under ``<data dir>/logs`` and return its path."""
    from clack.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(f"{type(exc).__name__}: {exc}\n\n{traceback.format_exc()}")
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``clack`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from clack.exceptions import ClackError
        from clack.output import error

        if isinstance(exc, ClackError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
