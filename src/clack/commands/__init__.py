"""Built-in CLI sub-commands for clack.

* :mod:`~clack.commands.cache` -- inspect, clear, and query the local
  object cache.

Each module exports a :class:`typer.Typer` sub-application that the root
app registers under its own name.
"""
