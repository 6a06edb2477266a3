"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for clack:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.clack/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, and :func:`get_data_dir`.
* **Global config** -- a single :class:`~clack.models.GlobalConfig` JSON
  file holding the default workspace and cache settings.
* **Precedence resolution** -- :func:`resolve_config` and
  :func:`resolve_workspace` merge CLI flags, environment variables, and the
  config file into the effective settings.

Writes use a temp-file-then-rename strategy (:func:`_atomic_write`) so an
interrupted save never leaves a truncated config behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from clack.exceptions import ConfigError
from clack.models import GlobalConfig

_APP_NAME = "clack"
_CONFIG_FILENAME = "config.json"
_CACHE_DB_FILENAME = "cache.db"

ENV_WORKSPACE = "CLACK_WORKSPACE"
ENV_CACHE_PATH = "CLACK_CACHE_PATH"
ENV_REFRESH_CACHE = "CLACK_REFRESH_CACHE"

_TRUTHY = ("1", "true", "yes", "on")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/clack/`` (default ``~/.config/clack/``).
    On macOS/Windows: ``~/.clack/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the object cache database. Its contents can be deleted at any
    time; the next command simply repopulates it from the remote API.

    On Linux/BSD: ``$XDG_CACHE_HOME/clack/`` (default ``~/.cache/clack/``).
    On macOS/Windows: ``~/.clack/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/clack/`` (default ``~/.local/share/clack/``).
    On macOS/Windows: ``~/.clack/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_db_path(config: GlobalConfig) -> Path:
    """Return the cache database path for *config*.

    ``CLACK_CACHE_PATH`` wins over ``cache.path`` from the config file,
    which wins over ``<cache dir>/cache.db``.
    """
    env_path = os.environ.get(ENV_CACHE_PATH)
    if env_path:
        return Path(env_path).expanduser()
    if config.cache.path:
        return Path(config.cache.path).expanduser()
    return get_cache_dir() / _CACHE_DB_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file lives in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~clack.models.GlobalConfig`, or a default
        instance when the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def env_flag(name: str) -> bool:
    """Return True when environment variable *name* holds a truthy value."""
    return os.environ.get(name, "").strip().lower() in _TRUTHY


def resolve_config() -> GlobalConfig:
    """Resolve the effective global configuration.

    Precedence (high to low):
        1. Environment variables (``CLACK_CACHE_PATH``)
        2. User config (``~/.config/clack/config.json``)
        3. Defaults
    """
    config = load_global_config()
    env_path = os.environ.get(ENV_CACHE_PATH)
    if env_path:
        config.cache.path = env_path
    return config


def resolve_workspace(
    config: GlobalConfig, cli_workspace: Optional[str] = None
) -> str:
    """Return the active workspace id.

    Precedence: ``--workspace`` flag, then ``CLACK_WORKSPACE``, then
    ``default_workspace`` from the config file.

    Raises:
        ConfigError: If no source provides a workspace id.
    """
    if cli_workspace:
        return cli_workspace
    env_workspace = os.environ.get(ENV_WORKSPACE)
    if env_workspace:
        return env_workspace
    if config.default_workspace:
        return config.default_workspace
    raise ConfigError(
        "No workspace selected. Pass --workspace, set "
        f"{ENV_WORKSPACE}, or set default_workspace in {_global_config_path()}"
    )
