"""Tests for the ``clack cache`` command group."""

from __future__ import annotations

import json
import time
from pathlib import Path

import pytest

from clack import __version__
from clack.app import app
from clack.cache import CacheContext, ObjectCache
from clack.config import save_global_config
from clack.exit_codes import EXIT_NOT_FOUND
from clack.models import CacheConfig, Conversation, GlobalConfig, ObjectKind, User


def _seed(workspace_id: str, users=(), conversations=(), age: float = 0) -> None:
    """Write objects into the configured cache as if fetched *age* seconds ago."""
    cache = ObjectCache.from_config(GlobalConfig(), clock=lambda: time.time() - age)
    ctx = CacheContext(workspace_id=workspace_id)
    with cache:
        cache.upsert(ObjectKind.USER, ctx, list(users))
        cache.upsert(ObjectKind.CONVERSATION, ctx, list(conversations))


def _db_path(root: Path) -> Path:
    return root / "cache" / "clack" / "cache.db"


class TestRoot:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"clack {__version__}" in result.output

    def test_no_args_shows_help(self, cli_runner) -> None:
        result = cli_runner.invoke(app, [])
        assert "cache" in result.output


# ---------------------------------------------------------------------------
# path / stats
# ---------------------------------------------------------------------------


class TestPathAndStats:
    def test_path(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["cache", "path"])
        assert result.exit_code == 0
        assert result.output.strip() == str(_db_path(isolated_config))

    def test_path_honours_env(self, cli_runner, isolated_config: Path, monkeypatch) -> None:
        monkeypatch.setenv("CLACK_CACHE_PATH", str(isolated_config / "custom.db"))
        result = cli_runner.invoke(app, ["cache", "path"])
        assert result.output.strip() == str(isolated_config / "custom.db")

    def test_stats_json(self, cli_runner, isolated_config: Path) -> None:
        _seed("T1", users=[User(id="U1", name="alice")], conversations=[Conversation(id="C1", name="general")])
        _seed("T2", users=[User(id="U1", name="alice")])

        result = cli_runner.invoke(app, ["--json", "--workspace", "T1", "cache", "stats"])

        assert result.exit_code == 0, result.output
        stats = json.loads(result.output)
        assert stats["workspace_id"] == "T1"
        assert stats["kinds"]["user"]["total"] == 1
        assert stats["kinds"]["user"]["fresh"] == 1
        assert stats["kinds"]["conversation"]["total"] == 1

    def test_stats_all_workspaces_plain(self, cli_runner, isolated_config: Path) -> None:
        _seed("T1", users=[User(id="U1", name="alice")])
        _seed("T2", users=[User(id="U1", name="alice")], age=7200)

        result = cli_runner.invoke(app, ["--plain", "cache", "stats", "--all-workspaces"])

        assert result.exit_code == 0, result.output
        assert "user\t2\t1\t1\t0\t3600" in result.output

    def test_stats_requires_workspace(self, cli_runner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["cache", "stats"])
        assert result.exit_code == 1
        assert "No workspace selected" in result.output

    def test_stats_disabled_cache(self, cli_runner, isolated_config: Path) -> None:
        save_global_config(GlobalConfig(cache=CacheConfig(enabled=False)))
        result = cli_runner.invoke(app, ["cache", "stats", "--all-workspaces"])
        assert result.exit_code == 0
        assert "disabled" in result.output


# ---------------------------------------------------------------------------
# clear
# ---------------------------------------------------------------------------


class TestClear:
    def test_clear_active_workspace(self, cli_runner, isolated_config: Path) -> None:
        _seed("T1", users=[User(id="U1", name="alice")])
        _seed("T2", users=[User(id="U1", name="alice")])

        result = cli_runner.invoke(app, ["--workspace", "T1", "cache", "clear", "--force"])

        assert result.exit_code == 0, result.output
        assert "Cleared workspace T1" in result.output
        with ObjectCache.from_config(GlobalConfig()) as cache:
            assert not cache.get(ObjectKind.USER, CacheContext(workspace_id="T1"), "U1")
            assert cache.get(ObjectKind.USER, CacheContext(workspace_id="T2"), "U1")

    def test_clear_all_with_root_force(self, cli_runner, isolated_config: Path, monkeypatch) -> None:
        _seed("T1", users=[User(id="U1", name="alice")])
        _seed("T2", users=[User(id="U2", name="bob")])

        result = cli_runner.invoke(app, ["--force", "cache", "clear", "--all-workspaces"])

        assert result.exit_code == 0, result.output
        with ObjectCache.from_config(GlobalConfig()) as cache:
            assert cache.stats()["kinds"]["user"]["total"] == 0

    def test_clear_declined(self, cli_runner, isolated_config: Path, monkeypatch) -> None:
        monkeypatch.setenv("CLACK_WORKSPACE", "T1")
        _seed("T1", users=[User(id="U1", name="alice")])

        result = cli_runner.invoke(app, ["cache", "clear"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        with ObjectCache.from_config(GlobalConfig()) as cache:
            assert cache.get(ObjectKind.USER, CacheContext(workspace_id="T1"), "U1")


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


class TestResolve:
    @pytest.fixture(autouse=True)
    def _workspace(self, isolated_config: Path, monkeypatch) -> None:
        monkeypatch.setenv("CLACK_WORKSPACE", "T1")

    def test_resolves_user(self, cli_runner) -> None:
        _seed("T1", users=[User(id="U1", name="alice")])
        result = cli_runner.invoke(app, ["cache", "resolve", "user", "@ALICE"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "U1"

    def test_not_found(self, cli_runner) -> None:
        _seed("T2", conversations=[Conversation(id="C1", name="general")])
        result = cli_runner.invoke(app, ["cache", "resolve", "conversation", "#general"])
        assert result.exit_code == EXIT_NOT_FOUND
        assert "No cached conversation" in result.output

    def test_ambiguous_lists_candidates(self, cli_runner) -> None:
        _seed(
            "T1",
            conversations=[Conversation(id="C1", name="general"), Conversation(id="C2", name="General")],
        )
        result = cli_runner.invoke(app, ["--plain", "cache", "resolve", "conversation", "general"])
        assert result.exit_code == EXIT_NOT_FOUND
        assert "C1\tgeneral" in result.output
        assert "C2\tGeneral" in result.output

    def test_stale_needs_any_age(self, cli_runner) -> None:
        _seed("T1", conversations=[Conversation(id="C1", name="general")], age=31 * 60)

        stale = cli_runner.invoke(app, ["cache", "resolve", "conversation", "general"])
        assert stale.exit_code == EXIT_NOT_FOUND

        widened = cli_runner.invoke(app, ["cache", "resolve", "conversation", "general", "--any-age"])
        assert widened.exit_code == 0
        assert widened.output.strip() == "C1"

    def test_verbose_traces_to_output(self, cli_runner) -> None:
        _seed("T1", users=[User(id="U1", name="alice")])
        result = cli_runner.invoke(app, ["--verbose", "--no-color", "cache", "resolve", "user", "alice"])
        assert result.exit_code == 0
        assert "[cache] resolve user 'alice' - 1 match(es)" in result.output

    def test_refresh_flag_does_not_hide_names(self, cli_runner, monkeypatch) -> None:
        monkeypatch.setenv("CLACK_REFRESH_CACHE", "1")
        _seed("T1", users=[User(id="U1", name="alice")])
        result = cli_runner.invoke(app, ["--refresh-cache", "cache", "resolve", "user", "alice"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "U1"

    def test_missing_workspace_closes_cache(self, cli_runner, monkeypatch) -> None:
        monkeypatch.delenv("CLACK_WORKSPACE")
        closed = []
        original_close = ObjectCache.close

        def close(self) -> None:
            closed.append(True)
            original_close(self)

        monkeypatch.setattr(ObjectCache, "close", close)
        result = cli_runner.invoke(app, ["cache", "resolve", "user", "alice"])
        assert result.exit_code == 1
        assert "No workspace selected" in result.output
        assert closed
