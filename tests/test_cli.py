"""Tests for the rigs CLI (click CliRunner against temp rigs)."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from rigstore.cli import cli
from rigstore.config import ENV_DIR


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def rig(tmp_path: Path, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv(ENV_DIR, raising=False)
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["init", "--prefix", "bd"])
    assert result.exit_code == 0, result.output
    return tmp_path


def _create(runner: CliRunner, *args: str) -> str:
    result = runner.invoke(cli, ["create", *args])
    assert result.exit_code == 0, result.output
    return result.output.strip()


class TestInit:
    def test_creates_layout(self, rig: Path):
        assert (rig / ".store" / "config.toml").exists()
        assert (rig / ".store" / "issues" / "open").is_dir()
        assert (rig / ".store" / "kv" / "merge-slot" / "lock.json").exists()

    def test_second_init_skips(self, rig: Path, runner: CliRunner):
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        assert "already exists" in result.output

    def test_commands_need_a_rig(self, tmp_path: Path, runner: CliRunner, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv(ENV_DIR, raising=False)
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["list"])
        assert result.exit_code != 0
        assert "rigs init" in result.output


class TestIssues:
    def test_create_show_list(self, rig: Path, runner: CliRunner):
        issue_id = _create(runner, "Fix login", "-d", "Details here")
        assert issue_id.startswith("bd-")

        shown = runner.invoke(cli, ["show", issue_id])
        assert shown.exit_code == 0
        assert "Fix login" in shown.output
        assert "Details here" in shown.output

        listed = runner.invoke(cli, ["list"])
        assert issue_id in listed.output

    def test_create_child(self, rig: Path, runner: CliRunner):
        parent = _create(runner, "Epic", "--type", "epic")
        child = _create(runner, "Part", "--parent", parent)
        assert child == f"{parent}.1"

        kids = runner.invoke(cli, ["children", parent])
        assert child in kids.output
        shown = runner.invoke(cli, ["show", child])
        assert f"parent   : {parent}" in shown.output

    def test_show_missing(self, rig: Path, runner: CliRunner):
        result = runner.invoke(cli, ["show", "bd-nope"])
        assert result.exit_code == 1
        assert "not found: bd-nope" in result.output


class TestDeps:
    def test_add_and_cycle(self, rig: Path, runner: CliRunner):
        a = _create(runner, "a")
        b = _create(runner, "b")
        assert runner.invoke(cli, ["dep", "add", a, b]).exit_code == 0

        result = runner.invoke(cli, ["dep", "add", b, a])
        assert result.exit_code == 1
        assert "cycle" in result.output

    def test_remove(self, rig: Path, runner: CliRunner):
        a = _create(runner, "a")
        b = _create(runner, "b")
        runner.invoke(cli, ["dep", "add", a, b, "--type", "related"])
        result = runner.invoke(cli, ["dep", "rm", a, b])
        assert result.exit_code == 0
        assert "depends on" not in runner.invoke(cli, ["show", a]).output


class TestLifecycle:
    def test_close_reopen(self, rig: Path, runner: CliRunner):
        a = _create(runner, "a")
        closed = runner.invoke(cli, ["close", a, "--reason", "shipped"])
        assert closed.exit_code == 0
        assert f"Closed {a}" in closed.output
        shown = runner.invoke(cli, ["show", a]).output
        assert "status   : closed" in shown
        assert "reason   : shipped" in shown
        assert a not in runner.invoke(cli, ["list"]).output

        assert runner.invoke(cli, ["reopen", a]).exit_code == 0
        assert a in runner.invoke(cli, ["list"]).output

        again = runner.invoke(cli, ["reopen", a])
        assert again.exit_code == 1
        assert "not closed" in again.output

    def test_ready_blocked(self, rig: Path, runner: CliRunner):
        a = _create(runner, "a")
        b = _create(runner, "b")
        runner.invoke(cli, ["dep", "add", a, b])

        ready = runner.invoke(cli, ["ready"]).output
        assert b in ready
        assert a not in ready
        blocked = runner.invoke(cli, ["blocked"]).output
        assert f"waiting on: {b}" in blocked

        runner.invoke(cli, ["close", b])
        assert a in runner.invoke(cli, ["ready"]).output
        assert "No blocked issues." in runner.invoke(cli, ["blocked"]).output

    def test_delete_cleans_edges(self, rig: Path, runner: CliRunner):
        a = _create(runner, "a")
        b = _create(runner, "b")
        runner.invoke(cli, ["dep", "add", a, b])
        result = runner.invoke(cli, ["delete", b])
        assert result.exit_code == 0
        assert runner.invoke(cli, ["show", b]).exit_code == 1
        assert "depends on" not in runner.invoke(cli, ["show", a]).output
        assert runner.invoke(cli, ["doctor"]).exit_code == 0

    def test_delete_missing(self, rig: Path, runner: CliRunner):
        result = runner.invoke(cli, ["delete", "bd-nope"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestRouting:
    def test_no_routes(self, rig: Path, runner: CliRunner):
        assert "No routes configured" in runner.invoke(cli, ["routes"]).output
        assert "local (no route)" in runner.invoke(cli, ["route", "bd-abc"]).output

    def test_routes_table(self, rig: Path, runner: CliRunner):
        other = rig / "crew" / "misc"
        assert runner.invoke(cli, ["init", "--prefix", "bl", "--dir", str(other)]).exit_code == 0
        (rig / ".store" / "routes.jsonl").write_text(
            '{"prefix": "bd-", "path": "."}\n{"prefix": "bl-", "path": "crew/misc"}\n'
        )
        table = runner.invoke(cli, ["routes"])
        assert table.exit_code == 0
        assert "bl-" in table.output

        remote = runner.invoke(cli, ["route", "bl-abc"])
        assert "bl- ->" in remote.output
        assert "crew/misc/.store" in remote.output

    def test_malformed_routes(self, rig: Path, runner: CliRunner):
        (rig / ".store" / "routes.jsonl").write_text("{oops\n")
        result = runner.invoke(cli, ["routes"])
        assert result.exit_code == 1
        assert "malformed route" in result.output


class TestDoctor:
    def test_clean(self, rig: Path, runner: CliRunner):
        _create(runner, "a")
        result = runner.invoke(cli, ["doctor"])
        assert result.exit_code == 0
        assert "No problems found" in result.output

    def test_fix(self, rig: Path, runner: CliRunner):
        (rig / ".store" / "issues" / "open" / "bd-x.json.tmp.0123").write_text("{}")
        assert runner.invoke(cli, ["doctor"]).exit_code == 1
        fixed = runner.invoke(cli, ["doctor", "--fix"])
        assert fixed.exit_code == 0
        assert "Fixed 1 problem(s)" in fixed.output
        assert runner.invoke(cli, ["doctor"]).exit_code == 0


class TestSlot:
    def test_acquire_release_cycle(self, rig: Path, runner: CliRunner):
        assert runner.invoke(cli, ["slot", "acquire", "alice"]).exit_code == 0

        held = runner.invoke(cli, ["slot", "acquire", "bob", "--wait"])
        assert held.exit_code == 1
        assert "alice" in held.output

        check = runner.invoke(cli, ["slot", "check"])
        assert "held (holder: alice)" in check.output
        assert "bob" in check.output

        wrong = runner.invoke(cli, ["slot", "release", "--holder", "bob"])
        assert wrong.exit_code == 1

        released = runner.invoke(cli, ["slot", "release", "--holder", "alice"])
        assert released.exit_code == 0
        assert "next waiter: bob" in released.output
