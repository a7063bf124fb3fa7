"""Tests for the command dispatcher."""

import pytest
import requests

from marzban_manager import system
from marzban_manager.__main__ import COMMANDS, COMMAND_HELP, main
from marzban_manager.system import Architecture


@pytest.fixture(autouse=True)
def layout(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_NAME", "marzban")
    monkeypatch.setenv("INSTALL_DIR", str(tmp_path / "opt"))
    monkeypatch.setenv("DATA_ROOT", str(tmp_path / "var" / "lib"))
    return tmp_path


def test_every_listed_command_has_a_handler():
    assert {name for name, _ in COMMAND_HELP} == set(COMMANDS)


class TestHelp:
    @pytest.mark.parametrize("argv", [[], ["bogus"], ["help"]])
    def test_help_exits_zero(self, argv, runner, capsys):
        assert main(argv) == 0
        assert "ssl-cert" in capsys.readouterr().out
        assert runner.calls == []


class TestNotInstalled:
    @pytest.mark.parametrize("argv", [
        ["status"],
        ["logs"],
        ["down"],
        ["up", "-n"],
        ["cli", "--", "admin", "list"],
        ["backup-service"],
    ])
    def test_fails_without_running_anything(self, argv, runner):
        assert main(argv) == 1
        assert runner.calls == []

    def test_status_prints_not_installed(self, runner, capsys):
        main(["status"])
        assert "Not Installed" in capsys.readouterr().out


class TestInstalled:
    @pytest.fixture
    def installed(self, layout):
        (layout / "opt" / "marzban").mkdir(parents=True)

    def test_status_down(self, installed, runner, capsys):
        assert main(["status"]) == 1
        assert "Down" in capsys.readouterr().out

    def test_status_up(self, installed, runner, capsys):
        runner.on("ps -q -a", stdout="abc\n")
        runner.on("--format=json", stdout='{"Service": "marzban", "State": "running"}\n')
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert "Up" in out
        assert "marzban: running" in out

    def test_cli_forwards_arguments(self, installed, runner):
        runner.on("ps -q -a", stdout="abc\n")
        assert main(["cli", "--", "admin", "list", "--help"]) == 0
        exec_call = runner.calls[-1]
        assert exec_call[-4:] == ["marzban-cli", "admin", "list", "--help"]
        assert "CLI_PROG_NAME=marzban cli" in exec_call

    def test_logs_requires_running_services(self, installed, runner):
        assert main(["logs", "--no-follow"]) == 1
        assert not any("logs" in call[-2:] for call in runner.calls)


class TestParseErrors:
    @pytest.mark.parametrize("argv", [
        ["install", "--dev", "--version", "v0.5.2"],
        ["ssl-cert", "--wildcard", "--standard"],
        ["install", "--database", "postgres"],
        ["up", "--unknown"],
    ])
    def test_invalid_options_exit_one(self, argv, runner):
        with pytest.raises(SystemExit) as exc:
            main(argv)
        assert exc.value.code == 1
        assert runner.calls == []


class TestNetworkFailures:
    def test_core_update_offline_exits_one(self, layout, runner, monkeypatch, capsys):
        (layout / "opt" / "marzban").mkdir(parents=True)
        monkeypatch.setattr(system, "check_running_as_root", lambda: None)
        monkeypatch.setattr(system, "detect_architecture", lambda: Architecture.X86_64)

        def offline(self, url, **kwargs):
            raise requests.ConnectionError(f"No route for {url}")

        monkeypatch.setattr(requests.Session, "get", offline)

        assert main(["core-update"]) == 1
        assert "Failed to fetch Xray-core releases" in capsys.readouterr().out
        assert runner.calls == []
