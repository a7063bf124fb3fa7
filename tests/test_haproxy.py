"""Tests for load balancer and firewall configuration."""

from marzban_manager import haproxy
from marzban_manager.compose import ComposeManager


class TestConfigureHaproxy:
    def test_missing_file_gets_full_config(self, ctx):
        assert haproxy.configure_haproxy(ctx, "panel.example.com")
        content = ctx.haproxy_config.read_text()
        assert content.startswith("global\n")
        assert "defaults" in content
        assert "# Marzban Configuration" in content
        assert "bind *:443" in content
        assert "tcp-request content accept if { req_ssl_hello_type 1 }" in content
        assert "use_backend panel if { req.ssl_sni -m end panel.example.com }" in content
        assert "server srv1 127.0.0.1:10000" in content
        assert "server srv1 127.0.0.1:11000" in content

    def test_existing_file_without_marker_is_appended(self, ctx):
        ctx.haproxy_config.parent.mkdir(parents=True)
        original = "global\n    daemon\n\nfrontend stats\n    bind *:8404\n"
        ctx.haproxy_config.write_text(original)

        assert haproxy.configure_haproxy(ctx, "panel.example.com")

        content = ctx.haproxy_config.read_text()
        assert content.startswith(original)
        assert content.count("\nbackend panel") == 1
        assert content.count("global") == 1

    def test_marker_present_leaves_file_unchanged(self, ctx):
        ctx.haproxy_config.parent.mkdir(parents=True)
        original = haproxy.render_config(ctx, "old.example.com")
        ctx.haproxy_config.write_text(original)

        assert not haproxy.configure_haproxy(ctx, "new.example.com")
        assert ctx.haproxy_config.read_text() == original

    def test_configure_twice_is_idempotent(self, ctx):
        haproxy.configure_haproxy(ctx, "panel.example.com")
        first = ctx.haproxy_config.read_text()
        haproxy.configure_haproxy(ctx, "panel.example.com")
        assert ctx.haproxy_config.read_text() == first


class TestConfigureUfw:
    def test_skipped_when_not_installed(self, runner, monkeypatch):
        monkeypatch.setattr(haproxy.system, "command_exists", lambda name: False)
        assert not haproxy.configure_ufw()
        assert runner.calls == []

    def test_skipped_when_inactive(self, runner, monkeypatch):
        monkeypatch.setattr(haproxy.system, "command_exists", lambda name: True)
        runner.on("ufw status", stdout="Status: inactive\n")
        assert not haproxy.configure_ufw()
        assert runner.commands() == ["ufw status"]

    def test_allows_http_and_https(self, runner, monkeypatch):
        monkeypatch.setattr(haproxy.system, "command_exists", lambda name: True)
        runner.on("ufw status", stdout="Status: active\n")
        assert haproxy.configure_ufw()
        assert runner.commands()[1:] == ["ufw allow 80/tcp", "ufw allow 443/tcp"]


def test_restart_services(ctx, runner):
    compose = ComposeManager(ctx, command=["docker", "compose"])
    haproxy.restart_services(ctx, compose)
    commands = runner.commands()
    assert commands[0] == "systemctl restart haproxy"
    assert commands[1].endswith("down")
    assert commands[2].endswith("up -d --remove-orphans")
