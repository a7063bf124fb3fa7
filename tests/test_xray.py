"""Tests for Xray-core management."""

import io
import json
import zipfile

import pytest

from conftest import FakeResponse
from marzban_manager.config import XRAY_DOWNLOAD_URL, XRAY_RELEASES_API
from marzban_manager.errors import ManagerError
from marzban_manager.system import Architecture
from marzban_manager.xray import XrayConfig, XrayCoreManager, XrayKeyPair


def _zip_with_xray() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("xray", "#!/bin/sh\n")
        archive.writestr("geoip.dat", "")
    return buffer.getvalue()


class TestKeyPair:
    def test_old_output_format(self):
        keys = XrayKeyPair.parse("Private key: abc123\nPublic key: def456\n")
        assert keys.private_key == "abc123"
        assert keys.public_key == "def456"

    def test_new_output_format(self):
        keys = XrayKeyPair.parse("PrivateKey: abc123\nPassword: def456\nHash32: xyz\n")
        assert keys.private_key == "abc123"
        assert keys.public_key == "def456"

    def test_missing_private_key(self):
        with pytest.raises(ManagerError):
            XrayKeyPair.parse("error: unknown command\n")


class TestXrayConfig:
    def test_render_is_valid_json(self):
        config = json.loads(XrayConfig(private_key="secret-key").render())
        reality = config["inbounds"][1]
        assert reality["port"] == 12000
        assert reality["listen"] == "127.0.0.1"
        assert reality["streamSettings"]["realitySettings"]["privateKey"] == "secret-key"
        assert reality["streamSettings"]["realitySettings"]["serverNames"] == ["gmail.com"]
        assert config["inbounds"][0]["protocol"] == "shadowsocks"
        assert config["dns"]["servers"] == ["1.1.1.1"]

    def test_write_creates_parent(self, tmp_path):
        path = tmp_path / "data" / "xray_config.json"
        XrayConfig(private_key="k").write(path)
        assert json.loads(path.read_text())["log"]["loglevel"] == "warning"


class TestXrayCoreManager:
    def test_list_versions(self, ctx, session):
        session.route(XRAY_RELEASES_API, FakeResponse(json_data=[
            {"tag_name": "v1.8.24"}, {"tag_name": "v1.8.23"}, {"name": "draft"},
        ]))
        assert XrayCoreManager(ctx, session).list_versions() == ["v1.8.24", "v1.8.23"]
        assert session.requests[0]["params"] == {"per_page": 10}

    def test_latest_version(self, ctx, session):
        session.route(f"{XRAY_RELEASES_API}/latest", FakeResponse(json_data={"tag_name": "v25.1.1"}))
        assert XrayCoreManager(ctx, session).latest_version() == "v25.1.1"

    def test_latest_version_failure(self, ctx, session):
        with pytest.raises(ManagerError):
            XrayCoreManager(ctx, session).latest_version()

    def test_version_exists(self, ctx, session):
        session.route(f"{XRAY_RELEASES_API}/tags/", FakeResponse(status_code=404))
        session.route(f"{XRAY_RELEASES_API}/tags/v1.8.24", FakeResponse())
        manager = XrayCoreManager(ctx, session)
        assert manager.version_exists("v1.8.24")
        assert not manager.version_exists("v0.0.1")

    def test_download_extracts_executable(self, ctx, session):
        url = f"{XRAY_DOWNLOAD_URL}/v1.8.24/Xray-linux-arm64-v8a.zip"
        session.route(url, FakeResponse(content=_zip_with_xray()))

        executable = XrayCoreManager(ctx, session).download("v1.8.24", Architecture.ARM64_V8A)

        assert executable == ctx.xray_executable
        assert executable.stat().st_mode & 0o111
        assert (ctx.xray_dir / "geoip.dat").exists()

    def test_download_failure(self, ctx, session):
        with pytest.raises(ManagerError):
            XrayCoreManager(ctx, session).download("v1.8.24", Architecture.X86_64)

    def test_generate_keys(self, ctx, runner):
        runner.on("x25519", stdout="Private key: priv\nPublic key: pub\n")
        keys = XrayCoreManager(ctx).generate_keys()
        assert keys.private_key == "priv"
        assert runner.calls == [[str(ctx.xray_executable), "x25519"]]

    def test_choose_version_from_menu(self, ctx, session, monkeypatch):
        session.route(XRAY_RELEASES_API, FakeResponse(json_data=[{"tag_name": "v1"}, {"tag_name": "v2"}]))
        answers = iter(["9", "2"])
        monkeypatch.setattr("marzban_manager.console.ask", lambda *a, **k: next(answers))
        assert XrayCoreManager(ctx, session).choose_version() == "v2"

    def test_choose_version_quit(self, ctx, session, monkeypatch):
        session.route(XRAY_RELEASES_API, FakeResponse(json_data=[{"tag_name": "v1"}]))
        monkeypatch.setattr("marzban_manager.console.ask", lambda *a, **k: "q")
        assert XrayCoreManager(ctx, session).choose_version() is None

    def test_list_versions_failure(self, ctx, session):
        session.route(XRAY_RELEASES_API, FakeResponse(status_code=403))
        with pytest.raises(ManagerError):
            XrayCoreManager(ctx, session).list_versions()

    def test_corrupt_download(self, ctx, session):
        url = f"{XRAY_DOWNLOAD_URL}/v1.8.24/Xray-linux-64.zip"
        session.route(url, FakeResponse(content=b"<html>rate limited</html>"))
        with pytest.raises(ManagerError):
            XrayCoreManager(ctx, session).download("v1.8.24", Architecture.X86_64)
        assert not ctx.xray_executable.exists()
