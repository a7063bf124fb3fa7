"""Shared test fixtures."""

import subprocess
from pathlib import Path
from typing import Callable, List, Optional

import pytest
import requests

from marzban_manager import system
from marzban_manager.config import AppContext
from marzban_manager.errors import CommandError


class FakeRunner:
    """Stands in for ``system.run``; records every command it is given."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.envs: List[Optional[dict]] = []
        self._rules = []

    def on(
        self,
        fragment: str,
        stdout: str = "",
        returncode: int = 0,
        stderr: str = "",
        action: Optional[Callable] = None,
    ):
        """Answer commands whose joined text contains ``fragment``; later rules win."""
        self._rules.insert(0, (fragment, stdout, returncode, stderr, action))
        return self

    def commands(self) -> List[str]:
        return [" ".join(cmd) for cmd in self.calls]

    def __call__(self, cmd, *, check=True, capture=True, input=None, env=None, stdout=None):
        self.calls.append(list(cmd))
        self.inputs.append(input)
        self.envs.append(env)
        text = " ".join(cmd)
        out, returncode, err = "", 0, ""
        for fragment, rule_out, rule_rc, rule_err, action in self._rules:
            if fragment in text:
                if action is not None:
                    result = action(cmd, input)
                    if result is not None:
                        rule_out = result
                out, returncode, err = rule_out, rule_rc, rule_err
                break
        if stdout is not None:
            stdout.write(out)
            out = None
        if check and returncode != 0:
            raise CommandError(f"Command failed ({returncode}): {text}", returncode=returncode, stderr=err)
        return subprocess.CompletedProcess(cmd, returncode, stdout=out, stderr=err)


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data=None, text: str = "", content: bytes = b""):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.content = content

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """
    Minimal ``requests.Session`` replacement.

    Routes map a URL prefix to a FakeResponse, an exception instance, or a
    callable ``(method, url, kwargs) -> FakeResponse``. Unknown URLs fail
    with a connection error.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, url_prefix: str, response):
        self.routes[url_prefix] = response
        return self

    def _dispatch(self, method: str, url: str, kwargs: dict):
        files = kwargs.get("files") or {}
        uploads = {}
        for field_name, (filename, handle) in files.items():
            uploads[field_name] = (filename, handle.read())
        self.requests.append({"method": method, "url": url, "uploads": uploads, **kwargs})

        for prefix in sorted(self.routes, key=len, reverse=True):
            if url.startswith(prefix):
                response = self.routes[prefix]
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(method, url, kwargs)
                return response
        raise requests.ConnectionError(f"No route for {url}")

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, kwargs)


@pytest.fixture
def ctx(tmp_path: Path) -> AppContext:
    """Return an AppContext rooted in a temp directory."""
    return AppContext(
        app_name="marzban",
        install_dir=tmp_path / "opt",
        data_root=tmp_path / "var" / "lib",
        log_dir=tmp_path / "var" / "log",
        script_dir=tmp_path / "usr" / "local" / "bin",
        haproxy_config=tmp_path / "etc" / "haproxy" / "haproxy.cfg",
    )


@pytest.fixture
def installed_ctx(ctx: AppContext) -> AppContext:
    ctx.app_dir.mkdir(parents=True)
    ctx.data_dir.mkdir(parents=True)
    return ctx


@pytest.fixture
def runner(monkeypatch) -> FakeRunner:
    fake = FakeRunner()
    monkeypatch.setattr(system, "run", fake)
    return fake


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()
