"""
Xray-core management.

Handles:
- Release discovery through the GitHub releases API
- Downloading and extracting the core for the host architecture
- Reality key pair generation
- Rendering the initial proxy configuration
"""

import os
import re
import stat
import tempfile
import zipfile
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, List
import logging

import requests

from .config import (
    AppContext,
    HTTP_TIMEOUT,
    LAST_XRAY_CORES,
    XRAY_DOWNLOAD_URL,
    XRAY_RELEASES_API,
)
from .errors import CommandError, ManagerError
from .rendering import render
from .system import Architecture
from . import console, system

logger = logging.getLogger(__name__)

PRIVATE_KEY_PATTERN = re.compile(r"^\s*Private\s*key:\s*(\S+)", re.IGNORECASE | re.MULTILINE)
PUBLIC_KEY_PATTERN = re.compile(
    r"^\s*(?:Public\s*key|Password):\s*(\S+)", re.IGNORECASE | re.MULTILINE
)


@dataclass
class XrayKeyPair:
    """An x25519 key pair for the REALITY inbound."""
    private_key: str
    public_key: str = ""

    @classmethod
    def parse(cls, output: str) -> "XrayKeyPair":
        """Parse ``xray x25519`` output in either its old or new layout."""
        private = PRIVATE_KEY_PATTERN.search(output)
        if not private:
            raise ManagerError("Failed to generate Xray private key.")
        public = PUBLIC_KEY_PATTERN.search(output)
        return cls(private_key=private.group(1), public_key=public.group(1) if public else "")


@dataclass
class XrayConfig:
    """Settings of the generated proxy configuration."""
    private_key: str
    log_level: str = "warning"
    dns_servers: List[str] = field(default_factory=lambda: ["1.1.1.1"])
    shadowsocks_port: int = 1080
    reality_port: int = 12000
    reality_dest: str = "gmail.com:443"
    server_names: List[str] = field(default_factory=lambda: ["gmail.com"])

    def render(self) -> str:
        return render(
            "xray_config.json.j2",
            private_key=self.private_key,
            log_level=self.log_level,
            dns_servers=self.dns_servers,
            shadowsocks_port=self.shadowsocks_port,
            reality_port=self.reality_port,
            reality_dest=self.reality_dest,
            server_names=self.server_names,
        )

    def write(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render())
        logger.info(f"Written: {path}")


class XrayCoreManager:
    """Downloads Xray-core releases and generates keys with them."""

    def __init__(self, ctx: AppContext, session: Optional[requests.Session] = None):
        self.ctx = ctx
        self.session = session or requests.Session()

    def _get(self, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", HTTP_TIMEOUT)
        return self.session.get(url, **kwargs)

    def list_versions(self, limit: int = LAST_XRAY_CORES) -> List[str]:
        """Return the tags of the most recent releases."""
        try:
            response = self._get(XRAY_RELEASES_API, params={"per_page": limit})
            response.raise_for_status()
            releases = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ManagerError(f"Failed to fetch Xray-core releases: {e}") from e
        return [release["tag_name"] for release in releases if "tag_name" in release]

    def latest_version(self) -> str:
        try:
            response = self._get(f"{XRAY_RELEASES_API}/latest")
            response.raise_for_status()
            version = response.json().get("tag_name")
        except (requests.RequestException, ValueError) as e:
            raise ManagerError(f"Failed to fetch latest Xray-core version: {e}") from e
        if not version:
            raise ManagerError("Failed to fetch latest Xray-core version.")
        return version

    def version_exists(self, version: str) -> bool:
        try:
            response = self._get(f"{XRAY_RELEASES_API}/tags/{version}")
        except requests.RequestException as e:
            logger.warning(f"Could not check Xray-core version {version}: {e}")
            return False
        return response.status_code == 200

    def download(self, version: str, arch: Architecture, dest: Optional[Path] = None) -> Path:
        """Download and extract a release; return the path of the executable."""
        dest = dest or self.ctx.xray_dir
        dest.mkdir(parents=True, exist_ok=True)
        filename = f"Xray-linux-{arch.value}.zip"
        url = f"{XRAY_DOWNLOAD_URL}/{version}/{filename}"

        console.info(f"Downloading Xray-core version {version}...")
        fd, tmp_name = tempfile.mkstemp(suffix=".zip")
        try:
            with os.fdopen(fd, "wb") as f:
                with self._get(url, stream=True, timeout=300) as response:
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        f.write(chunk)

            console.info("Extracting Xray-core...")
            with zipfile.ZipFile(tmp_name) as archive:
                archive.extractall(dest)
        except requests.RequestException as e:
            raise ManagerError(f"Failed to download {url}: {e}") from e
        except zipfile.BadZipFile as e:
            raise ManagerError(f"Downloaded Xray-core archive is corrupt: {e}") from e
        finally:
            os.unlink(tmp_name)

        executable = dest / "xray"
        if executable.exists():
            executable.chmod(executable.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return executable

    def generate_keys(self, executable: Optional[Path] = None) -> XrayKeyPair:
        executable = executable or self.ctx.xray_executable
        try:
            result = system.run([str(executable), "x25519"])
        except CommandError as e:
            raise ManagerError(f"Failed to generate Xray private key: {e}") from e
        return XrayKeyPair.parse(result.stdout)

    def choose_version(self) -> Optional[str]:
        """Interactive menu over recent releases; None when the operator quits."""
        versions = self.list_versions()
        while True:
            console.banner("Xray-core Installer", style="success")
            console.warning("Available Xray-core versions:")
            for i, version in enumerate(versions, start=1):
                console.console.print(f"[info]{i}:[/info] {version}")
            console.console.print("[accent]M:[/accent] Enter a version manually")
            console.console.print("[error]Q:[/error] Quit")

            choice = console.ask(
                f"Choose a version to install (1-{len(versions)}), "
                "or press M to enter manually, Q to quit"
            )
            if choice.isdigit() and 1 <= int(choice) <= len(versions):
                return versions[int(choice) - 1]
            if choice.lower() == "m":
                while True:
                    custom = console.ask("Enter the version manually (e.g., v1.2.3)")
                    if custom and self.version_exists(custom):
                        return custom
                    console.error("Invalid version or version does not exist. Please try again.")
            if choice.lower() == "q":
                console.error("Exiting.")
                return None
            console.error("Invalid choice. Please try again.")

