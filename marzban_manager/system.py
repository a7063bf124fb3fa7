"""
Host system integration.

Handles:
- Running external commands
- Operating system and CPU architecture detection
- Package installation through the native package manager
- Docker installation, root checks and editor discovery
"""

import os
import sys
import shutil
import platform
import subprocess
from pathlib import Path
from typing import Optional, Dict, List, IO, Mapping
from enum import Enum
import logging

import requests

from .config import DOCKER_INSTALL_URL, HTTP_TIMEOUT
from .errors import CommandError, ManagerError, UnsupportedPlatformError
from . import console

logger = logging.getLogger(__name__)


def run(
    cmd: List[str],
    *,
    check: bool = True,
    capture: bool = True,
    input: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    stdout: Optional[IO] = None,
) -> subprocess.CompletedProcess:
    """Run an external command, raising CommandError on failure when ``check``."""
    logger.debug(f"Running: {' '.join(cmd)}")
    kwargs = {"text": True, "input": input}
    if env is not None:
        kwargs["env"] = {**os.environ, **env}
    if stdout is not None:
        kwargs["stdout"] = stdout
        kwargs["stderr"] = subprocess.PIPE
    else:
        kwargs["capture_output"] = capture

    try:
        result = subprocess.run(cmd, **kwargs)
    except FileNotFoundError as e:
        raise CommandError(f"Command not found: {cmd[0]}", returncode=127) from e

    if check and result.returncode != 0:
        raise CommandError(
            f"Command failed ({result.returncode}): {' '.join(cmd)}",
            returncode=result.returncode,
            stderr=result.stderr or "",
        )
    return result


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def check_running_as_root():
    if os.geteuid() != 0:
        raise CommandError("This command must be run as root.")


class OSFamily(Enum):
    """Operating system families with a known package manager."""
    UBUNTU = "Ubuntu"
    DEBIAN = "Debian"
    CENTOS = "CentOS"
    ALMALINUX = "AlmaLinux"
    FEDORA = "Fedora"
    ARCH = "Arch"
    OPENSUSE = "openSUSE"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_name(cls, name: str) -> "OSFamily":
        """Map a distribution name to its family by prefix."""
        name = name.strip().strip('"')
        for family in cls:
            if family is not cls.UNSUPPORTED and name.startswith(family.value):
                return family
        return cls.UNSUPPORTED


def _read_release_value(path: Path, key: str) -> Optional[str]:
    for line in path.read_text().splitlines():
        if line.startswith(f"{key}="):
            return line.split("=", 1)[1].strip().strip('"')
    return None


def detect_os(etc: Path = Path("/etc")) -> OSFamily:
    """Identify the OS family from distribution release files."""
    lsb_release = etc / "lsb-release"
    os_release = etc / "os-release"
    redhat_release = etc / "redhat-release"

    name = None
    if lsb_release.is_file():
        name = _read_release_value(lsb_release, "DISTRIB_ID")
    if not name and os_release.is_file():
        name = _read_release_value(os_release, "NAME")
    if not name and redhat_release.is_file():
        words = redhat_release.read_text().split()
        name = words[0] if words else None
    if not name and (etc / "arch-release").is_file():
        name = "Arch"

    if not name:
        raise UnsupportedPlatformError("Unsupported operating system")

    family = OSFamily.from_name(name)
    logger.info(f"Detected operating system: {name} ({family.name})")
    return family


class Architecture(Enum):
    """Xray-core release architecture tags."""
    X86 = "32"
    X86_64 = "64"
    ARM32_V5 = "arm32-v5"
    ARM32_V6 = "arm32-v6"
    ARM32_V7A = "arm32-v7a"
    ARM64_V8A = "arm64-v8a"
    MIPS32 = "mips32"
    MIPS32LE = "mips32le"
    MIPS64 = "mips64"
    MIPS64LE = "mips64le"
    PPC64 = "ppc64"
    PPC64LE = "ppc64le"
    RISCV64 = "riscv64"
    S390X = "s390x"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_machine(
        cls,
        machine: str,
        has_vfp: bool = True,
        little_endian: bool = True
    ) -> "Architecture":
        """Map a ``uname -m`` value to a release architecture."""
        if machine in ("armv6l", "armv7", "armv7l") and not has_vfp:
            return cls.ARM32_V5
        if machine == "mips64" and little_endian:
            return cls.MIPS64LE

        mapping = {
            "i386": cls.X86,
            "i686": cls.X86,
            "amd64": cls.X86_64,
            "x86_64": cls.X86_64,
            "armv5tel": cls.ARM32_V5,
            "armv6l": cls.ARM32_V6,
            "armv7": cls.ARM32_V7A,
            "armv7l": cls.ARM32_V7A,
            "armv8": cls.ARM64_V8A,
            "aarch64": cls.ARM64_V8A,
            "mips": cls.MIPS32,
            "mipsle": cls.MIPS32LE,
            "mips64": cls.MIPS64,
            "mips64le": cls.MIPS64LE,
            "ppc64": cls.PPC64,
            "ppc64le": cls.PPC64LE,
            "riscv64": cls.RISCV64,
            "s390x": cls.S390X,
        }
        return mapping.get(machine, cls.UNSUPPORTED)


def _cpu_has_vfp(cpuinfo: Path = Path("/proc/cpuinfo")) -> bool:
    try:
        text = cpuinfo.read_text()
    except OSError:
        return False
    for line in text.splitlines():
        if line.startswith("Features") and "vfp" in line.split(":", 1)[-1].split():
            return True
    return False


def detect_architecture() -> Architecture:
    """Detect the host CPU architecture; unsupported hosts are fatal."""
    if platform.system() != "Linux":
        raise UnsupportedPlatformError("error: This operating system is not supported.")

    arch = Architecture.from_machine(
        platform.machine(),
        has_vfp=_cpu_has_vfp(),
        little_endian=sys.byteorder == "little",
    )
    if arch == Architecture.UNSUPPORTED:
        raise UnsupportedPlatformError("error: The architecture is not supported.")
    return arch


class PackageInstaller:
    """
    Installs packages with the host's native package manager.

    The package index is refreshed on first use and cached for the
    lifetime of the instance.
    """

    REFRESH_COMMANDS: Dict[OSFamily, List[List[str]]] = {
        OSFamily.UBUNTU: [["apt-get", "update"]],
        OSFamily.DEBIAN: [["apt-get", "update"]],
        OSFamily.CENTOS: [["yum", "update", "-y"], ["yum", "install", "-y", "epel-release"]],
        OSFamily.ALMALINUX: [["yum", "update", "-y"], ["yum", "install", "-y", "epel-release"]],
        OSFamily.FEDORA: [["dnf", "update", "-y"]],
        OSFamily.ARCH: [["pacman", "-Sy"]],
        OSFamily.OPENSUSE: [["zypper", "refresh"]],
    }

    INSTALL_COMMANDS: Dict[OSFamily, List[str]] = {
        OSFamily.UBUNTU: ["apt-get", "-y", "install"],
        OSFamily.DEBIAN: ["apt-get", "-y", "install"],
        OSFamily.CENTOS: ["yum", "install", "-y"],
        OSFamily.ALMALINUX: ["yum", "install", "-y"],
        OSFamily.FEDORA: ["dnf", "install", "-y"],
        OSFamily.ARCH: ["pacman", "-S", "--noconfirm"],
        OSFamily.OPENSUSE: ["zypper", "install", "-y"],
    }

    def __init__(self, os_family: OSFamily):
        self.os_family = os_family
        self._index_updated = False

    def _require_supported(self):
        if self.os_family not in self.INSTALL_COMMANDS:
            raise UnsupportedPlatformError("Unsupported operating system")

    def update_index(self):
        """Refresh the package index once per instance."""
        self._require_supported()
        if self._index_updated:
            return
        console.info("Updating package manager")
        for cmd in self.REFRESH_COMMANDS[self.os_family]:
            run(cmd, capture=False)
        self._index_updated = True

    def install(self, package: str):
        """Install a package, refreshing the index on first use."""
        self.update_index()
        console.info(f"Installing {package}")
        run(self.INSTALL_COMMANDS[self.os_family] + [package], capture=False)

    def ensure(self, command: str, package: Optional[str] = None):
        """Install ``package`` only when ``command`` is missing."""
        if not command_exists(command):
            self.install(package or command)


def install_docker():
    """Install Docker and Docker Compose with the official convenience script."""
    console.info("Installing Docker")
    try:
        response = requests.get(DOCKER_INSTALL_URL, timeout=HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ManagerError(f"Failed to fetch the Docker install script: {e}") from e
    run(["sh"], input=response.text, capture=False)
    console.success("Docker installed successfully")


def find_editor(installer: Optional[PackageInstaller] = None) -> str:
    """Return $EDITOR, else nano or vi, installing nano as a last resort."""
    editor = os.environ.get("EDITOR")
    if editor:
        return editor
    for candidate in ("nano", "vi"):
        if command_exists(candidate):
            return candidate
    installer = installer or PackageInstaller(detect_os())
    installer.install("nano")
    return "nano"
