"""
Error types for the Marzban manager.

Components raise these; only the command dispatcher turns them into
terminal output and a process exit code.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging

logger = logging.getLogger(__name__)


class ManagerError(Exception):
    """Base exception for all manager operations."""

    def __init__(self, message: str, *, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class CommandError(ManagerError):
    """An external command exited with a failure status."""

    def __init__(self, message: str, *, returncode: int = 1, stderr: str = ""):
        super().__init__(message, exit_code=returncode or 1)
        self.returncode = returncode
        self.stderr = stderr


class UnsupportedPlatformError(ManagerError):
    """Operating system or CPU architecture is not supported."""


class InvalidVersionError(ManagerError):
    """Requested version is malformed or does not exist."""


class NotInstalledError(ManagerError):
    """The panel is not installed on this host."""


class CertificateError(ManagerError):
    """Certificate issuance or installation failed."""


class BackupError(ManagerError):
    """Backup could not be started."""


@dataclass
class Attempt:
    """Outcome of a best-effort call whose failure is tolerated."""
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


def attempt(func: Callable[..., Any], *args, default: Any = None, **kwargs) -> Attempt:
    """Run ``func`` and record, rather than propagate, any failure."""
    try:
        return Attempt(ok=True, value=func(*args, **kwargs))
    except Exception as e:
        logger.debug(f"Best-effort call {getattr(func, '__name__', func)} failed: {e}")
        return Attempt(ok=False, value=default, error=e)
