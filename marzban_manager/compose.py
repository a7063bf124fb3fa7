"""
Docker Compose lifecycle management for the panel.

Handles:
- Compose command detection (plugin or standalone binary)
- Lifecycle verbs (up, down, pull, logs, exec)
- Container state inspection
"""

import json
from typing import Optional, Dict, List
import logging

from .config import AppContext, APP_SERVICE
from .errors import CommandError
from . import system

logger = logging.getLogger(__name__)


def detect_compose() -> List[str]:
    """Return the compose command prefix available on this host."""
    for candidate in (["docker", "compose"], ["docker-compose"]):
        try:
            system.run(candidate + ["version"])
            return candidate
        except CommandError:
            continue
    raise CommandError("docker compose not found")


def parse_ps_output(output: str) -> List[Dict[str, str]]:
    """Parse ``ps --format json`` output (a JSON array or one object per line)."""
    output = output.strip()
    if not output:
        return []
    if output.startswith("["):
        return json.loads(output)
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class ComposeManager:
    """Runs compose verbs against the installation's compose file."""

    def __init__(self, ctx: AppContext, command: Optional[List[str]] = None):
        self.ctx = ctx
        self._command = command

    @property
    def command(self) -> List[str]:
        if self._command is None:
            self._command = detect_compose()
        return self._command

    def _base(self) -> List[str]:
        return self.command + ["-f", str(self.ctx.compose_file), "-p", self.ctx.app_name]

    def _run(self, *args: str, capture: bool = True, check: bool = True):
        return system.run(self._base() + list(args), capture=capture, check=check)

    def up(self):
        logger.info(f"Starting {self.ctx.app_name}")
        self._run("up", "-d", "--remove-orphans", capture=False)

    def down(self):
        logger.info(f"Stopping {self.ctx.app_name}")
        self._run("down", capture=False)

    def pull(self):
        self._run("pull", capture=False)

    def logs(self, follow: bool = True):
        args = ["logs"]
        if follow:
            args.append("-f")
        self._run(*args, capture=False, check=False)

    def exec_cli(self, args: List[str]):
        """Run the panel's CLI inside the application container."""
        cli_name = f"{self.ctx.app_name} cli"
        self._run(
            "exec", "-e", f"CLI_PROG_NAME={cli_name}", APP_SERVICE, "marzban-cli", *args,
            capture=False, check=False
        )

    def container_ids(self) -> List[str]:
        result = self._run("ps", "-q", "-a")
        return [line for line in result.stdout.split() if line]

    def is_up(self) -> bool:
        """True when compose reports at least one container."""
        return bool(self.container_ids())

    def container_id(self, service: str) -> str:
        """Container id of ``service``, falling back to the service name."""
        result = self._run("ps", "-q", service, check=False)
        container = result.stdout.strip() if result.returncode == 0 else ""
        return container or service

    def service_states(self) -> Dict[str, str]:
        result = self._run("ps", "-a", "--format=json")
        return {
            entry.get("Service", "?"): entry.get("State", "unknown")
            for entry in parse_ps_output(result.stdout)
        }
