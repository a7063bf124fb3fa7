"""
Load balancer and firewall configuration.

Handles:
- SNI routing listener for the panel in HAProxy
- Opening HTTP/HTTPS in UFW
- Restarting HAProxy and the panel after TLS changes
"""

from typing import Optional
import logging

from .compose import ComposeManager
from .config import AppContext, FALLBACK_PORT, PANEL_PORT
from .errors import CommandError
from .rendering import render
from . import console, system

logger = logging.getLogger(__name__)

PANEL_BACKEND_MARKER = "backend panel"


def render_listener(ctx: AppContext, domain: str) -> str:
    return render(
        "haproxy_listener.cfg.j2",
        app_name=ctx.app_name,
        domain=domain,
        panel_port=PANEL_PORT,
        fallback_port=FALLBACK_PORT,
    )


def render_config(ctx: AppContext, domain: str) -> str:
    return render(
        "haproxy.cfg.j2",
        app_name=ctx.app_name,
        domain=domain,
        panel_port=PANEL_PORT,
        fallback_port=FALLBACK_PORT,
    )


def configure_haproxy(ctx: AppContext, domain: str) -> bool:
    """
    Route TLS traffic for ``domain`` to the panel.

    A missing config file is created in full. An existing file gets the
    listener appended unless it already has a panel backend, in which case
    it is left untouched even if ``domain`` changed.

    Returns True when the file was written.
    """
    console.info("Configuring HAProxy...")
    path = ctx.haproxy_config
    path.parent.mkdir(parents=True, exist_ok=True)

    if not path.exists():
        path.write_text(render_config(ctx, domain))
        logger.info(f"Created {path}")
        return True

    current = path.read_text()
    if PANEL_BACKEND_MARKER in current:
        logger.info(f"{path} already routes to the panel, leaving it unchanged")
        return False

    separator = "" if current.endswith("\n") or not current else "\n"
    path.write_text(current + separator + "\n" + render_listener(ctx, domain))
    logger.info(f"Appended panel listener to {path}")
    return True


def configure_ufw() -> bool:
    """Allow 80/tcp and 443/tcp when UFW is installed and active."""
    console.info("Configuring UFW firewall...")
    if not system.command_exists("ufw"):
        console.warning("UFW not installed, skipping firewall configuration")
        return False

    status = system.run(["ufw", "status"], check=False)
    if "Status: active" not in (status.stdout or ""):
        console.warning("UFW is not active, skipping firewall configuration")
        return False

    # 80 is needed for standalone ACME validation
    system.run(["ufw", "allow", "80/tcp"])
    system.run(["ufw", "allow", "443/tcp"])
    console.success("UFW configured to allow HTTP/HTTPS traffic")
    return True


def restart_services(ctx: AppContext, compose: Optional[ComposeManager] = None):
    """Restart HAProxy, then the panel without following its logs."""
    console.info("Restarting services...")
    try:
        system.run(["systemctl", "restart", "haproxy"], capture=False)
    except CommandError as e:
        raise CommandError("Failed to restart haproxy", returncode=e.returncode) from e

    compose = compose or ComposeManager(ctx)
    compose.down()
    compose.up()
    console.success("Services restarted successfully")
