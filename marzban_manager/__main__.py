#!/usr/bin/env python3
"""
Marzban Manager - Command Line Interface

Installs and operates a Marzban panel with Docker Compose.

Usage:
    marzban up [-n]
    marzban down
    marzban restart [-n]
    marzban status
    marzban logs [-n]
    marzban cli [-- ARGS...]
    marzban install [--domain D1,D2] [--database sqlite|mysql|mariadb] [--dev | --version vX.Y.Z]
    marzban update
    marzban uninstall
    marzban install-script
    marzban backup
    marzban backup-service
    marzban core-update
    marzban ssl-cert [--domain D1,D2] [--wildcard | --standard]
    marzban edit
    marzban edit-env
"""

import argparse
import logging
import os
import sys
from typing import Optional, List

from .backup import BackupManager
from .certs import CertStrategy, DomainSet
from .compose import ComposeManager
from .config import AppContext, DatabaseType
from .core import Installer
from .errors import ManagerError, NotInstalledError, UnsupportedPlatformError
from .scheduler import BackupService
from .system import OSFamily
from . import console, system

logger = logging.getLogger(__name__)

COMMAND_HELP = [
    ("up", "Start services"),
    ("down", "Stop services"),
    ("restart", "Restart services"),
    ("status", "Show status"),
    ("logs", "Show logs"),
    ("cli", "Marzban CLI"),
    ("install", "Install Marzban"),
    ("update", "Update to latest version"),
    ("uninstall", "Uninstall Marzban"),
    ("install-script", "Install Marzban script"),
    ("backup", "Manual backup launch"),
    ("backup-service", "Backups to Telegram on a cron schedule"),
    ("core-update", "Update/Change Xray core"),
    ("ssl-cert", "Generate/Update SSL certificates (supports wildcard)"),
    ("edit", "Edit docker-compose.yml (via nano or vi editor)"),
    ("edit-env", "Edit environment file (via nano or vi editor)"),
    ("help", "Show this help message"),
]


class ManagerArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports invalid options with exit status 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        console.error(f"Error: {message}")
        self.exit(1)


def print_help(ctx: AppContext):
    """Print the command listing."""
    console.banner(f"{ctx.app_name.capitalize()} Help")
    console.detail("Usage:")
    console.console.print(f"  {ctx.app_name} [command]\n")
    console.detail("Commands:")
    for name, text in COMMAND_HELP:
        console.console.print(f"  [warning]{name:<16}[/warning]- {text}")
    console.console.print()
    console.detail("SSL Certificate Examples:")
    console.console.print(f"  [accent]{ctx.app_name} ssl-cert[/accent]  # Interactive mode")
    console.console.print(
        f"  [accent]{ctx.app_name} ssl-cert --domain example.com,sub.example.com --standard[/accent]"
    )
    console.console.print(
        f"  [accent]{ctx.app_name} ssl-cert --domain example.com,another.com --wildcard[/accent]"
    )
    console.console.print()
    console.detail("Directories:")
    console.console.print(f"  [accent]App directory: {ctx.app_dir}[/accent]")
    console.console.print(f"  [accent]Data directory: {ctx.data_dir}[/accent]")


def require_installed(ctx: AppContext):
    if not ctx.is_installed():
        raise NotInstalledError("Marzban's not installed!")


def require_up(compose: ComposeManager):
    if not compose.is_up():
        raise ManagerError("Marzban is not up.")


def cmd_up(args, ctx: AppContext):
    """Handle up command."""
    require_installed(ctx)
    compose = ComposeManager(ctx)
    if compose.is_up():
        raise ManagerError("Marzban's already up")
    compose.up()
    if not args.no_logs:
        compose.logs(follow=True)


def cmd_down(args, ctx: AppContext):
    require_installed(ctx)
    compose = ComposeManager(ctx)
    if not compose.is_up():
        raise ManagerError("Marzban's already down")
    compose.down()


def cmd_restart(args, ctx: AppContext):
    require_installed(ctx)
    Installer(ctx).restart(follow_logs=not args.no_logs)
    console.success("Marzban successfully restarted!")


def cmd_status(args, ctx: AppContext):
    """Handle status command."""
    if not ctx.is_installed():
        console.console.print("Status: [error]Not Installed[/error]")
        return 1

    compose = ComposeManager(ctx)
    if not compose.is_up():
        console.console.print("Status: [info]Down[/info]")
        return 1

    console.console.print("Status: [success]Up[/success]")
    for service, state in compose.service_states().items():
        style = "success" if state == "running" else "error"
        console.console.print(f"- {service}: [{style}]{state}[/{style}]")
    return 0


def cmd_logs(args, ctx: AppContext):
    require_installed(ctx)
    compose = ComposeManager(ctx)
    require_up(compose)
    compose.logs(follow=not args.no_follow)


def cmd_cli(args, ctx: AppContext):
    """Handle cli command; everything after it goes to marzban-cli."""
    require_installed(ctx)
    compose = ComposeManager(ctx)
    require_up(compose)
    cli_args = list(args.cli_args)
    if cli_args and cli_args[0] == "--":
        cli_args = cli_args[1:]
    compose.exec_cli(cli_args)


def cmd_install(args, ctx: AppContext):
    """Handle install command."""
    system.check_running_as_root()
    version = "dev" if args.dev else (args.version or "latest")
    Installer(ctx).install(
        version=version,
        database=DatabaseType(args.database),
        domains=args.domain,
    )


def cmd_update(args, ctx: AppContext):
    system.check_running_as_root()
    require_installed(ctx)
    Installer(ctx).update()


def cmd_uninstall(args, ctx: AppContext):
    system.check_running_as_root()
    Installer(ctx).uninstall()


def cmd_install_script(args, ctx: AppContext):
    Installer(ctx).install_script()


def cmd_backup(args, ctx: AppContext):
    """Handle backup command; exits 1 when any step failed."""
    result = BackupManager(ctx).run()
    if result.errors:
        for message in result.errors:
            console.error(message)
        return 1
    return 0


def cmd_backup_service(args, ctx: AppContext):
    require_installed(ctx)
    BackupService(ctx).run()


def cmd_core_update(args, ctx: AppContext):
    system.check_running_as_root()
    require_installed(ctx)
    Installer(ctx).update_core()


def cmd_ssl_cert(args, ctx: AppContext):
    """Handle ssl-cert command."""
    system.check_running_as_root()
    if not ctx.is_installed():
        raise NotInstalledError("Marzban is not installed. Please install Marzban first.")
    os_family = system.detect_os()
    if os_family != OSFamily.UBUNTU:
        raise UnsupportedPlatformError(
            "SSL certificate generation is currently only supported on Ubuntu."
        )

    console.banner("SSL Certificate Management")
    strategy = None
    if args.wildcard:
        strategy = CertStrategy.WILDCARD
    elif args.standard:
        strategy = CertStrategy.STANDARD
    domains = DomainSet.parse(args.domain) if args.domain else None

    Installer(ctx, os_family=os_family).configure_ssl(domains, strategy)
    console.success("SSL certificates have been successfully generated and configured!")


def cmd_edit(args, ctx: AppContext):
    Installer(ctx).edit_file(ctx.compose_file, "Compose file")


def cmd_edit_env(args, ctx: AppContext):
    Installer(ctx).edit_file(ctx.env_file, "Environment file")


def cmd_help(args, ctx: AppContext):
    print_help(ctx)
    return 0


COMMANDS = {
    "up": cmd_up,
    "down": cmd_down,
    "restart": cmd_restart,
    "status": cmd_status,
    "logs": cmd_logs,
    "cli": cmd_cli,
    "install": cmd_install,
    "update": cmd_update,
    "uninstall": cmd_uninstall,
    "install-script": cmd_install_script,
    "backup": cmd_backup,
    "backup-service": cmd_backup_service,
    "core-update": cmd_core_update,
    "ssl-cert": cmd_ssl_cert,
    "edit": cmd_edit,
    "edit-env": cmd_edit_env,
    "help": cmd_help,
}


def build_parser(ctx: AppContext) -> ManagerArgumentParser:
    parser = ManagerArgumentParser(
        prog=ctx.app_name,
        description="Marzban Manager - install and operate a Marzban panel",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    up_parser = subparsers.add_parser("up", help="Start services")
    up_parser.add_argument("-n", "--no-logs", action="store_true",
                           help="Do not follow logs after starting")

    subparsers.add_parser("down", help="Stop services")

    restart_parser = subparsers.add_parser("restart", help="Restart services")
    restart_parser.add_argument("-n", "--no-logs", action="store_true",
                                help="Do not follow logs after starting")

    subparsers.add_parser("status", help="Show status")

    logs_parser = subparsers.add_parser("logs", help="Show logs")
    logs_parser.add_argument("-n", "--no-follow", action="store_true",
                             help="Do not follow logs")

    cli_parser = subparsers.add_parser("cli", help="Marzban CLI", add_help=False)
    cli_parser.add_argument("cli_args", nargs=argparse.REMAINDER, help="Arguments for marzban-cli")

    install_parser = subparsers.add_parser("install", help="Install Marzban")
    install_parser.add_argument("--domain", help="Comma separated domains for the certificate")
    install_parser.add_argument("--database", choices=[d.value for d in DatabaseType],
                                default=DatabaseType.SQLITE.value, help="Database backend")
    version_group = install_parser.add_mutually_exclusive_group()
    version_group.add_argument("--dev", action="store_true", help="Install the dev image")
    version_group.add_argument("--version", help="Release to install, e.g. v0.5.2")

    subparsers.add_parser("update", help="Update to latest version")
    subparsers.add_parser("uninstall", help="Uninstall Marzban")
    subparsers.add_parser("install-script", help="Install Marzban script")
    subparsers.add_parser("backup", help="Manual backup launch")
    subparsers.add_parser("backup-service", help="Backups to Telegram on a cron schedule")
    subparsers.add_parser("core-update", help="Update/Change Xray core")

    ssl_parser = subparsers.add_parser("ssl-cert", help="Generate/Update SSL certificates")
    ssl_parser.add_argument("--domain", help="Comma separated domains")
    strategy_group = ssl_parser.add_mutually_exclusive_group()
    strategy_group.add_argument("--wildcard", action="store_true",
                                help="One wildcard+SAN certificate (Cloudflare DNS)")
    strategy_group.add_argument("--standard", action="store_true",
                                help="One SAN certificate for the given domains")

    subparsers.add_parser("edit", help="Edit docker-compose.yml")
    subparsers.add_parser("edit-env", help="Edit environment file")
    subparsers.add_parser("help", help="Show this help message")
    return parser


def setup_logging():
    level = os.environ.get("MARZBAN_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    setup_logging()
    argv = sys.argv[1:] if argv is None else list(argv)
    ctx = AppContext.from_env()

    if not argv or argv[0] not in COMMANDS:
        print_help(ctx)
        return 0

    if argv[0] == "cli":
        # forwarded untouched so marzban-cli sees its own options
        args = argparse.Namespace(command="cli", cli_args=argv[1:])
    else:
        args = build_parser(ctx).parse_args(argv)

    try:
        return COMMANDS[args.command](args, ctx) or 0
    except ManagerError as e:
        console.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        console.error("Aborted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
