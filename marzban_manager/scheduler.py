"""
Scheduled backups.

Handles:
- Translating an hourly interval to a cron schedule and back
- Keeping exactly one tagged backup line in the root crontab
- The interactive backup-service wizard
"""

import re
from typing import Optional, Dict, List
import logging

from .config import AppContext
from .envfile import EnvFile
from . import console, system

logger = logging.getLogger(__name__)

BACKUP_KEYS = (
    "BACKUP_SERVICE_ENABLED",
    "BACKUP_TELEGRAM_BOT_KEY",
    "BACKUP_TELEGRAM_CHAT_ID",
    "BACKUP_CRON_SCHEDULE",
)
BACKUP_SECTION_COMMENT = "# Backup service configuration"
DAILY_SCHEDULE = "0 0 * * *"


def interval_to_schedule(hours: int) -> str:
    """Cron schedule running every ``hours`` hours; 24 means daily at midnight."""
    if hours == 24:
        return DAILY_SCHEDULE
    if 1 <= hours <= 23:
        return f"0 */{hours} * * *"
    raise ValueError("Invalid input. Please enter a number between 1-24.")


def schedule_to_interval(schedule: str) -> Optional[int]:
    schedule = schedule.strip().strip('"')
    if schedule == DAILY_SCHEDULE:
        return 24
    match = re.search(r"\*/(\d+)", schedule)
    return int(match.group(1)) if match else None


class BackupScheduler:
    """Maintains the tagged backup line in the crontab."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    @property
    def marker(self) -> str:
        return self.ctx.cron_marker

    @property
    def command(self) -> str:
        return f"{self.ctx.script_path} backup"

    def read(self) -> List[str]:
        result = system.run(["crontab", "-l"], check=False)
        return result.stdout.splitlines() if result.returncode == 0 else []

    def write(self, lines: List[str]):
        system.run(["crontab", "-"], input="\n".join(lines) + "\n" if lines else "")

    def entries(self) -> List[str]:
        return [line for line in self.read() if self.marker in line]

    def configure(self, schedule: str, command: Optional[str] = None) -> str:
        """Replace any previous backup line with one for ``schedule``."""
        command = command or self.command
        lines = [
            line for line in self.read()
            if self.marker not in line and command not in line
        ]
        entry = f"{schedule} {command} {self.marker}"
        lines.append(entry)
        self.write(lines)
        console.success("Cron job successfully added.")
        logger.info(f"Installed cron entry: {entry}")
        return entry

    def remove(self):
        lines = [line for line in self.read() if self.marker not in line]
        self.write(lines)
        console.success("Backup service task removed from crontab.")


class BackupService:
    """The ``backup-service`` wizard: Telegram settings plus the cron entry."""

    def __init__(self, ctx: AppContext, scheduler: Optional[BackupScheduler] = None):
        self.ctx = ctx
        self.env = EnvFile(ctx.env_file)
        self.scheduler = scheduler or BackupScheduler(ctx)

    def current(self) -> Optional[Dict[str, str]]:
        """Current settings, or None when the service is not enabled."""
        values = self.env.values()
        if values.get("BACKUP_SERVICE_ENABLED") != "true":
            return None
        return {key: values.get(key, "") for key in BACKUP_KEYS}

    def save(self, bot_key: str, chat_id: str, schedule: str):
        self.env.delete(*BACKUP_KEYS)
        self.env.delete_matching(BACKUP_SECTION_COMMENT)
        self.env.append_block([
            BACKUP_SECTION_COMMENT,
            "BACKUP_SERVICE_ENABLED=true",
            f"BACKUP_TELEGRAM_BOT_KEY={bot_key}",
            f"BACKUP_TELEGRAM_CHAT_ID={chat_id}",
            f'BACKUP_CRON_SCHEDULE="{schedule}"',
        ])
        console.success(f"Backup service configuration saved in {self.env.path}.")

    def configure(self, bot_key: str, chat_id: str, interval_hours: int) -> str:
        schedule = interval_to_schedule(interval_hours)
        self.save(bot_key, chat_id, schedule)
        return self.scheduler.configure(schedule)

    def remove(self):
        console.warning("Removing Backup Service...")
        self.env.delete_matching(BACKUP_SECTION_COMMENT, *BACKUP_KEYS)
        self.scheduler.remove()
        console.success("Backup service has been removed.")

    @staticmethod
    def _prompt_interval() -> int:
        while True:
            answer = console.ask("Set up the backup interval in hours (1-24)")
            if not answer.isdigit():
                console.error("Invalid input. Please enter a valid number.")
                continue
            try:
                interval_to_schedule(int(answer))
            except ValueError as e:
                console.error(str(e))
                continue
            return int(answer)

    def run(self):
        console.banner("Welcome to Backup Service")

        current = self.current()
        if current:
            interval = schedule_to_interval(current["BACKUP_CRON_SCHEDULE"])
            console.banner("Current Backup Configuration", style="success")
            console.detail(f"Telegram Bot API Key: {current['BACKUP_TELEGRAM_BOT_KEY']}")
            console.detail(f"Telegram Chat ID: {current['BACKUP_TELEGRAM_CHAT_ID']}")
            console.detail(f"Backup Interval: Every {interval} hour(s)")
            console.console.print("Choose an option:")
            console.console.print("1. Reconfigure Backup Service")
            console.console.print("2. Remove Backup Service")
            console.console.print("3. Exit")
            choice = console.ask("Enter your choice (1-3)")
            if choice == "1":
                console.warning("Starting reconfiguration...")
                self.remove()
            elif choice == "2":
                self.remove()
                return
            elif choice == "3":
                console.warning("Exiting...")
                return
            else:
                console.error("Invalid choice. Exiting.")
                return
        else:
            console.warning("No backup service is currently configured.")

        bot_key = console.ask_required(
            "Enter your Telegram bot API key", "API key cannot be empty. Please try again."
        )
        chat_id = console.ask_required(
            "Enter your Telegram chat ID", "Chat ID cannot be empty. Please try again."
        )
        interval = self._prompt_interval()

        self.configure(bot_key, chat_id, interval)
        console.success("Backup service successfully configured.")
        if interval == 24:
            console.detail("Backups will be sent to Telegram daily (every 24 hours at midnight).")
        else:
            console.detail(f"Backups will be sent to Telegram every {interval} hour(s).")
