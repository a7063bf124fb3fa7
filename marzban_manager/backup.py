"""
Backup of the panel installation.

Handles:
- Database dumps (MariaDB, MySQL) and SQLite file copies
- Archiving configuration and the data directory
- Splitting large archives for upload
- Delivering archives or error reports through the Telegram bot
"""

import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, MutableMapping, Tuple
import logging

import requests
import yaml

from .compose import ComposeManager
from .config import (
    AppContext,
    BACKUP_SPLIT_SIZE,
    DatabaseType,
    HTTP_TIMEOUT,
    IP_LOOKUP_URL,
)
from .envfile import EnvFile
from .errors import BackupError, CommandError, attempt
from .telegram import TelegramClient, backup_caption, error_message
from . import console, system

logger = logging.getLogger(__name__)

UNKNOWN_IP = "Unknown IP"
# Excluded from the data directory mirror
MIRROR_EXCLUDES = ("xray-core", "mysql", "backup")
SYSTEM_SCHEMAS = ("mysql", "performance_schema", "information_schema", "sys")


@dataclass
class PartUpload:
    """Outcome of uploading one archive part."""
    filename: str
    ok: bool
    error: Optional[str] = None


@dataclass
class BackupResult:
    """Everything one backup run produced."""
    errors: List[str] = field(default_factory=list)
    archive: Optional[Path] = None
    database: Optional[DatabaseType] = None
    uploads: List[PartUpload] = field(default_factory=list)
    notified: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


def _part_suffix(index: int) -> str:
    """``aa``, ``ab``, ... ``zz`` like split(1)."""
    if index >= 26 * 26:
        raise ValueError("Too many parts")
    return chr(ord("a") + index // 26) + chr(ord("a") + index % 26)


def split_file(path: Path, dest_dir: Path, chunk_size: int = BACKUP_SPLIT_SIZE) -> List[Path]:
    """
    Split ``path`` into ``part_aa``, ``part_ab``, ... of at most
    ``chunk_size`` bytes. A file that already fits becomes a single part.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    if path.stat().st_size <= chunk_size:
        part = dest_dir / "part_aa"
        shutil.copyfile(path, part)
        return [part]

    parts = []
    with open(path, "rb") as source:
        while True:
            chunk = source.read(chunk_size)
            if not chunk:
                break
            part = dest_dir / f"part_{_part_suffix(len(parts))}"
            part.write_bytes(chunk)
            parts.append(part)
    return parts


def sqlite_path_from_url(url: str) -> Path:
    """Filesystem path of a ``sqlite:///`` URL, always absolute."""
    path = url.strip().strip('"').split(":///", 1)[-1]
    if not path.startswith("/"):
        path = "/" + path
    return Path(path)


def detect_database(compose_file: Path, values: Dict[str, str]) -> Tuple[Optional[DatabaseType], Optional[Path]]:
    """
    Find the active backend from the compose images, falling back to a
    SQLite connection string in the environment.
    """
    if compose_file.exists():
        try:
            compose = yaml.safe_load(compose_file.read_text()) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Could not parse {compose_file}: {e}")
            compose = {}
        images = [
            str(service.get("image", ""))
            for service in (compose.get("services") or {}).values()
            if isinstance(service, dict)
        ]
        for database in (DatabaseType.MARIADB, DatabaseType.MYSQL):
            if any(image.split(":")[0] == database.value for image in images):
                return database, None

    url = values.get("SQLALCHEMY_DATABASE_URL", "")
    if "sqlite" in url:
        return DatabaseType.SQLITE, sqlite_path_from_url(url)
    return None, None


class BackupManager:
    """
    Creates a backup archive and ships it to Telegram.

    Every step after the environment has been loaded is attempted even when
    an earlier one failed; failures are collected and reported together
    instead of uploading a possibly incomplete archive.
    """

    def __init__(
        self,
        ctx: AppContext,
        compose: Optional[ComposeManager] = None,
        session: Optional[requests.Session] = None,
        environ: Optional[MutableMapping[str, str]] = None
    ):
        self.ctx = ctx
        self.compose = compose or ComposeManager(ctx)
        self.session = session or requests.Session()
        self.environ = os.environ if environ is None else environ

    def server_ip(self) -> str:
        def lookup() -> str:
            response = self.session.get(IP_LOOKUP_URL, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
            return response.text.strip()

        outcome = attempt(lookup, default=UNKNOWN_IP)
        return outcome.value or UNKNOWN_IP

    @staticmethod
    def _now() -> str:
        return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")

    def _open_log(self) -> logging.Handler:
        log_file = self.ctx.backup_log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, "w") as f:
            f.write(f"Backup Log - {datetime.now().ctime()}\n")
        handler = logging.FileHandler(log_file, mode="a")
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        handler.setLevel(logging.INFO)
        package_logger = logging.getLogger(__package__)
        self._saved_logger_state = (package_logger.level, package_logger.propagate)
        # the run log captures INFO without echoing it to the terminal
        package_logger.setLevel(logging.INFO)
        package_logger.propagate = False
        package_logger.addHandler(handler)
        return handler

    def _close_log(self, handler: logging.Handler):
        package_logger = logging.getLogger(__package__)
        package_logger.removeHandler(handler)
        package_logger.level, package_logger.propagate = self._saved_logger_state
        handler.close()

    def _record(self, result: BackupResult, message: str, detail: str = ""):
        result.errors.append(message)
        logger.error(f"{message} {detail}".strip())

    def _dump_database(self, result: BackupResult, staging: Path, values: Dict[str, str]):
        database, sqlite_file = detect_database(self.ctx.compose_file, values)
        result.database = database
        if database is None:
            logger.warning("No database detected, archiving files only")
            return
        logger.info(f"Database detected: {database.value}")

        if database == DatabaseType.SQLITE:
            if not sqlite_file.is_file():
                self._record(result, f"SQLite database file not found at {sqlite_file}.")
                return
            try:
                shutil.copy2(sqlite_file, staging / "db_backup.sqlite")
            except OSError as e:
                self._record(result, "Failed to copy SQLite database.", str(e))
            return

        service = database.value
        container = attempt(self.compose.container_id, service, default=service).value or service
        password = values.get("MYSQL_ROOT_PASSWORD", "")
        if database == DatabaseType.MARIADB:
            label = "MariaDB"
            cmd = ["docker", "exec", container, "mariadb-dump", "-u", "root", f"-p{password}",
                   "--all-databases"]
            cmd += [f"--ignore-database={schema}" for schema in SYSTEM_SCHEMAS]
        else:
            label = "MySQL"
            cmd = ["docker", "exec", container, "mysqldump", "-u", "root", f"-p{password}",
                   values.get("MYSQL_DATABASE") or "marzban"]
        cmd += ["--events", "--triggers"]

        try:
            with open(staging / "db_backup.sql", "w") as dump:
                system.run(cmd, stdout=dump)
        except (CommandError, OSError) as e:
            self._record(result, f"{label} dump failed.", getattr(e, "stderr", "") or str(e))

    def _stage_files(self, staging: Path):
        for source in (self.ctx.env_file, self.ctx.compose_file):
            try:
                shutil.copy2(source, staging / source.name)
            except OSError as e:
                logger.warning(f"Could not copy {source}: {e}")

        if not self.ctx.data_dir.is_dir():
            logger.warning(f"Data directory {self.ctx.data_dir} not found")
            return
        try:
            shutil.copytree(
                self.ctx.data_dir,
                staging / f"{self.ctx.app_name}_data",
                ignore=shutil.ignore_patterns(*MIRROR_EXCLUDES),
                symlinks=True,
            )
        except (OSError, shutil.Error) as e:
            logger.warning(f"Data directory copy incomplete: {e}")

    def _write_archive(self, result: BackupResult, staging: Path):
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        archive = self.ctx.backup_dir / f"backup_{timestamp}.tar.gz"
        try:
            with tarfile.open(archive, "w:gz") as tar:
                tar.add(staging, arcname=".")
        except (OSError, tarfile.TarError) as e:
            self._record(result, "Failed to create backup archive.", str(e))
            return
        result.archive = archive
        logger.info(f"Backup archive written: {archive}")

    def create_archive(self) -> BackupResult:
        """Dump, stage and archive; the environment file must exist."""
        result = BackupResult()
        env = EnvFile(self.ctx.env_file)
        if not env.exists():
            self._record(result, "Environment file (.env) not found.")
            return result

        env.load_into(self.environ)
        values = dict(self.environ)

        shutil.rmtree(self.ctx.backup_dir, ignore_errors=True)
        self.ctx.backup_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"{self.ctx.app_name}_backup"))
        try:
            self._dump_database(result, staging, values)
            self._stage_files(staging)
            self._write_archive(result, staging)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return result

    def notify_errors(self, result: BackupResult) -> bool:
        """Send the error list and the log file; False when nothing was sent."""
        client = TelegramClient.from_env(self.environ, session=self.session)
        if client is None:
            console.warning("Telegram credentials are not configured, error report not sent.")
            return False

        error_time = self._now()
        message = error_message(self.server_ip(), result.errors, error_time)
        sent = attempt(client.send_message, message)
        if sent.ok:
            console.success("Backup error notification sent to Telegram.")
        else:
            console.error(f"Failed to send error notification to Telegram: {sent.error}")

        log_file = self.ctx.backup_log_file
        if not log_file.is_file():
            console.error(f"Log file not found: {log_file}")
            return sent.ok
        log_sent = attempt(
            client.send_document, log_file, "backup_error.log",
            f"📜 Backup Error Log - {error_time}", parse_mode=None
        )
        if log_sent.ok:
            console.success("Backup error log sent to Telegram.")
        else:
            console.error(f"Failed to send backup error log to Telegram: {log_sent.error}")
        return sent.ok or log_sent.ok

    def upload(self, result: BackupResult):
        """Upload the archive, one message per part."""
        if self.environ.get("BACKUP_SERVICE_ENABLED") != "true":
            console.warning("Backup service is not enabled. Skipping Telegram upload.")
            return
        client = TelegramClient.from_env(self.environ, session=self.session)
        if client is None:
            console.warning("Telegram credentials are not configured. Skipping Telegram upload.")
            return

        server_ip = self.server_ip()
        split_dir = Path(tempfile.mkdtemp(prefix=f"{self.ctx.app_name}_backup_split"))
        try:
            if result.archive.stat().st_size > BACKUP_SPLIT_SIZE:
                console.warning("Backup is larger than 49MB. Splitting the archive...")
            parts = split_file(result.archive, split_dir, chunk_size=BACKUP_SPLIT_SIZE)
            backup_time = self._now()
            for part in parts:
                filename = f"backup_{part.name}.tar.gz"
                caption = backup_caption(server_ip, filename, backup_time)
                outcome = attempt(client.send_document, part, filename, caption)
                result.uploads.append(PartUpload(
                    filename=filename,
                    ok=outcome.ok,
                    error=str(outcome.error) if outcome.error else None,
                ))
                if outcome.ok:
                    console.success(f"Backup part {filename} successfully sent to Telegram.")
                else:
                    console.error(f"Failed to send backup part {filename} to Telegram.")
        finally:
            shutil.rmtree(split_dir, ignore_errors=True)

    def run(self) -> BackupResult:
        handler = self._open_log()
        try:
            result = self.create_archive()
        finally:
            self._close_log(handler)

        if not self.ctx.env_file.exists():
            self.notify_errors(result)
            raise BackupError("Environment file (.env) not found.")

        if result.errors:
            result.notified = self.notify_errors(result)
            return result

        console.success(f"Backup created: {result.archive}")
        self.upload(result)
        return result
