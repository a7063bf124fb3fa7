"""
Configuration management for the Marzban manager.

Handles:
- Application context (names and filesystem layout)
- Remote endpoints and fixed constants
- Database backends and their compose service definitions
- Secrets generation
"""

import os
import secrets
import string
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Mapping, Union
from enum import Enum


DEFAULT_APP_NAME = "marzban"
DEFAULT_INSTALL_DIR = Path("/opt")
DEFAULT_DATA_ROOT = Path("/var/lib")

# Remote collaborators
IMAGE_REPOSITORY = "naymintun800/marzban"
FILES_URL_PREFIX = "https://raw.githubusercontent.com/naymintun800/Marzban/master"
RELEASES_API = "https://api.github.com/repos/naymintun800/Marzban/releases"
XRAY_RELEASES_API = "https://api.github.com/repos/XTLS/Xray-core/releases"
XRAY_DOWNLOAD_URL = "https://github.com/XTLS/Xray-core/releases/download"
DOCKER_INSTALL_URL = "https://get.docker.com"
ACME_INSTALL_URL = "https://get.acme.sh"
IP_LOOKUP_URL = "https://ifconfig.me"
TELEGRAM_API_URL = "https://api.telegram.org"

# Name of the application service inside the compose file
APP_SERVICE = "marzban"

LAST_XRAY_CORES = 10
HTTP_TIMEOUT = 30

# TLS termination ports used by the load balancer
PANEL_PORT = 10000
FALLBACK_PORT = 11000
HAPROXY_CONFIG = Path("/etc/haproxy/haproxy.cfg")

# Backup upload limits
BACKUP_SPLIT_SIZE = 49 * 1024 * 1024
MAX_MESSAGE_LENGTH = 1000

SCRIPT_DIR = Path("/usr/local/bin")


class DatabaseType(Enum):
    """Supported database backends."""
    SQLITE = "sqlite"
    MYSQL = "mysql"
    MARIADB = "mariadb"


@dataclass
class AppContext:
    """Names and paths of one managed installation."""
    app_name: str = DEFAULT_APP_NAME
    install_dir: Path = DEFAULT_INSTALL_DIR
    data_root: Path = DEFAULT_DATA_ROOT
    log_dir: Path = Path("/var/log")
    script_dir: Path = SCRIPT_DIR
    haproxy_config: Path = HAPROXY_CONFIG

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppContext":
        """Build the context from process environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            app_name=environ.get("APP_NAME") or DEFAULT_APP_NAME,
            install_dir=Path(environ.get("INSTALL_DIR") or DEFAULT_INSTALL_DIR),
            data_root=Path(environ.get("DATA_ROOT") or DEFAULT_DATA_ROOT),
        )

    @property
    def app_dir(self) -> Path:
        return self.install_dir / self.app_name

    @property
    def data_dir(self) -> Path:
        return self.data_root / self.app_name

    @property
    def compose_file(self) -> Path:
        return self.app_dir / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.app_dir / ".env"

    @property
    def alembic_file(self) -> Path:
        return self.app_dir / "alembic.ini"

    @property
    def xray_dir(self) -> Path:
        return self.data_dir / "xray-core"

    @property
    def xray_executable(self) -> Path:
        return self.xray_dir / "xray"

    @property
    def xray_config_file(self) -> Path:
        return self.data_dir / "xray_config.json"

    @property
    def certs_dir(self) -> Path:
        return self.data_dir / "certs"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backup"

    @property
    def sqlite_file(self) -> Path:
        return self.data_dir / "db.sqlite3"

    @property
    def backup_log_file(self) -> Path:
        return self.log_dir / f"{self.app_name}_backup_error.log"

    @property
    def script_path(self) -> Path:
        return self.script_dir / self.app_name

    @property
    def cron_marker(self) -> str:
        return f"# {self.app_name}-backup-service"

    def is_installed(self) -> bool:
        return self.app_dir.is_dir()


@dataclass
class ServiceConfig:
    """Configuration for a single compose service."""
    name: str
    image: str = ""
    tag: str = "latest"
    volumes: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    healthcheck: Optional[Dict[str, Any]] = None
    command: Optional[Union[str, List[str]]] = None
    env_file: str = ".env"
    network_mode: str = "host"
    restart_policy: str = "always"

    @property
    def full_image(self) -> str:
        return f"{self.image}:{self.tag}"


def _database_environment() -> Dict[str, str]:
    return {
        "MYSQL_ROOT_PASSWORD": "${MYSQL_ROOT_PASSWORD}",
        "MYSQL_ROOT_HOST": "%",
        "MYSQL_DATABASE": "${MYSQL_DATABASE}",
        "MYSQL_USER": "${MYSQL_USER}",
        "MYSQL_PASSWORD": "${MYSQL_PASSWORD}",
    }


def get_database_services(
    ctx: AppContext,
    database: DatabaseType,
    version: str
) -> Dict[str, ServiceConfig]:
    """Return the app and database services for a MySQL-family backend."""
    if database == DatabaseType.SQLITE:
        raise ValueError("SQLite installations use the upstream compose template")

    data = str(ctx.data_dir)
    services = {}

    if database == DatabaseType.MARIADB:
        services[APP_SERVICE] = ServiceConfig(
            name=APP_SERVICE,
            image=IMAGE_REPOSITORY,
            tag=version,
            volumes=[f"{data}:{data}", f"{data}/logs:/var/lib/marzban-node"],
            depends_on=["mariadb"],
        )
        services["mariadb"] = ServiceConfig(
            name="mariadb",
            image="mariadb",
            tag="lts",
            environment=_database_environment(),
            command=[
                "--bind-address=127.0.0.1",
                "--character_set_server=utf8mb4",
                "--collation_server=utf8mb4_unicode_ci",
                "--host-cache-size=0",
                "--innodb-open-files=1024",
                "--innodb-buffer-pool-size=256M",
                "--binlog_expire_logs_seconds=1209600",
                "--innodb-log-file-size=64M",
                "--innodb-log-files-in-group=2",
                "--innodb-doublewrite=0",
                "--general_log=0",
                "--slow_query_log=1",
                "--slow_query_log_file=/var/lib/mysql/slow.log",
                "--long_query_time=2",
            ],
            volumes=[f"{data}/mysql:/var/lib/mysql"],
            healthcheck={
                "test": ["CMD", "healthcheck.sh", "--connect", "--innodb_initialized"],
                "start_period": "10s",
                "start_interval": "3s",
                "interval": "10s",
                "timeout": "5s",
                "retries": 3,
            },
        )
    else:
        services[APP_SERVICE] = ServiceConfig(
            name=APP_SERVICE,
            image=IMAGE_REPOSITORY,
            tag=version,
            volumes=[f"{data}:{data}"],
            command=(
                'bash -c "mkdir -p /code/app/db/migrations/versions'
                " && alembic init -t async /code/app/db/migrations"
                ' && alembic upgrade head && python3 main.py"'
            ),
            depends_on=["mysql"],
        )
        services["mysql"] = ServiceConfig(
            name="mysql",
            image="mysql",
            tag="lts",
            environment=_database_environment(),
            command=[
                "--mysqlx=OFF",
                "--bind-address=127.0.0.1",
                "--character_set_server=utf8mb4",
                "--collation_server=utf8mb4_unicode_ci",
                "--log-bin=mysql-bin",
                "--binlog_expire_logs_seconds=1209600",
                "--host-cache-size=0",
                "--innodb-open-files=1024",
                "--innodb-buffer-pool-size=256M",
                "--innodb-log-file-size=64M",
                "--innodb-log-files-in-group=2",
                "--general_log=0",
                "--slow_query_log=1",
                "--slow_query_log_file=/var/lib/mysql/slow.log",
                "--long_query_time=2",
            ],
            volumes=[f"{data}/mysql:/var/lib/mysql"],
            healthcheck={
                "test": [
                    "CMD", "mysqladmin", "ping", "-h", "127.0.0.1",
                    "-u", "marzban", "--password=${MYSQL_PASSWORD}"
                ],
                "start_period": "5s",
                "interval": "5s",
                "timeout": "5s",
                "retries": 55,
            },
        )

    return services


def generate_secret(length: int = 20, include_special: bool = False) -> str:
    """Generate a cryptographically secure random secret."""
    alphabet = string.ascii_letters + string.digits
    if include_special:
        alphabet += "!@#$%^&*"
    return ''.join(secrets.choice(alphabet) for _ in range(length))
