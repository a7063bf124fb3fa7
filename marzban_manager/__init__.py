"""
Marzban Manager
===============

Deployment and lifecycle manager for a self-hosted Marzban proxy panel.

Features:
- Docker Compose generation for SQLite, MySQL and MariaDB backends
- Environment file management
- Xray-core download and key generation
- TLS certificates through acme.sh (standard or Cloudflare wildcard)
- HAProxy SNI routing and UFW rules
- Backups to a Telegram bot, scheduled with cron

License: MIT
"""

__version__ = "1.0.0"

from .config import AppContext, DatabaseType, ServiceConfig
from .core import Installer
from .compose import ComposeManager
from .certs import SSLManager, DomainSet
from .backup import BackupManager
from .scheduler import BackupScheduler

__all__ = [
    "AppContext",
    "DatabaseType",
    "ServiceConfig",
    "Installer",
    "ComposeManager",
    "SSLManager",
    "DomainSet",
    "BackupManager",
    "BackupScheduler",
]
