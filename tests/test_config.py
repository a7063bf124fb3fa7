"""Tests for configuration and error helpers."""

from pathlib import Path

import pytest

from marzban_manager.config import (
    AppContext,
    DatabaseType,
    generate_secret,
    get_database_services,
)
from marzban_manager.errors import CommandError, attempt


class TestAppContext:
    def test_defaults(self):
        ctx = AppContext.from_env({})
        assert ctx.app_dir == Path("/opt/marzban")
        assert ctx.data_dir == Path("/var/lib/marzban")
        assert ctx.env_file == Path("/opt/marzban/.env")
        assert ctx.compose_file == Path("/opt/marzban/docker-compose.yml")
        assert ctx.script_path == Path("/usr/local/bin/marzban")
        assert ctx.backup_log_file == Path("/var/log/marzban_backup_error.log")

    def test_overrides(self):
        ctx = AppContext.from_env({"APP_NAME": "panel", "INSTALL_DIR": "/srv", "DATA_ROOT": "/data"})
        assert ctx.app_dir == Path("/srv/panel")
        assert ctx.xray_executable == Path("/data/panel/xray-core/xray")
        assert ctx.certs_dir == Path("/data/panel/certs")
        assert ctx.cron_marker == "# panel-backup-service"

    def test_is_installed(self, ctx):
        assert not ctx.is_installed()
        ctx.app_dir.mkdir(parents=True)
        assert ctx.is_installed()


class TestDatabaseServices:
    def test_sqlite_has_no_generated_services(self, ctx):
        with pytest.raises(ValueError):
            get_database_services(ctx, DatabaseType.SQLITE, "latest")

    @pytest.mark.parametrize("database", [DatabaseType.MYSQL, DatabaseType.MARIADB])
    def test_database_bound_to_loopback(self, ctx, database):
        services = get_database_services(ctx, database, "v0.5.2")
        db = services[database.value]
        assert "--bind-address=127.0.0.1" in db.command
        assert db.healthcheck is not None
        assert services["marzban"].full_image == "naymintun800/marzban:v0.5.2"
        assert services["marzban"].depends_on == [database.value]


def test_generate_secret():
    secret = generate_secret(20)
    assert len(secret) == 20
    assert secret.isalnum()
    assert generate_secret() != generate_secret()


class TestAttempt:
    def test_success(self):
        outcome = attempt(lambda x: x * 2, 21)
        assert outcome.ok
        assert outcome.value == 42

    def test_failure_recorded(self):
        def fail():
            raise CommandError("boom", returncode=3)

        outcome = attempt(fail, default="fallback")
        assert not outcome.ok
        assert outcome.value == "fallback"
        assert outcome.error.exit_code == 3
