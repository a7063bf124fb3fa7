"""Tests for the Telegram client and message formatting."""

import pytest
import requests

from conftest import FakeResponse
from marzban_manager.telegram import (
    TRUNCATION_MARKER,
    TelegramClient,
    backup_caption,
    error_message,
    escape_markdown,
)


class TestEscaping:
    def test_reserved_characters_escaped(self):
        assert escape_markdown("db_backup-1.sql (v2)!") == r"db\_backup\-1\.sql \(v2\)\!"

    def test_plain_text_unchanged(self):
        assert escape_markdown("Unknown IP") == "Unknown IP"

    def test_caption_escapes_values(self):
        caption = backup_caption("1.2.3.4", "backup_part_aa.tar.gz", "2024-01-01 00:00:00 UTC")
        assert r"`1\.2\.3\.4`" in caption
        assert r"`backup\_part\_aa\.tar\.gz`" in caption
        assert r"`2024\-01\-01 00:00:00 UTC`" in caption


class TestErrorMessage:
    def test_short_message_not_truncated(self):
        message = error_message("1.2.3.4", ["MySQL dump failed."], "now")
        assert r"MySQL dump failed\." in message
        assert TRUNCATION_MARKER not in message

    def test_long_message_truncated_to_limit(self):
        errors = [f"Step {i} failed with a long explanation." for i in range(100)]
        message = error_message("1.2.3.4", errors, "now")
        assert len(message) <= 1000
        assert TRUNCATION_MARKER in message
        assert message.endswith("*Time*: `now`")

    def test_truncation_never_leaves_dangling_escape(self):
        errors = ["." * 2000]
        message = error_message("ip", errors, "t", max_length=200)
        body = message.split("*Errors*:\n`", 1)[1].split(TRUNCATION_MARKER, 1)[0]
        assert len(body) % 2 == 0
        assert set(body) == {"\\", "."}


class TestTelegramClient:
    def test_from_env_requires_both_values(self):
        assert TelegramClient.from_env({"BACKUP_TELEGRAM_BOT_KEY": "k"}) is None
        client = TelegramClient.from_env({"BACKUP_TELEGRAM_BOT_KEY": "k", "BACKUP_TELEGRAM_CHAT_ID": "1"})
        assert client.chat_id == "1"

    def test_send_message(self, session):
        session.route("https://api.telegram.org/botKEY/sendMessage", FakeResponse())
        TelegramClient("KEY", "42", session=session).send_message("hello")
        request = session.requests[0]
        assert request["data"] == {"chat_id": "42", "text": "hello", "parse_mode": "MarkdownV2"}

    def test_send_document(self, session, tmp_path):
        part = tmp_path / "part_aa"
        part.write_bytes(b"archive")
        session.route("https://api.telegram.org/botKEY/sendDocument", FakeResponse())

        TelegramClient("KEY", "42", session=session).send_document(
            part, "backup_part_aa.tar.gz", "caption"
        )

        request = session.requests[0]
        assert request["uploads"]["document"] == ("backup_part_aa.tar.gz", b"archive")
        assert request["data"]["caption"] == "caption"

    def test_http_error_raises(self, session):
        session.route("https://api.telegram.org/", FakeResponse(status_code=400))
        with pytest.raises(requests.HTTPError):
            TelegramClient("KEY", "42", session=session).send_message("hello")
