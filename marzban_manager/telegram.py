"""
Telegram Bot API client used for backup delivery.

Handles:
- Sending text messages and documents
- MarkdownV2 escaping of dynamic values
- Building captions and size-limited error notifications
"""

import re
from pathlib import Path
from typing import Optional, List, Mapping
import logging

import requests

from .config import HTTP_TIMEOUT, MAX_MESSAGE_LENGTH, TELEGRAM_API_URL

logger = logging.getLogger(__name__)

MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
TRUNCATION_MARKER = "...\n`[Message truncated]`"


def escape_markdown(text: str) -> str:
    """Escape every MarkdownV2 reserved character in ``text``."""
    return MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def backup_caption(server_ip: str, filename: str, backup_time: str) -> str:
    return (
        "📦 *Backup Information*\n"
        f"🌐 *Server IP*: `{escape_markdown(server_ip)}`\n"
        f"📁 *Backup File*: `{escape_markdown(filename)}`\n"
        f"⏰ *Backup Time*: `{escape_markdown(backup_time)}`"
    )


def _error_message(server_ip: str, errors_text: str, error_time: str, truncated: bool) -> str:
    body = escape_markdown(errors_text)
    if truncated:
        body += TRUNCATION_MARKER
    return (
        "⚠️ *Backup Error Notification*\n"
        f"🌐 *Server IP*: `{escape_markdown(server_ip)}`\n"
        f"❌ *Errors*:\n`{body}`\n"
        f"⏰ *Time*: `{escape_markdown(error_time)}`"
    )


def error_message(
    server_ip: str,
    errors: List[str],
    error_time: str,
    max_length: int = MAX_MESSAGE_LENGTH
) -> str:
    """
    Build the error notification, shortening the error list until the
    whole message fits in ``max_length`` characters.

    The raw text is cut before escaping so an escape sequence is never split.
    """
    errors_text = "\n".join(errors)
    message = _error_message(server_ip, errors_text, error_time, truncated=False)
    while len(message) > max_length and errors_text:
        overflow = len(message) - max_length
        # escaping at most doubles a character
        errors_text = errors_text[:max(0, len(errors_text) - max(overflow // 2, 1))]
        message = _error_message(server_ip, errors_text, error_time, truncated=True)
    return message


class TelegramClient:
    """Minimal Bot API client; failed requests raise ``requests.RequestException``."""

    def __init__(self, bot_key: str, chat_id: str, session: Optional[requests.Session] = None):
        self.bot_key = bot_key
        self.chat_id = chat_id
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls, values: Mapping[str, str], session: Optional[requests.Session] = None):
        """Client for the backup bot configured in ``values``, or None."""
        bot_key = values.get("BACKUP_TELEGRAM_BOT_KEY", "")
        chat_id = values.get("BACKUP_TELEGRAM_CHAT_ID", "")
        if not bot_key or not chat_id:
            return None
        return cls(bot_key, chat_id, session=session)

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.bot_key}/{method}"

    def send_message(self, text: str, parse_mode: Optional[str] = "MarkdownV2") -> requests.Response:
        data = {"chat_id": self.chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        response = self.session.post(self._url("sendMessage"), data=data, timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        return response

    def send_document(
        self,
        path: Path,
        filename: Optional[str] = None,
        caption: str = "",
        parse_mode: Optional[str] = "MarkdownV2"
    ) -> requests.Response:
        data = {"chat_id": self.chat_id, "caption": caption}
        if parse_mode:
            data["parse_mode"] = parse_mode
        filename = filename or Path(path).name
        logger.debug(f"Uploading {path} as {filename}")
        with open(path, "rb") as f:
            response = self.session.post(
                self._url("sendDocument"),
                data=data,
                files={"document": (filename, f)},
                timeout=300,
            )
        response.raise_for_status()
        return response
