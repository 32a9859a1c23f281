#!/usr/bin/env python3
"""
Telegram notifications for Instaqueue.
Sends a message when a scheduled post is published or fails.

Setup:
1. Message @BotFather on Telegram and create a new bot
2. Copy the bot token to TELEGRAM_BOT_TOKEN env var
3. Message @userinfobot to get your chat ID
4. Copy your chat ID to TELEGRAM_CHAT_ID env var
"""

import html
import logging
import os
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Send notifications via Telegram Bot API."""

    API_BASE = "https://api.telegram.org/bot"

    def __init__(self, bot_token: Optional[str] = None, chat_id: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.bot_token = bot_token if bot_token is not None else os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.chat_id = chat_id if chat_id is not None else os.getenv("TELEGRAM_CHAT_ID", "")
        self.enabled = bool(self.bot_token and self.chat_id)
        self.session = session or requests

    def send(self, message: str, parse_mode: str = "HTML") -> bool:
        """
        Send a message to the configured chat.
        Returns True on success, False on failure or if disabled.
        """
        if not self.enabled:
            return False

        try:
            resp = self.session.post(
                f"{self.API_BASE}{self.bot_token}/sendMessage",
                json={
                    "chat_id": self.chat_id,
                    "text": message,
                    "parse_mode": parse_mode,
                    "disable_web_page_preview": True,
                },
                timeout=10,
            )
            return resp.ok
        except Exception as e:
            logger.warning("Telegram notification failed: %s", e)
            return False

    def job_published(self, job) -> bool:
        msg = (
            f"✅ <b>{html.escape(job.account)}</b>\n"
            f"{job.media_type.value.title()} published.\n"
            f"📋 Media ID: <code>{html.escape(job.external_media_id or '')}</code>\n"
            f"Job: <code>{job.id}</code>"
        )
        return self.send(msg)

    def job_failed(self, job) -> bool:
        error = job.last_error or "unknown error"
        if len(error) > 300:
            error = error[:300] + "..."
        msg = (
            f"❌ <b>{html.escape(job.account)}</b>\n\n"
            f"⚠️ Publish failed (attempt {job.attempts}):\n"
            f"<code>{html.escape(error)}</code>\n"
            f"Job: <code>{job.id}</code>"
        )
        return self.send(msg)

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "bot_token_set": bool(self.bot_token),
            "chat_id_set": bool(self.chat_id),
        }
