# File: notifications/telegram.py

import os

import requests

# ────────────────────────────────────────────────────────────────────────────────
# Telegram Notification Utility Module
#
# Sends messages via Telegram Bot API. Bot token and chat ID come from the
# TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID environment variables.
#
# Reference: https://core.telegram.org/bots/api#sendmessage
# ────────────────────────────────────────────────────────────────────────────────

TELEGRAM_API_BASE = "https://api.telegram.org"


def send_telegram_message(text: str) -> None:
    """
    Send a text message to the configured Telegram chat.
    Raises RuntimeError if the bot is not configured or the HTTP call fails.
    """
    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if not bot_token or not chat_id:
        raise RuntimeError("TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID is not set")

    url = f"{TELEGRAM_API_BASE}/bot{bot_token}/sendMessage"
    payload = {"chat_id": chat_id, "text": text}

    response = requests.get(url, params=payload, timeout=10)
    if not response.ok:
        raise RuntimeError(
            f"Failed to send Telegram message: {response.status_code} {response.text}"
        )


def format_summary(summary) -> str:
    """One line per stage report of a LoadSummary, under a batch header."""
    lines = [f"📦 Batch {summary.batch_id}: {summary.rejected} rejected rows"]
    lines += [f"• {line}" for line in summary.lines()]
    return "\n".join(lines)
