from __future__ import annotations

import logging

import httpx

from vaccibot.config import Settings

logger = logging.getLogger(__name__)


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")


def broadcast_telegram(settings: Settings, text: str) -> int:
    """Send ``text`` to every configured chat. Returns the number of failed sends."""
    if not settings.telegram_enabled:
        return 0

    failed = 0
    for chat_id in settings.telegram_chat_ids:
        try:
            send_telegram_message(
                bot_token=settings.telegram_bot_token or "",
                chat_id=chat_id,
                text=text,
            )
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            failed += 1
    return failed
