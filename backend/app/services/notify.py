"""
Operator alerts for the scrape scheduler: Telegram, throttled.

Env:
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

Same (level, title) is sent at most once per 15 minutes. Alerts are best
effort: delivery problems are logged and never raised to the caller.
"""
from __future__ import annotations

import html
import logging
import time
from typing import Any

import httpx

from app.settings import get_settings

logger = logging.getLogger(__name__)

THROTTLE_SEC = 15 * 60
TELEGRAM_URL = "https://api.telegram.org/bot{token}/sendMessage"

_LEVEL_ICONS = {"error": "🔴", "warn": "🟡"}
_last_sent: dict[str, float] = {}


def _throttled(key: str) -> bool:
    now = time.monotonic()
    last = _last_sent.get(key)
    if last is not None and now - last < THROTTLE_SEC:
        return True
    _last_sent[key] = now
    return False


async def _send_telegram(text: str) -> bool:
    settings = get_settings()
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        logger.debug("[notify] Telegram not configured, skipping")
        return False
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            r = await client.post(
                TELEGRAM_URL.format(token=settings.telegram_bot_token),
                json={
                    "chat_id": settings.telegram_chat_id,
                    "text": text[:4000],
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
    except httpx.HTTPError as e:
        logger.warning("[notify] Telegram send failed: %s", e)
        return False
    if r.status_code != 200:
        logger.warning("[notify] Telegram API %s: %s", r.status_code, r.text[:200])
        return False
    return True


async def _alert(level: str, title: str, payload: Any = None) -> bool:
    if _throttled(f"{level}:{title}"):
        logger.debug("[notify] throttled %s: %s", level, title)
        return False
    body = f"{_LEVEL_ICONS[level]} <b>{html.escape(title)}</b>"
    if payload:
        body += f"\n<pre>{html.escape(str(payload)[:500])}</pre>"
    return await _send_telegram(body)


async def notify_error(title: str, payload: Any = None) -> bool:
    """Error-level alert, e.g. a platform sweep that failed outright."""
    return await _alert("error", title, payload)


async def notify_warn(title: str, payload: Any = None) -> bool:
    """Warning-level alert, e.g. jobs reaped as stuck."""
    return await _alert("warn", title, payload)
