"""Outbound notify capability: notify(recipient, content) -> sent | failed.

Delivery is delegated to a webhook relay (NOTIFY_WEBHOOK_URL). Without a
relay configured, messages are logged and reported as sent.
"""

import logging
from typing import Literal

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

NotifyResult = Literal["sent", "failed"]


def notify(recipient: str, content: str, *, subject: str | None = None) -> NotifyResult:
    """Send one message; never raises."""
    if not recipient:
        logger.warning("Notification skipped: no recipient")
        return "failed"

    if not settings.NOTIFY_WEBHOOK_URL:
        logger.info("Notification (dry run) to %s: %s", recipient, subject or content[:80])
        return "sent"

    try:
        response = httpx.post(
            settings.NOTIFY_WEBHOOK_URL,
            json={"recipient": recipient, "subject": subject, "content": content},
            timeout=settings.NOTIFY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError:
        logger.exception("Notification request failed")
        return "failed"

    if response.status_code >= 400:
        logger.warning("Notification relay returned %s", response.status_code)
        return "failed"
    return "sent"


def meeting_confirmation_content(
    *,
    attendee_name: str | None,
    start_local: str,
    timezone_name: str,
    meeting_link: str | None,
) -> str:
    """Plain-text booking confirmation."""
    lines = [
        f"Hi {attendee_name or 'there'},",
        "",
        f"Your activation call is booked for {start_local} ({timezone_name}).",
    ]
    if meeting_link:
        lines.append(f"Join: {meeting_link}")
    return "\n".join(lines)
