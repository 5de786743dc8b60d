"""Webhook fan-out for categorized emails — Slack and a generic JSON sink."""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from mailpipe.processing.types import Category, EmailRecord

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10.0
_DEFAULT_FRONTEND_URL = "http://localhost:3000"

#: Only these categories trigger a notification.
NOTIFY_CATEGORIES: frozenset[Category] = frozenset({Category.INTERESTED})

SLACK = "slack"
WEBHOOK = "webhook"


def should_notify(record: EmailRecord) -> bool:
    return record.category in NOTIFY_CATEGORIES


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class NotificationDispatcher:
    """Fire-and-forget delivery of one record to every configured sink.

    Sinks are independent: an unset URL skips that sink silently, and a
    failed POST is logged without affecting the other sink or the caller.
    There is no retry and no queue.

    Usage::

        dispatcher = NotificationDispatcher(slack_webhook_url=..., webhook_url=...)
        delivered = await dispatcher.dispatch(record)   # {"slack": True, "webhook": False}
    """

    def __init__(
        self,
        slack_webhook_url: str | None = None,
        webhook_url: str | None = None,
        frontend_url: str = _DEFAULT_FRONTEND_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._slack_url = slack_webhook_url or None
        self._webhook_url = webhook_url or None
        self._frontend_url = frontend_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=_TIMEOUT_SECONDS)

    @property
    def configured(self) -> bool:
        return bool(self._slack_url or self._webhook_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def dispatch(self, record: EmailRecord) -> dict[str, bool]:
        """POST the record to each sink; returns which sinks accepted it."""
        return {
            SLACK: await self._post(SLACK, self._slack_url, self.slack_payload(record), record),
            WEBHOOK: await self._post(WEBHOOK, self._webhook_url, self.webhook_payload(record), record),
        }

    # ── Payloads ───────────────────────────────────────────────────────────────

    def slack_payload(self, record: EmailRecord) -> dict[str, Any]:
        """Slack block-kit message: header, key fields, preview, and a link."""
        return {
            "text": "🎯 New Interested Email Detected!",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "🎯 New Interested Email"},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*From:* {record.sender}"},
                        {"type": "mrkdwn", "text": f"*Subject:* {record.subject}"},
                        {"type": "mrkdwn", "text": f"*Account:* {record.account}"},
                        {"type": "mrkdwn", "text": f"*Date:* {record.date:%Y-%m-%d %H:%M}"},
                    ],
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*Preview:* {_preview(record.text, 200)}"},
                },
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "View Email"},
                            "url": f"{self._frontend_url}/emails/{record.id}",
                            "style": "primary",
                        }
                    ],
                },
            ],
        }

    def webhook_payload(self, record: EmailRecord) -> dict[str, Any]:
        """Flat event envelope for generic webhook receivers."""
        return {
            "event": "interested_email",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "email": {
                "id": record.id,
                "from": record.sender,
                "subject": record.subject,
                "account": record.account,
                "date": record.date.isoformat(),
                "category": record.category.value if record.category else None,
                "preview": record.text[:500],
            },
        }

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _post(
        self,
        sink: str,
        url: str | None,
        payload: dict[str, Any],
        record: EmailRecord,
    ) -> bool:
        if not url:
            logger.debug("%s sink not configured, skipping", sink)
            return False
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to send %s notification for email %s: %s", sink, record.id, exc)
            return False
        logger.info("%s notification sent for email %s", sink, record.id)
        return True
