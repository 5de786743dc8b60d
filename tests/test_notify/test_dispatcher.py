"""Tests for NotificationDispatcher — HTTP is served by httpx.MockTransport."""

import json
from datetime import datetime, timezone

import httpx

from mailpipe.notify.dispatcher import NotificationDispatcher, should_notify
from mailpipe.processing.types import Category, EmailRecord

SLACK_URL = "https://hooks.slack.test/services/T/B/X"
WEBHOOK_URL = "https://hooks.example.test/email"


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_record(**kwargs: object) -> EmailRecord:
    now = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    defaults: dict[str, object] = dict(
        id="rec-1",
        message_id="",
        subject="Let's work together",
        sender="lead@example.com",
        recipient="me@example.com",
        date=now,
        text="We'd like to buy 50 seats. " * 30,
        folder="INBOX",
        account="Work",
        category=Category.INTERESTED,
        created_at=now,
        updated_at=now,
    )
    return EmailRecord(**{**defaults, **kwargs})  # type: ignore[arg-type]


def make_dispatcher(
    status_by_url: dict[str, int],
    requests: list[httpx.Request],
    slack: str | None = SLACK_URL,
    webhook: str | None = WEBHOOK_URL,
) -> NotificationDispatcher:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_by_url.get(str(request.url), 200))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationDispatcher(
        slack_webhook_url=slack,
        webhook_url=webhook,
        frontend_url="https://app.example.test/",
        client=client,
    )


# ── should_notify ──────────────────────────────────────────────────────────────


class TestShouldNotify:
    def test_only_interested(self) -> None:
        assert should_notify(make_record(category=Category.INTERESTED)) is True
        for category in (Category.MEETING_BOOKED, Category.NOT_INTERESTED, Category.SPAM, Category.OUT_OF_OFFICE, None):
            assert should_notify(make_record(category=category)) is False


# ── dispatch ───────────────────────────────────────────────────────────────────


class TestDispatch:
    async def test_posts_to_both_sinks(self) -> None:
        requests: list[httpx.Request] = []
        dispatcher = make_dispatcher({}, requests)

        result = await dispatcher.dispatch(make_record())

        assert result == {"slack": True, "webhook": True}
        assert [str(r.url) for r in requests] == [SLACK_URL, WEBHOOK_URL]
        await dispatcher.aclose()

    async def test_slack_failure_does_not_block_webhook(self) -> None:
        requests: list[httpx.Request] = []
        dispatcher = make_dispatcher({SLACK_URL: 500}, requests)

        result = await dispatcher.dispatch(make_record())

        assert result == {"slack": False, "webhook": True}
        assert len(requests) == 2
        await dispatcher.aclose()

    async def test_unset_url_skipped(self) -> None:
        requests: list[httpx.Request] = []
        dispatcher = make_dispatcher({}, requests, slack=None)

        result = await dispatcher.dispatch(make_record())

        assert result == {"slack": False, "webhook": True}
        assert [str(r.url) for r in requests] == [WEBHOOK_URL]
        await dispatcher.aclose()

    async def test_transport_error_is_contained(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dispatcher = NotificationDispatcher(
            slack_webhook_url=SLACK_URL,
            webhook_url=WEBHOOK_URL,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        assert await dispatcher.dispatch(make_record()) == {"slack": False, "webhook": False}
        await dispatcher.aclose()

    def test_configured(self) -> None:
        assert NotificationDispatcher(webhook_url=WEBHOOK_URL).configured is True
        assert NotificationDispatcher().configured is False


# ── Payloads ───────────────────────────────────────────────────────────────────


class TestPayloads:
    async def test_webhook_payload_sent_as_json(self) -> None:
        requests: list[httpx.Request] = []
        dispatcher = make_dispatcher({}, requests, slack=None)

        await dispatcher.dispatch(make_record())

        body = json.loads(requests[0].content)
        assert body["event"] == "interested_email"
        assert body["email"]["id"] == "rec-1"
        assert body["email"]["from"] == "lead@example.com"
        assert body["email"]["category"] == "Interested"
        assert len(body["email"]["preview"]) == 500
        assert "timestamp" in body
        await dispatcher.aclose()

    def test_slack_payload(self) -> None:
        dispatcher = NotificationDispatcher(frontend_url="https://app.example.test/")
        payload = dispatcher.slack_payload(make_record())
        blocks = payload["blocks"]
        assert blocks[0]["type"] == "header"
        fields = " ".join(f["text"] for f in blocks[1]["fields"])
        assert "lead@example.com" in fields
        assert "Let's work together" in fields
        assert "Work" in fields
        preview = blocks[2]["text"]["text"]
        assert preview.endswith("...")
        button = blocks[3]["elements"][0]
        assert button["url"] == "https://app.example.test/emails/rec-1"

    def test_slack_preview_not_truncated_when_short(self) -> None:
        dispatcher = NotificationDispatcher()
        payload = dispatcher.slack_payload(make_record(text="Short."))
        assert payload["blocks"][2]["text"]["text"] == "*Preview:* Short."
