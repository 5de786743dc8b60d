"""Tests for CLI commands — MailQueryEngine is mocked, CliRunner used throughout."""

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner, Result

from mailpipe.cli.query import MailQueryEngine
from mailpipe.processing.rag import EmailInsights
from mailpipe.processing.types import Category, EmailRecord, SentimentResult, SimilarEmail
from mailpipe.storage.search_index import SearchPage


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _make_record(email_id: str = "rec-1", category: Category | None = Category.INTERESTED) -> EmailRecord:
    now = datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc)
    return EmailRecord(
        id=email_id,
        message_id="<m@example.com>",
        subject="Budget review",
        sender="alice@example.com",
        recipient="me@example.com",
        date=now,
        text="Please review the budget and respond by Friday.",
        folder="INBOX",
        account="Work",
        category=category,
        created_at=now,
        updated_at=now,
    )


def _make_engine() -> MagicMock:
    engine = MagicMock(spec=MailQueryEngine)
    engine.embeddings = MagicMock()
    engine.embeddings.configured = True
    engine.aclose = AsyncMock()
    return engine


def _invoke(engine: MagicMock, *args: str) -> Result:
    from mailpipe.cli.main import cli

    runner = CliRunner()
    with patch("mailpipe.cli.main.MailQueryEngine") as engine_cls:
        engine_cls.from_settings.return_value = engine
        return runner.invoke(cli, list(args), catch_exceptions=False)


# ── search ──────────────────────────────────────────────────────────────────────


class TestSearchCommand:
    def test_displays_results_table(self) -> None:
        engine = _make_engine()
        engine.search = AsyncMock(return_value=SearchPage(
            hits=[{"id": "rec-1", "subject": "Budget review", "from": "alice@example.com",
                   "date": "2026-02-27T09:00:00+00:00", "account": "Work", "category": "Interested"}],
            total=1,
        ))
        result = _invoke(engine, "search", "budget")
        assert result.exit_code == 0
        assert "Budget review" in result.output
        assert "1 match(es)" in result.output
        engine.aclose.assert_awaited_once()

    def test_passes_filters(self) -> None:
        engine = _make_engine()
        engine.search = AsyncMock(return_value=SearchPage())
        _invoke(engine, "search", "budget", "--account", "Work", "--category", "Spam", "--page", "2")
        args, kwargs = engine.search.call_args
        assert args[0] == "budget"
        assert args[1] == {"account": "Work", "folder": None, "category": "Spam"}
        assert kwargs["page"] == 2

    def test_no_results_message(self) -> None:
        engine = _make_engine()
        engine.search = AsyncMock(return_value=SearchPage())
        result = _invoke(engine, "search", "nothing")
        assert "No emails matched" in result.output


# ── show ────────────────────────────────────────────────────────────────────────


class TestShowCommand:
    def test_shows_email(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        result = _invoke(engine, "show", "rec-1")
        assert result.exit_code == 0
        assert "alice@example.com" in result.output
        assert "Please review the budget" in result.output

    def test_not_found(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=None)
        result = _invoke(engine, "show", "missing")
        assert result.exit_code == 1
        assert "Email not found" in result.output


# ── categorize ──────────────────────────────────────────────────────────────────


class TestCategorizeCommand:
    def test_reclassifies(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record(category=None))
        engine.recategorize = AsyncMock(return_value=_make_record(category=Category.SPAM))
        result = _invoke(engine, "categorize", "rec-1")
        assert result.exit_code == 0
        assert "Spam" in result.output
        engine.set_category.assert_not_called()

    def test_manual_category(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.set_category = AsyncMock(return_value=_make_record(category=Category.MEETING_BOOKED))
        result = _invoke(engine, "categorize", "rec-1", "--set", "Meeting Booked")
        assert result.exit_code == 0
        engine.set_category.assert_awaited_once_with("rec-1", Category.MEETING_BOOKED)

    def test_invalid_manual_category_rejected(self) -> None:
        engine = _make_engine()
        result = _invoke(engine, "categorize", "rec-1", "--set", "Urgent")
        assert result.exit_code != 0

    def test_not_found(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=None)
        result = _invoke(engine, "categorize", "missing")
        assert result.exit_code == 1


# ── reply / sentiment ───────────────────────────────────────────────────────────


class TestReplyCommand:
    def test_single_reply(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.reply = AsyncMock(return_value="Thanks Alice, will do.")
        result = _invoke(engine, "reply", "rec-1")
        assert result.exit_code == 0
        assert "Thanks Alice, will do." in result.output

    def test_options(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.reply_options = AsyncMock(return_value=["Formal.", "Friendly!"])
        result = _invoke(engine, "reply", "rec-1", "--options", "2")
        assert "Option 1" in result.output
        assert "Friendly!" in result.output
        assert engine.reply_options.call_args.args[1] == 2

    def test_contextual(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.contextual_reply = AsyncMock(return_value="As discussed last quarter...")
        result = _invoke(engine, "reply", "rec-1", "--contextual")
        assert "As discussed last quarter" in result.output


class TestSentimentCommand:
    def test_prints_result(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.sentiment = AsyncMock(return_value=SentimentResult("positive", 0.92, "Upbeat tone."))
        result = _invoke(engine, "sentiment", "rec-1")
        assert result.exit_code == 0
        assert "positive" in result.output
        assert "0.92" in result.output


# ── similar / insights ──────────────────────────────────────────────────────────


class TestSimilarCommand:
    def test_table(self) -> None:
        engine = _make_engine()
        engine.similar = AsyncMock(return_value=[SimilarEmail(_make_record(), 0.87)])
        result = _invoke(engine, "similar", "budget", "--limit", "3", "--category", "Interested")
        assert result.exit_code == 0
        assert "Budget review" in result.output
        assert "0.87" in result.output
        kwargs = engine.similar.call_args.kwargs
        assert kwargs == {"limit": 3, "category": Category.INTERESTED}

    def test_empty(self) -> None:
        engine = _make_engine()
        engine.similar = AsyncMock(return_value=[])
        assert "No similar emails" in _invoke(engine, "similar", "budget").output


class TestInsightsCommand:
    def test_prints_all_sections(self) -> None:
        engine = _make_engine()
        engine.get = AsyncMock(return_value=_make_record())
        engine.insights = AsyncMock(return_value=EmailInsights(
            similar=[SimilarEmail(_make_record("old"), 0.9)],
            suggested_reply="Happy to help.",
            insights=["Budget questions recur monthly"],
        ))
        result = _invoke(engine, "insights", "rec-1")
        assert result.exit_code == 0
        assert "1 similar email(s)" in result.output
        assert "Happy to help." in result.output
        assert "Budget questions recur monthly" in result.output


# ── embed / cleanup ─────────────────────────────────────────────────────────────


class TestEmbedCommand:
    def test_reports_failures(self) -> None:
        engine = _make_engine()
        engine.embed = AsyncMock(return_value={"a": True, "b": False})
        result = _invoke(engine, "embed", "a", "b")
        assert "Failed:" in result.output
        assert "1 indexed" in result.output
        engine.embed.assert_awaited_once_with(["a", "b"])

    def test_unconfigured(self) -> None:
        engine = _make_engine()
        engine.embeddings.configured = False
        result = _invoke(engine, "embed", "a")
        assert "not configured" in result.output
        engine.embed.assert_not_called()
        engine.aclose.assert_awaited_once()


class TestCleanupCommand:
    def test_reports_count(self) -> None:
        engine = _make_engine()
        engine.cleanup = AsyncMock(return_value=4)
        result = _invoke(engine, "cleanup", "--days", "7")
        assert "Cleaned up 4 embedding(s) older than 7 day(s)" in result.output
        engine.cleanup.assert_awaited_once_with(7)


# ── run ─────────────────────────────────────────────────────────────────────────


class TestRunCommand:
    def test_starts_service_without_engine(self) -> None:
        from mailpipe.cli.main import cli

        with patch("mailpipe.cli.main.MailQueryEngine") as engine_cls, patch(
            "mailpipe.agent.supervisor.main"
        ) as service_main:
            result = CliRunner().invoke(cli, ["run"], catch_exceptions=False)
        assert result.exit_code == 0
        service_main.assert_called_once()
        engine_cls.from_settings.assert_not_called()

    def test_service_logs_at_info(self) -> None:
        from mailpipe.cli.main import cli

        root = logging.getLogger()
        previous = root.level
        root.setLevel(logging.WARNING)
        levels: list[int] = []

        def fake_asyncio_run(_coro: object) -> None:
            levels.append(root.getEffectiveLevel())

        try:
            with patch("mailpipe.cli.main.MailQueryEngine"), patch(
                "mailpipe.agent.supervisor.run_service", MagicMock()
            ), patch("mailpipe.agent.supervisor.asyncio.run", side_effect=fake_asyncio_run):
                result = CliRunner().invoke(cli, ["run"], catch_exceptions=False)
        finally:
            root.setLevel(previous)

        assert result.exit_code == 0
        assert levels == [logging.INFO]
