"""Tests for prompt builders and HTML stripping."""

from datetime import datetime, timezone

from mailpipe.processing.prompts import (
    BODY_CHAR_LIMIT,
    CONTEXT_CHAR_LIMIT,
    body_text,
    build_classify_prompt,
    build_contextual_reply_prompt,
    build_insights_prompt,
    build_reply_options_prompt,
    strip_html,
)
from mailpipe.processing.types import Category, EmailRecord, SimilarEmail


def make_record(**kwargs: object) -> EmailRecord:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    defaults: dict[str, object] = dict(
        id="rec-1",
        message_id="",
        subject="Renewal",
        sender="client@example.com",
        recipient="",
        date=now,
        text="When does our contract renew?",
        folder="INBOX",
        account="Work",
        created_at=now,
        updated_at=now,
    )
    return EmailRecord(**{**defaults, **kwargs})  # type: ignore[arg-type]


def make_similar(subject: str, similarity: float, text: str = "past body") -> SimilarEmail:
    return SimilarEmail(EmailRecord.projection(subject, subject, text, Category.INTERESTED), similarity)


class TestStripHtml:
    def test_plain_text_unchanged(self) -> None:
        assert strip_html("no tags here") == "no tags here"

    def test_strips_tags(self) -> None:
        assert strip_html("<p>Hello <b>world</b></p>") == "Hello world"

    def test_skips_script_and_style(self) -> None:
        html = "<style>p{}</style><p>Visible</p><script>alert(1)</script>"
        assert strip_html(html) == "Visible"


class TestBodyText:
    def test_prefers_text(self) -> None:
        assert body_text(make_record(text="plain", html="<p>html</p>")) == "plain"

    def test_falls_back_to_html(self) -> None:
        assert body_text(make_record(text="", html="<p>html</p>")) == "html"

    def test_empty(self) -> None:
        assert body_text(make_record(text="")) == ""


class TestClassifyPrompt:
    def test_lists_every_category(self) -> None:
        prompt = build_classify_prompt(make_record())
        for category in Category:
            assert category.value in prompt

    def test_body_truncated(self) -> None:
        prompt = build_classify_prompt(make_record(text="x" * (BODY_CHAR_LIMIT + 50)))
        assert "x" * BODY_CHAR_LIMIT in prompt
        assert "x" * (BODY_CHAR_LIMIT + 1) not in prompt

    def test_asks_for_label_only(self) -> None:
        assert "Respond with only the category name" in build_classify_prompt(make_record())


class TestReplyOptionsPrompt:
    def test_count_in_prompt(self) -> None:
        assert "numbered 1-4" in build_reply_options_prompt(make_record(), 4)


class TestContextualReplyPrompt:
    def test_quotes_top_three_by_similarity(self) -> None:
        similar = [
            make_similar("low", 0.71),
            make_similar("top", 0.95),
            make_similar("mid", 0.80),
            make_similar("second", 0.90),
        ]
        prompt = build_contextual_reply_prompt(make_record(), similar)
        assert "Subject: top" in prompt
        assert "Subject: second" in prompt
        assert "Subject: mid" in prompt
        assert "Subject: low" not in prompt

    def test_context_bodies_truncated(self) -> None:
        similar = [make_similar("s", 0.9, text="y" * (CONTEXT_CHAR_LIMIT + 10))]
        prompt = build_contextual_reply_prompt(make_record(), similar)
        assert "y" * CONTEXT_CHAR_LIMIT in prompt
        assert "y" * (CONTEXT_CHAR_LIMIT + 1) not in prompt

    def test_no_context(self) -> None:
        assert "None" in build_contextual_reply_prompt(make_record(), [])


class TestInsightsPrompt:
    def test_similarity_as_percentage(self) -> None:
        prompt = build_insights_prompt(make_record(), [make_similar("Old renewal", 0.853)])
        assert "Old renewal (Similarity: 85.3%)" in prompt
