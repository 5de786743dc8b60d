"""Classifier client — Claude-powered categorization, replies and sentiment.

Every public coroutine here is advisory: it never raises, and degrades to a
documented default when the client is unconfigured, the request fails, or
the response cannot be validated.
"""

from __future__ import annotations

import logging
import os
import re

from anthropic import AsyncAnthropic
from anthropic.types import TextBlock, ToolUseBlock

from mailpipe.processing.prompts import (
    CLASSIFY_SYSTEM,
    REPLY_OPTIONS_SYSTEM,
    REPLY_SYSTEM,
    SENTIMENT_SYSTEM,
    SENTIMENT_TOOL,
    build_classify_prompt,
    build_reply_options_prompt,
    build_reply_prompt,
    build_sentiment_prompt,
)
from mailpipe.processing.types import (
    DEFAULT_CATEGORY,
    Category,
    EmailRecord,
    SentimentResult,
)

logger = logging.getLogger(__name__)

# Haiku: fast and cheap enough to run on every incoming email.
# Sonnet drafts replies, where quality matters more than latency.
_CLASSIFY_MODEL = "claude-haiku-4-5-20251001"
_REPLY_MODEL = "claude-sonnet-4-6"

# Keys shipped in example .env files; treated the same as no key at all.
_PLACEHOLDER_KEYS = frozenset({"sk-demo-key-for-testing", "your-api-key"})

NOT_AVAILABLE_REPLY = "AI reply generation not available - API key not configured"

_SENTIMENTS = frozenset({"positive", "negative", "neutral"})
_NUMBERED_MARKER = re.compile(r"\d+\.")


class EmailClassifier:
    """Maps an EmailRecord to one of five categories, and drafts replies.

    ``configured`` is decided once at construction: without a usable API key
    no Anthropic client is created and every operation returns its degraded
    default immediately.

    Usage::

        classifier = EmailClassifier()
        category = await classifier.classify(record)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        reply_model: str | None = None,
    ) -> None:
        key = api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
        self.configured = bool(key) and key not in _PLACEHOLDER_KEYS
        self._client = AsyncAnthropic(api_key=key) if self.configured else None
        self._model = model or _CLASSIFY_MODEL
        self._reply_model = reply_model or _REPLY_MODEL
        if not self.configured:
            logger.warning("Anthropic API key not configured — AI features degraded")

    # ── Classification ─────────────────────────────────────────────────────────

    async def classify(self, record: EmailRecord) -> Category:
        """Return the record's category; DEFAULT_CATEGORY on any failure."""
        if not self.configured:
            logger.warning("Classifier not configured, using default category")
            return DEFAULT_CATEGORY
        try:
            label = await self.complete(
                CLASSIFY_SYSTEM,
                build_classify_prompt(record),
                max_tokens=50,
                temperature=0.1,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to categorize email %s: %s", record.id, exc)
            return DEFAULT_CATEGORY

        category = Category.parse(label)
        if category is None:
            logger.warning("Invalid category returned: %r, using default", label)
            return DEFAULT_CATEGORY
        return category

    # ── Replies ────────────────────────────────────────────────────────────────

    async def generate_reply(self, record: EmailRecord) -> str:
        """Draft a single professional reply."""
        if not self.configured:
            return NOT_AVAILABLE_REPLY
        try:
            text = await self.complete(
                REPLY_SYSTEM,
                build_reply_prompt(record),
                max_tokens=500,
                temperature=0.7,
                model=self._reply_model,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to generate suggested reply for %s: %s", record.id, exc)
            return "Error generating reply"
        return text or "Unable to generate reply"

    async def generate_reply_options(self, record: EmailRecord, count: int = 3) -> list[str]:
        """Draft ``count`` replies in different tones, split from a numbered list."""
        if not self.configured:
            return [NOT_AVAILABLE_REPLY]
        try:
            text = await self.complete(
                REPLY_OPTIONS_SYSTEM,
                build_reply_options_prompt(record, count),
                max_tokens=1000,
                temperature=0.8,
                model=self._reply_model,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to generate reply options for %s: %s", record.id, exc)
            return ["Error generating reply options"]
        options = split_numbered_list(text or "")
        return options or ["Unable to generate reply options"]

    # ── Sentiment ──────────────────────────────────────────────────────────────

    async def analyze_sentiment(self, record: EmailRecord) -> SentimentResult:
        """Structured sentiment via a forced record_sentiment tool call."""
        if not self.configured or self._client is None:
            return SentimentResult("neutral", 0.0, "Sentiment analysis not available")
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=200,
                temperature=0.1,
                system=SENTIMENT_SYSTEM,
                tools=[SENTIMENT_TOOL],  # type: ignore[list-item]
                tool_choice={"type": "tool", "name": "record_sentiment"},
                messages=[{"role": "user", "content": build_sentiment_prompt(record)}],
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to analyze sentiment for %s: %s", record.id, exc)
            return SentimentResult("neutral", 0.0, "Sentiment analysis error")

        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == "record_sentiment":
                return _parse_sentiment(block.input)  # type: ignore[arg-type]

        logger.error(
            "No record_sentiment tool call for %s (stop_reason=%r)",
            record.id,
            response.stop_reason,
        )
        return SentimentResult("neutral", 0.0, "Sentiment analysis failed")

    # ── Low-level ──────────────────────────────────────────────────────────────

    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        model: str | None = None,
    ) -> str | None:
        """Single-turn completion; returns trimmed text, or None if unconfigured.

        Unlike the public operations above, request errors propagate so each
        caller can substitute its own default.
        """
        if self._client is None:
            return None
        response = await self._client.messages.create(
            model=model or self._model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(b.text for b in response.content if isinstance(b, TextBlock))
        return text.strip()


def split_numbered_list(text: str) -> list[str]:
    """Split "1. foo 2. bar" into ["foo", "bar"], dropping empty chunks."""
    return [part.strip() for part in _NUMBERED_MARKER.split(text) if part.strip()]


def _parse_sentiment(data: dict[str, object]) -> SentimentResult:
    """Validate the tool-call input; anything malformed maps to a neutral result."""
    if not isinstance(data, dict):
        return SentimentResult("neutral", 0.0, "Sentiment analysis failed")
    sentiment = str(data.get("sentiment", "")).strip().lower()
    if sentiment not in _SENTIMENTS:
        sentiment = "neutral"
    try:
        confidence = float(data.get("confidence", 0.0))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(max(confidence, 0.0), 1.0)
    summary = str(data.get("summary") or "Unable to analyze sentiment")
    return SentimentResult(sentiment, confidence, summary)
