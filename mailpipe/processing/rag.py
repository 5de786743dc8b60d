"""Retrieval-augmented reply drafting over the embedding store."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mailpipe.processing.classifier import NOT_AVAILABLE_REPLY
from mailpipe.processing.prompts import (
    CONTEXTUAL_REPLY_SYSTEM,
    INSIGHTS_SYSTEM,
    body_text,
    build_contextual_reply_prompt,
    build_insights_prompt,
)
from mailpipe.processing.types import EmailRecord, SimilarEmail

if TYPE_CHECKING:
    from mailpipe.processing.classifier import EmailClassifier
    from mailpipe.storage.vector_store import EmbeddingStore

logger = logging.getLogger(__name__)

_BULLET = re.compile(r"^\s*[-•*]\s*")
NO_INSIGHTS = "No similar emails found for insights"


@dataclass(frozen=True)
class EmailInsights:
    """Similar emails plus the reply and insights drafted from them."""

    similar: list[SimilarEmail] = field(default_factory=list)
    suggested_reply: str = ""
    insights: list[str] = field(default_factory=list)


class ContextualResponder:
    """Drafts replies that quote similar past emails as context.

    Both collaborators may be unconfigured; each operation then returns its
    documented placeholder rather than raising.
    """

    def __init__(self, store: EmbeddingStore, classifier: EmailClassifier) -> None:
        self._store = store
        self._classifier = classifier

    async def generate_contextual_reply(
        self,
        record: EmailRecord,
        similar: list[SimilarEmail],
    ) -> str:
        if not self._classifier.configured:
            return NOT_AVAILABLE_REPLY
        try:
            text = await self._classifier.complete(
                CONTEXTUAL_REPLY_SYSTEM,
                build_contextual_reply_prompt(record, similar),
                max_tokens=500,
                temperature=0.7,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to generate contextual reply for %s: %s", record.id, exc)
            return "Error generating contextual reply"
        return text or "Unable to generate contextual reply"

    async def generate_insights(
        self,
        record: EmailRecord,
        similar: list[SimilarEmail],
    ) -> list[str]:
        if not self._classifier.configured or not similar:
            return [NO_INSIGHTS]
        try:
            text = await self._classifier.complete(
                INSIGHTS_SYSTEM,
                build_insights_prompt(record, similar),
                max_tokens=300,
                temperature=0.5,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to generate insights for %s: %s", record.id, exc)
            return ["Error generating insights"]
        lines = [_BULLET.sub("", line).strip() for line in (text or "").splitlines()]
        return [line for line in lines if line] or [NO_INSIGHTS]

    async def get_insights(self, record: EmailRecord) -> EmailInsights:
        """Similar emails in the same category, a contextual reply, and insights."""
        similar = await self._store.query_similar(
            f"{record.subject} {body_text(record)}",
            limit=5,
            category=record.category,
        )
        # The record itself is usually in the store; don't quote it back.
        similar = [s for s in similar if s.record.id != record.id]
        reply = await self.generate_contextual_reply(record, similar)
        insights = await self.generate_insights(record, similar)
        return EmailInsights(similar=similar, suggested_reply=reply, insights=insights)
