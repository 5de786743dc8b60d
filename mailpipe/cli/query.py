"""MailQueryEngine — coordinates the index, embedding store and classifier for the CLI."""

from __future__ import annotations

import logging

from mailpipe.config import Settings
from mailpipe.processing.classifier import EmailClassifier
from mailpipe.processing.prompts import body_text
from mailpipe.processing.rag import ContextualResponder, EmailInsights
from mailpipe.processing.types import Category, EmailRecord, SentimentResult, SimilarEmail
from mailpipe.storage.search_index import SearchIndex, SearchPage, build_search_query
from mailpipe.storage.vector_store import EmbeddingStore

logger = logging.getLogger(__name__)


class MailQueryEngine:
    """One object behind every CLI command.

    The collaborators are public attributes so commands and tests can reach
    them directly.

    Usage::

        engine = MailQueryEngine.from_settings(Settings.from_env())
        record = await engine.get("5f0c…")
        replies = await engine.reply_options(record, 3)
    """

    def __init__(
        self,
        index: SearchIndex,
        embeddings: EmbeddingStore,
        classifier: EmailClassifier,
    ) -> None:
        self.index = index
        self.embeddings = embeddings
        self.classifier = classifier
        self.responder = ContextualResponder(embeddings, classifier)

    @classmethod
    def from_settings(cls, settings: Settings) -> MailQueryEngine:
        return cls(
            SearchIndex(settings.elasticsearch_url, settings.elasticsearch_index),
            EmbeddingStore(persist_dir=settings.vector_store_dir),
            EmailClassifier(
                api_key=settings.anthropic_api_key,
                model=settings.classifier_model,
                reply_model=settings.reply_model,
            ),
        )

    async def aclose(self) -> None:
        """Release underlying client resources."""
        self.embeddings.close()
        await self.index.close()

    # ── Index ───────────────────────────────────────────────────────────────────

    async def get(self, email_id: str) -> EmailRecord | None:
        return await self.index.get(email_id)

    async def search(
        self,
        text: str | None = None,
        filters: dict[str, object] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> SearchPage:
        return await self.index.search(build_search_query(text, filters, page=page, limit=limit))

    async def set_category(self, email_id: str, category: Category) -> EmailRecord:
        return await self.index.update_category(email_id, category)

    async def recategorize(self, record: EmailRecord) -> EmailRecord:
        """Re-run the classifier on a stored record and persist the new category."""
        category = await self.classifier.classify(record)
        return await self.index.update_category(record.id, category)

    # ── AI actions ──────────────────────────────────────────────────────────────

    async def reply(self, record: EmailRecord) -> str:
        return await self.classifier.generate_reply(record)

    async def reply_options(self, record: EmailRecord, count: int) -> list[str]:
        return await self.classifier.generate_reply_options(record, count)

    async def sentiment(self, record: EmailRecord) -> SentimentResult:
        return await self.classifier.analyze_sentiment(record)

    # ── RAG actions ─────────────────────────────────────────────────────────────

    async def similar(
        self,
        text: str,
        limit: int = 5,
        category: Category | None = None,
    ) -> list[SimilarEmail]:
        return await self.embeddings.query_similar(text, limit=limit, category=category)

    async def contextual_reply(self, record: EmailRecord) -> str:
        similar = await self.embeddings.query_similar(
            f"{record.subject} {body_text(record)}", limit=5, category=record.category
        )
        similar = [s for s in similar if s.record.id != record.id]
        return await self.responder.generate_contextual_reply(record, similar)

    async def insights(self, record: EmailRecord) -> EmailInsights:
        return await self.responder.get_insights(record)

    async def embed(self, email_ids: list[str]) -> dict[str, bool]:
        """Load each id from the index and (re-)store its embedding."""
        results: dict[str, bool] = {}
        for email_id in email_ids:
            record = await self.index.get(email_id)
            if record is None:
                results[email_id] = False
                continue
            try:
                await self.embeddings.upsert(record)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to index embedding for %s: %s", email_id, exc)
                results[email_id] = False
                continue
            results[email_id] = True
        return results

    async def cleanup(self, max_age_days: int) -> int:
        return await self.embeddings.retention_sweep(max_age_days)
