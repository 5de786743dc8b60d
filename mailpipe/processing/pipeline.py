"""Per-message ingestion: normalize → classify → persist → embed → notify."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mailpipe.mail.types import RawMessage
from mailpipe.notify.dispatcher import should_notify
from mailpipe.processing.builder import build_record
from mailpipe.processing.types import DEFAULT_CATEGORY, EmailRecord

if TYPE_CHECKING:
    from mailpipe.notify.dispatcher import NotificationDispatcher
    from mailpipe.processing.classifier import EmailClassifier
    from mailpipe.storage.search_index import SearchIndex
    from mailpipe.storage.vector_store import EmbeddingStore

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Drives one raw message through every downstream collaborator.

    Each stage is isolated: its failure is logged and a stage-local default
    substituted.  A record that cannot be persisted to the search index is
    not embedded or notified, since nothing downstream could look it up
    again; the caller sees ``None`` and can retry the message on a later run.

    All collaborators are injected so tests can substitute fakes.
    """

    def __init__(
        self,
        classifier: EmailClassifier,
        index: SearchIndex,
        embeddings: EmbeddingStore | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._classifier = classifier
        self._index = index
        self._embeddings = embeddings
        self._notifier = notifier

    async def process(self, raw: RawMessage, account_name: str, folder: str) -> EmailRecord | None:
        """Ingest one message.  Never raises; returns the record once it is indexed."""
        try:
            record = build_record(raw, account_name, folder)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to normalize UID %s from %s/%s: %s", raw.uid, account_name, folder, exc)
            return None

        await self._classify(record)
        if not await self._persist(record):
            return None
        await self._embed(record)
        await self._notify(record)

        logger.info(
            "Processed email %s [%s] %r from %r",
            record.id,
            record.category.value if record.category else "n/a",
            record.subject,
            record.sender,
        )
        return record

    async def _classify(self, record: EmailRecord) -> None:
        try:
            record.category = await self._classifier.classify(record)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to categorize email %s: %s", record.id, exc)
            record.category = DEFAULT_CATEGORY

    async def _persist(self, record: EmailRecord) -> bool:
        try:
            await self._index.put(record)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to index email %s — skipping embedding and notification: %s",
                record.id,
                exc,
                exc_info=True,
            )
            return False
        return True

    async def _embed(self, record: EmailRecord) -> None:
        if self._embeddings is None:
            return
        try:
            await self._embeddings.upsert(record)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to store embedding for email %s: %s", record.id, exc)

    async def _notify(self, record: EmailRecord) -> None:
        if self._notifier is None or not should_notify(record):
            return
        try:
            await self._notifier.dispatch(record)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to send notifications for email %s: %s", record.id, exc)
