"""Tests for IngestionPipeline — every collaborator is a mock."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mailpipe.mail.types import RawMessage
from mailpipe.processing.pipeline import IngestionPipeline
from mailpipe.processing.types import Category


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_classifier(category: Category | None = Category.INTERESTED, error: Exception | None = None) -> MagicMock:
    classifier = MagicMock()
    classifier.classify = AsyncMock(return_value=category, side_effect=error)
    return classifier


def make_index(error: Exception | None = None) -> MagicMock:
    index = MagicMock()
    index.put = AsyncMock(side_effect=error)
    return index


def make_embeddings(error: Exception | None = None) -> MagicMock:
    embeddings = MagicMock()
    embeddings.upsert = AsyncMock(side_effect=error)
    return embeddings


def make_notifier(error: Exception | None = None) -> MagicMock:
    notifier = MagicMock()
    notifier.dispatch = AsyncMock(return_value={"slack": True, "webhook": True}, side_effect=error)
    return notifier


def make_pipeline(**overrides: MagicMock) -> tuple[IngestionPipeline, dict[str, MagicMock]]:
    parts = {
        "classifier": make_classifier(),
        "index": make_index(),
        "embeddings": make_embeddings(),
        "notifier": make_notifier(),
    }
    parts.update(overrides)
    return IngestionPipeline(**parts), parts  # type: ignore[arg-type]


# ── Happy path ─────────────────────────────────────────────────────────────────


class TestProcess:
    async def test_interested_runs_every_stage(self, sample_raw_message: RawMessage) -> None:
        pipeline, parts = make_pipeline()

        record = await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert record is not None
        assert record.category == Category.INTERESTED
        parts["index"].put.assert_awaited_once_with(record)
        parts["embeddings"].upsert.assert_awaited_once_with(record)
        parts["notifier"].dispatch.assert_awaited_once_with(record)

    async def test_record_classified_before_persist(self, sample_raw_message: RawMessage) -> None:
        seen: list[Category | None] = []
        index = MagicMock()
        index.put = AsyncMock(side_effect=lambda rec: seen.append(rec.category))
        pipeline, _ = make_pipeline(index=index)

        await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert seen == [Category.INTERESTED]

    async def test_meeting_booked_persisted_once_without_notification(
        self, sample_raw_message: RawMessage
    ) -> None:
        pipeline, parts = make_pipeline(classifier=make_classifier(Category.MEETING_BOOKED))

        record = await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert record is not None
        assert record.category == Category.MEETING_BOOKED
        assert parts["index"].put.await_count == 1
        parts["notifier"].dispatch.assert_not_awaited()

    async def test_spam_indexed_and_embedded_but_not_notified(
        self, sample_raw_message: RawMessage
    ) -> None:
        pipeline, parts = make_pipeline(classifier=make_classifier(Category.SPAM))

        record = await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert record is not None
        assert record.category == Category.SPAM
        parts["index"].put.assert_awaited_once()
        parts["embeddings"].upsert.assert_awaited_once()
        parts["notifier"].dispatch.assert_not_awaited()

    async def test_optional_collaborators_absent(self, sample_raw_message: RawMessage) -> None:
        pipeline = IngestionPipeline(make_classifier(), make_index())
        assert await pipeline.process(sample_raw_message, "Work", "INBOX") is not None


# ── Failure isolation ──────────────────────────────────────────────────────────


class TestFailureIsolation:
    async def test_classifier_exception_uses_default(self, sample_raw_message: RawMessage) -> None:
        pipeline, parts = make_pipeline(classifier=make_classifier(error=RuntimeError("boom")))

        record = await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert record is not None
        assert record.category == Category.NOT_INTERESTED
        parts["index"].put.assert_awaited_once()
        parts["notifier"].dispatch.assert_not_awaited()

    async def test_persist_failure_skips_embed_and_notify(self, sample_raw_message: RawMessage) -> None:
        pipeline, parts = make_pipeline(index=make_index(error=ConnectionError("es down")))

        assert await pipeline.process(sample_raw_message, "Work", "INBOX") is None
        parts["embeddings"].upsert.assert_not_awaited()
        parts["notifier"].dispatch.assert_not_awaited()

    async def test_embedding_failure_still_notifies(self, sample_raw_message: RawMessage) -> None:
        pipeline, parts = make_pipeline(embeddings=make_embeddings(error=RuntimeError("chroma")))

        record = await pipeline.process(sample_raw_message, "Work", "INBOX")

        assert record is not None
        parts["notifier"].dispatch.assert_awaited_once()

    async def test_notifier_failure_does_not_raise(self, sample_raw_message: RawMessage) -> None:
        pipeline, _ = make_pipeline(notifier=make_notifier(error=RuntimeError("slack")))
        assert await pipeline.process(sample_raw_message, "Work", "INBOX") is not None

    @pytest.mark.parametrize("folder", ["INBOX", "Sent", "[Gmail]/Drafts"])
    async def test_folder_and_account_recorded(self, sample_raw_message: RawMessage, folder: str) -> None:
        pipeline, _ = make_pipeline()
        record = await pipeline.process(sample_raw_message, "Personal", folder)
        assert record is not None
        assert (record.account, record.folder) == ("Personal", folder)
