"""ChromaDB embedding store for similarity search over indexed emails."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

import chromadb
from chromadb.utils import embedding_functions

from mailpipe.processing.types import Category, EmailRecord, SimilarEmail

logger = logging.getLogger(__name__)

_COLLECTION_NAME = "email_embeddings"

#: Results at or below this cosine similarity are never returned.
SIMILARITY_THRESHOLD = 0.7

_SECONDS_PER_DAY = 86_400


class EmbeddingStore:
    """Optional, best-effort semantic index keyed by email id.

    The collection uses cosine distance, so similarity is ``1 - distance``.
    Without a ``persist_dir`` the store is unconfigured: nothing is created
    and every operation is a silent no-op returning its empty default.

    ChromaDB is synchronous; each call is pushed to a worker thread so the
    sync loop keeps yielding while embeddings are computed.

    Usage::

        store = EmbeddingStore(persist_dir="data/chroma")
        await store.upsert(record)
        similar = await store.query_similar("renewal terms", limit=5)
    """

    def __init__(
        self,
        persist_dir: str | Path | None = None,
        collection_name: str = _COLLECTION_NAME,
        embedding_function: Any = None,
    ) -> None:
        self.configured = persist_dir is not None
        self._client: Any = None
        self._collection: Any = None
        if not self.configured:
            logger.warning("Vector store directory not configured, embedding features disabled")
            return
        try:
            Path(persist_dir).mkdir(parents=True, exist_ok=True)  # type: ignore[arg-type]
            self._client = chromadb.PersistentClient(path=str(persist_dir))
            ef = embedding_function or embedding_functions.DefaultEmbeddingFunction()
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                embedding_function=ef,  # type: ignore[arg-type]
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Vector store unavailable at %s, embedding features disabled: %s",
                persist_dir,
                exc,
            )
            self.close()
            self.configured = False
            self._client = None
            self._collection = None

    def close(self) -> None:
        """Release ChromaDB resources (important on Windows where files stay locked)."""
        if self._client is None:
            return
        try:
            self._client._system.stop()
        except Exception:  # noqa: BLE001
            pass

    def count(self) -> int:
        return self._collection.count() if self.configured else 0

    # ── Write ───────────────────────────────────────────────────────────────────

    async def upsert(self, record: EmailRecord) -> None:
        """Embed subject + body and store it.  Calling again with the same id overwrites."""
        if not self.configured:
            return
        await asyncio.to_thread(
            self._collection.upsert,
            ids=[record.id],
            documents=[_build_document(record)],
            metadatas=[_build_metadata(record)],
        )
        logger.debug("Stored embedding for email %s", record.id)

    async def retention_sweep(self, max_age_days: int) -> int:
        """Delete embeddings created more than ``max_age_days`` ago.  Returns the count."""
        if not self.configured:
            return 0
        cutoff = time.time() - max_age_days * _SECONDS_PER_DAY
        return await asyncio.to_thread(self._delete_older_than, cutoff)

    # ── Read ────────────────────────────────────────────────────────────────────

    async def query_similar(
        self,
        text: str,
        limit: int = 5,
        category: Category | None = None,
    ) -> list[SimilarEmail]:
        """Return up to ``limit`` stored emails with similarity above the threshold.

        Results are ordered most-similar first.  Backend errors are logged and
        produce an empty list.
        """
        if not self.configured or limit <= 0:
            return []
        try:
            raw = await asyncio.to_thread(self._query, text, limit, category)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to find similar emails: %s", exc, exc_info=True)
            return []
        results = [r for r in _parse_results(raw) if r.similarity > SIMILARITY_THRESHOLD]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    # ── Private ─────────────────────────────────────────────────────────────────

    def _query(self, text: str, limit: int, category: Category | None) -> dict[str, Any] | None:
        count = self._collection.count()
        if count == 0:
            return None
        kwargs: dict[str, Any] = {
            "query_texts": [text],
            "n_results": min(limit, count),
            "include": ["documents", "metadatas", "distances"],
        }
        if category is not None:
            kwargs["where"] = {"category": category.value}
        return self._collection.query(**kwargs)

    def _delete_older_than(self, cutoff: float) -> int:
        stale = self._collection.get(
            where={"created_at": {"$lt": cutoff}},
            include=["metadatas"],
        )
        ids: list[str] = stale["ids"]
        if ids:
            self._collection.delete(ids=ids)
        logger.info("Cleaned up %d old embeddings", len(ids))
        return len(ids)


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _build_document(record: EmailRecord) -> str:
    """Text that gets embedded: subject, blank line, body."""
    return f"{record.subject}\n\n{record.text}"


def _build_metadata(record: EmailRecord) -> dict[str, Any]:
    return {
        "subject": record.subject,
        "body": record.text,
        "category": record.category.value if record.category else "",
        "created_at": time.time(),
    }


def _parse_results(raw: dict[str, Any] | None) -> list[SimilarEmail]:
    """Convert a raw ChromaDB query result into SimilarEmail projections."""
    if not raw:
        return []
    ids: list[str] = raw["ids"][0]
    distances: list[float] = raw["distances"][0]
    metadatas: list[dict[str, Any]] = raw["metadatas"][0]
    return [
        SimilarEmail(
            record=EmailRecord.projection(
                email_id=eid,
                subject=str(meta.get("subject", "")),
                text=str(meta.get("body", "")),
                category=Category.parse(str(meta.get("category", ""))),
            ),
            similarity=1.0 - float(dist),
        )
        for eid, dist, meta in zip(ids, distances, metadatas)
    ]
