"""Elasticsearch persistence and full-text search for canonical email records."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from elasticsearch import AsyncElasticsearch

from mailpipe.processing.types import Category, EmailRecord

logger = logging.getLogger(__name__)

_DEFAULT_URL = "http://localhost:9200"
_DEFAULT_INDEX = "emails"
_REQUEST_TIMEOUT = 30
_MAX_RETRIES = 3


def _text_with_keyword() -> dict[str, Any]:
    return {
        "type": "text",
        "analyzer": "standard",
        "fields": {"keyword": {"type": "keyword"}},
    }


#: Fixed index mapping.  Field names match EmailRecord.to_document().
INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "messageId": {"type": "keyword"},
        "subject": _text_with_keyword(),
        "from": _text_with_keyword(),
        "to": _text_with_keyword(),
        "date": {"type": "date"},
        "text": {"type": "text", "analyzer": "standard"},
        "html": {"type": "text"},
        "folder": {"type": "keyword"},
        "account": {"type": "keyword"},
        "category": {"type": "keyword"},
        "isRead": {"type": "boolean"},
        "attachments": {
            "type": "nested",
            "properties": {
                "filename": {"type": "keyword"},
                "contentType": {"type": "keyword"},
                "size": {"type": "integer"},
            },
        },
        "createdAt": {"type": "date"},
        "updatedAt": {"type": "date"},
    }
}

INDEX_SETTINGS: dict[str, Any] = {"number_of_shards": 1, "number_of_replicas": 0}


class EmailNotFoundError(Exception):
    """Raised when an operation needs an email id that is not in the index."""


@dataclass(frozen=True)
class SearchPage:
    """One page of search hits plus the total number of matches."""

    hits: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


class SearchIndex:
    """Thin async wrapper around one Elasticsearch index of email documents.

    Safe for concurrent use by every account task: the underlying client
    pools its connections.

    Usage::

        index = SearchIndex("http://localhost:9200")
        await index.ensure_index()
        await index.put(record)
        page = await index.search(build_search_query("invoice"))
    """

    def __init__(
        self,
        url: str = _DEFAULT_URL,
        index_name: str = _DEFAULT_INDEX,
        client: AsyncElasticsearch | None = None,
    ) -> None:
        self._index = index_name
        self._client = client or AsyncElasticsearch(
            url,
            request_timeout=_REQUEST_TIMEOUT,
            max_retries=_MAX_RETRIES,
            retry_on_timeout=True,
        )

    @property
    def index_name(self) -> str:
        return self._index

    async def close(self) -> None:
        await self._client.close()

    async def ensure_index(self) -> None:
        """Create the index with the fixed mapping unless it already exists."""
        if await self._client.indices.exists(index=self._index):
            logger.info("Search index already exists: %s", self._index)
            return
        await self._client.indices.create(
            index=self._index,
            mappings=INDEX_MAPPINGS,
            settings=INDEX_SETTINGS,
        )
        logger.info("Created search index: %s", self._index)

    # ── Write API ───────────────────────────────────────────────────────────────

    async def put(self, record: EmailRecord) -> None:
        """Index (insert or overwrite) a record under its id."""
        await self._client.index(
            index=self._index,
            id=record.id,
            document=record.to_document(),
        )
        logger.debug("Indexed email %s", record.id)

    async def update_category(self, email_id: str, category: Category | str) -> EmailRecord:
        """Set a record's category and advance updatedAt.

        updatedAt never moves backwards, even if the stored value is ahead
        of this host's clock.

        Raises:
            EmailNotFoundError: if no record with that id exists.
            ValueError: if category is not one of the five labels.
        """
        category = Category(category)
        record = await self.get(email_id)
        if record is None:
            raise EmailNotFoundError(email_id)

        record.category = category
        record.updated_at = max(datetime.now(timezone.utc), record.updated_at)
        await self._client.update(
            index=self._index,
            id=email_id,
            doc={
                "category": category.value,
                "updatedAt": record.updated_at.isoformat(),
            },
        )
        logger.info("Updated email %s category to %s", email_id, category.value)
        return record

    # ── Read API ────────────────────────────────────────────────────────────────

    async def get(self, email_id: str) -> EmailRecord | None:
        """Return the stored record, or None if the id is unknown."""
        response = await self._client.options(ignore_status=404).get(
            index=self._index,
            id=email_id,
        )
        body = getattr(response, "body", response)
        if not body.get("found"):
            return None
        return EmailRecord.from_document(body["_source"])

    async def search(self, query: dict[str, Any]) -> SearchPage:
        """Run a structured query (see build_search_query) and return hits + total."""
        response = await self._client.search(index=self._index, **query)
        body = getattr(response, "body", response)
        hits = [
            {**hit["_source"], "_score": hit.get("_score")}
            for hit in body["hits"]["hits"]
        ]
        total = body["hits"]["total"]
        if isinstance(total, dict):
            total = total.get("value", 0)
        return SearchPage(hits=hits, total=int(total))


def build_search_query(
    text: str | None = None,
    filters: dict[str, Any] | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "date",
    sort_order: str = "desc",
) -> dict[str, Any]:
    """Build keyword arguments for SearchIndex.search().

    ``filters`` keys are index field names matched exactly, plus two special
    keys: ``dateRange`` (an Elasticsearch range body for ``date``) and
    ``hasAttachments``.  Falsy filter values are ignored.
    """
    must: list[dict[str, Any]] = []
    if text:
        must.append({
            "multi_match": {
                "query": text,
                "fields": ["subject^2", "text", "from", "to"],
            }
        })

    filter_clauses: list[dict[str, Any]] = []
    for key, value in (filters or {}).items():
        if not value:
            continue
        if key == "dateRange":
            filter_clauses.append({"range": {"date": value}})
        elif key == "hasAttachments":
            filter_clauses.append({"exists": {"field": "attachments"}})
        else:
            filter_clauses.append({"term": {key: value}})

    bool_query: dict[str, Any] = {"must": must}
    if filter_clauses:
        bool_query["filter"] = filter_clauses

    page = max(page, 1)
    return {
        "query": {"bool": bool_query},
        "from_": (page - 1) * limit,
        "size": limit,
        "sort": [{sort_by: {"order": sort_order}}],
    }
