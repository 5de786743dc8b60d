"""Types for the ingestion and classification pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Classification outcome for a single email.

    Values are the exact labels the classifier is asked to return, so a
    trimmed completion can be validated with ``Category.parse()``.
    """

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"

    @classmethod
    def parse(cls, label: str | None) -> Category | None:
        """Return the matching category, or None if label is not one of the five."""
        if not label:
            return None
        try:
            return cls(label.strip())
        except ValueError:
            return None


#: Category substituted whenever classification cannot produce a valid label.
DEFAULT_CATEGORY = Category.NOT_INTERESTED


# ── Canonical record ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Attachment:
    """Descriptor of one attachment; the content itself is never stored."""

    filename: str
    content_type: str
    size: int


@dataclass
class EmailRecord:
    """The normalized, pipeline-internal representation of one email.

    Created by build_record(), mutated by the classifier (category) and by
    SearchIndex.update_category(), persisted by SearchIndex.put().
    """

    id: str
    message_id: str
    subject: str
    sender: str
    recipient: str
    date: datetime
    text: str
    folder: str
    account: str
    created_at: datetime
    updated_at: datetime
    html: str | None = None
    category: Category | None = None
    is_read: bool = False
    attachments: list[Attachment] = field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        """Return the search-index document (camelCase field names, ISO dates)."""
        return {
            "id": self.id,
            "messageId": self.message_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipient,
            "date": self.date.isoformat(),
            "text": self.text,
            "html": self.html,
            "folder": self.folder,
            "account": self.account,
            "category": self.category.value if self.category else None,
            "isRead": self.is_read,
            "attachments": [
                {"filename": a.filename, "contentType": a.content_type, "size": a.size}
                for a in self.attachments
            ],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> EmailRecord:
        """Rebuild a record from a stored index document."""
        now = datetime.now(timezone.utc)
        created_at = _parse_timestamp(doc.get("createdAt")) or now
        return cls(
            id=str(doc["id"]),
            message_id=doc.get("messageId") or "",
            subject=doc.get("subject") or "",
            sender=doc.get("from") or "",
            recipient=doc.get("to") or "",
            date=_parse_timestamp(doc.get("date")) or created_at,
            text=doc.get("text") or "",
            html=doc.get("html"),
            folder=doc.get("folder") or "",
            account=doc.get("account") or "",
            category=Category.parse(doc.get("category")),
            is_read=bool(doc.get("isRead", False)),
            attachments=[
                Attachment(
                    filename=a.get("filename", "unknown"),
                    content_type=a.get("contentType", "application/octet-stream"),
                    size=int(a.get("size", 0)),
                )
                for a in doc.get("attachments") or []
            ],
            created_at=created_at,
            updated_at=_parse_timestamp(doc.get("updatedAt")) or created_at,
        )

    @classmethod
    def projection(
        cls,
        email_id: str,
        subject: str,
        text: str,
        category: Category | None,
    ) -> EmailRecord:
        """Partial record reconstructed from the vector store (no headers)."""
        now = datetime.now(timezone.utc)
        return cls(
            id=email_id,
            message_id="",
            subject=subject,
            sender="",
            recipient="",
            date=now,
            text=text,
            folder="",
            account="",
            category=category,
            created_at=now,
            updated_at=now,
        )


def _parse_timestamp(value: object) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ── AI results ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SentimentResult:
    """Output of EmailClassifier.analyze_sentiment()."""

    sentiment: str          # positive | negative | neutral
    confidence: float       # 0.0 → 1.0
    summary: str


@dataclass(frozen=True)
class SimilarEmail:
    """A record projection paired with its cosine similarity to a query."""

    record: EmailRecord
    similarity: float
