"""Canonical record builder — RawMessage → EmailRecord."""

import uuid
from datetime import datetime, timezone

from mailpipe.mail.types import RawAttachment, RawMessage
from mailpipe.processing.types import Attachment, EmailRecord

NO_SUBJECT = "No Subject"
UNKNOWN_FILENAME = "unknown"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def build_record(
    raw: RawMessage,
    account_name: str,
    folder: str,
    now: datetime | None = None,
) -> EmailRecord:
    """Normalize a downloaded message into a fresh EmailRecord.

    Pure apart from the clock and the random identifier: the id is a new
    uuid4 on every call, and both timestamps are set to ``now``.  Missing
    headers fall back to the documented defaults; the category is left unset
    for the classifier.
    """
    now = now or datetime.now(timezone.utc)
    return EmailRecord(
        id=str(uuid.uuid4()),
        message_id=raw.message_id or "",
        subject=raw.subject or NO_SUBJECT,
        sender=raw.sender or "",
        recipient=raw.recipient or "",
        date=raw.date or now,
        text=raw.text or "",
        html=raw.html,
        folder=folder,
        account=account_name,
        is_read=False,
        attachments=[_build_attachment(a) for a in raw.attachments],
        created_at=now,
        updated_at=now,
    )


def _build_attachment(raw: RawAttachment) -> Attachment:
    return Attachment(
        filename=raw.filename or UNKNOWN_FILENAME,
        content_type=raw.content_type or DEFAULT_CONTENT_TYPE,
        size=raw.size or 0,
    )
