"""Data types shared across the IMAP mail modules."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class RawAttachment:
    """Attachment metadata as found in the MIME tree; any field may be missing."""

    filename: str | None = None
    content_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class RawMessage:
    """A message as downloaded from the mail server, before normalization.

    Every header field is optional: build_record() fills in the defaults.
    """

    uid: int
    message_id: str | None = None
    subject: str | None = None
    sender: str | None = None
    recipient: str | None = None
    date: datetime | None = None
    text: str | None = None
    html: str | None = None
    attachments: list[RawAttachment] = field(default_factory=list)


@dataclass(frozen=True)
class AccountConfig:
    """Connection details for one IMAP account.  Immutable for the process lifetime."""

    name: str
    host: str
    user: str
    password: str
    port: int = 993
    ssl: bool = True
