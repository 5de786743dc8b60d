"""RFC 822 parsing — raw message bytes into a RawMessage.

Parsing is kept separate from IMAP I/O so it can be tested with plain byte
strings, without a mail server.
"""

import email
import logging
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from typing import cast

from mailpipe.mail.types import RawAttachment, RawMessage
from mailpipe.processing.prompts import strip_html

logger = logging.getLogger(__name__)


def parse_message(raw: bytes, uid: int) -> RawMessage:
    """Parse one downloaded message.

    Absent headers stay ``None`` so the record builder can apply defaults.
    When there is no text/plain part the text is derived from the HTML part.
    """
    # policy.default always yields EmailMessage instances
    msg = cast(EmailMessage, email.message_from_bytes(raw, policy=policy.default))

    text = _part_content(msg.get_body(preferencelist=("plain",)))
    html = _part_content(msg.get_body(preferencelist=("html",)))
    if text is None and html is not None:
        text = strip_html(html)

    return RawMessage(
        uid=uid,
        message_id=_header(msg, "Message-ID"),
        subject=_header(msg, "Subject"),
        sender=_header(msg, "From"),
        recipient=_header(msg, "To"),
        date=_parse_date(_header(msg, "Date")),
        text=text,
        html=html,
        attachments=[_attachment(part) for part in msg.iter_attachments()],
    )


def _header(msg: EmailMessage, name: str) -> str | None:
    try:
        value = msg.get(name)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Unreadable %s header: %s", name, exc)
        return None
    if value is None:
        return None
    return str(value).strip() or None


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _part_content(part: EmailMessage | None) -> str | None:
    if part is None:
        return None
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        # Unknown or lying charset: decode leniently instead of dropping the body.
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    return content if isinstance(content, str) else None


def _attachment(part: EmailMessage) -> RawAttachment:
    payload = part.get_payload(decode=True)
    return RawAttachment(
        filename=part.get_filename(),
        content_type=part.get_content_type(),
        size=len(payload) if isinstance(payload, bytes) else None,
    )
