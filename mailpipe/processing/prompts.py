"""Prompt builders and tool definitions for the classifier client."""

from html.parser import HTMLParser
from typing import Any

from mailpipe.processing.types import Category, EmailRecord, SimilarEmail

# Characters of body sent for classification and sentiment.  Reply prompts
# send the full body.
BODY_CHAR_LIMIT = 1_000

# Characters of each similar email's body quoted as reply context.
CONTEXT_CHAR_LIMIT = 200

# Number of similar emails quoted in a contextual reply prompt.
CONTEXT_EMAILS = 3


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Minimal HTMLParser subclass that collects visible text nodes."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text and not self._skip:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML the original string is returned.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        stripper.close()
    except Exception:  # noqa: BLE001
        return text
    return stripper.get_text()


def body_text(record: EmailRecord) -> str:
    """Plain body of a record, falling back to the stripped HTML part."""
    if record.text:
        return record.text
    if record.html:
        return strip_html(record.html)
    return ""


# ── System prompts ─────────────────────────────────────────────────────────────

CLASSIFY_SYSTEM = (
    "You are an email categorization assistant. Analyze emails and categorize "
    "them based on their business relevance and content."
)
REPLY_SYSTEM = (
    "You are a professional email assistant. Generate helpful and professional "
    "email replies."
)
REPLY_OPTIONS_SYSTEM = (
    "You are a professional email assistant. Generate multiple reply options "
    "with different tones and approaches."
)
SENTIMENT_SYSTEM = (
    "You are an email sentiment analysis assistant. Analyze emails and record "
    "the sentiment with the record_sentiment tool."
)
CONTEXTUAL_REPLY_SYSTEM = (
    "You are a professional email assistant. Generate contextual replies using "
    "past email context."
)
INSIGHTS_SYSTEM = (
    "You are an email analysis assistant. Provide insights based on email "
    "patterns and context."
)


# ── Tool definition ────────────────────────────────────────────────────────────

#: Anthropic tool schema for structured sentiment output.
SENTIMENT_TOOL: dict[str, Any] = {
    "name": "record_sentiment",
    "description": "Record the sentiment of an email.",
    "input_schema": {
        "type": "object",
        "properties": {
            "sentiment": {
                "type": "string",
                "enum": ["positive", "negative", "neutral"],
            },
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 1,
                "description": "Confidence score between 0 and 1.",
            },
            "summary": {
                "type": "string",
                "description": "Brief explanation of the sentiment.",
            },
        },
        "required": ["sentiment", "confidence", "summary"],
    },
}


# ── Prompt builders ────────────────────────────────────────────────────────────


def _category_lines() -> str:
    descriptions = {
        Category.INTERESTED: "The email seems to be from a potential client, customer, or business opportunity",
        Category.MEETING_BOOKED: "The email confirms a meeting, appointment, or call",
        Category.NOT_INTERESTED: "The email is not relevant for business opportunities",
        Category.SPAM: "The email is clearly spam or promotional content",
        Category.OUT_OF_OFFICE: "The email is an automated out-of-office reply",
    }
    return "\n".join(f"- {c.value}: {descriptions[c]}" for c in Category)


def build_classify_prompt(record: EmailRecord) -> str:
    """Categorization prompt: sender, subject and the first 1000 body characters."""
    return (
        "Analyze the following email and categorize it into one of these categories:\n"
        f"{_category_lines()}\n\n"
        "Email Details:\n"
        f"From: {record.sender}\n"
        f"Subject: {record.subject}\n"
        f"Content: {body_text(record)[:BODY_CHAR_LIMIT]}...\n\n"
        'Respond with only the category name (e.g., "Interested").'
    )


def build_reply_prompt(record: EmailRecord) -> str:
    return (
        "Based on the following email, generate a professional and helpful reply. "
        "The reply should be:\n"
        "- Professional and courteous\n"
        "- Address the sender's needs or questions\n"
        "- Be concise but informative\n"
        "- Include a call-to-action if appropriate\n\n"
        "Original Email:\n"
        f"From: {record.sender}\n"
        f"Subject: {record.subject}\n"
        f"Content: {body_text(record)}\n\n"
        "Generate a suggested reply:"
    )


def build_reply_options_prompt(record: EmailRecord, count: int) -> str:
    return (
        f"Based on the following email, generate {count} different professional "
        "reply options. Each reply should have a different tone or approach:\n"
        "1. Formal and professional\n"
        "2. Friendly and conversational\n"
        "3. Brief and direct\n\n"
        "Original Email:\n"
        f"From: {record.sender}\n"
        f"Subject: {record.subject}\n"
        f"Content: {body_text(record)}\n\n"
        f"Generate {count} different reply options, numbered 1-{count}:"
    )


def build_sentiment_prompt(record: EmailRecord) -> str:
    return (
        "Analyze the sentiment of this email and call record_sentiment with:\n"
        "1. Sentiment: positive, negative, or neutral\n"
        "2. Confidence score: 0-1\n"
        "3. Brief summary of the sentiment\n\n"
        "Email:\n"
        f"From: {record.sender}\n"
        f"Subject: {record.subject}\n"
        f"Content: {body_text(record)[:BODY_CHAR_LIMIT]}"
    )


def build_contextual_reply_prompt(record: EmailRecord, similar: list[SimilarEmail]) -> str:
    """Reply prompt quoting the top CONTEXT_EMAILS similar emails as context."""
    top = sorted(similar, key=lambda s: s.similarity, reverse=True)[:CONTEXT_EMAILS]
    context = "\n\n".join(
        f"Subject: {s.record.subject}\nContent: {s.record.text[:CONTEXT_CHAR_LIMIT]}..."
        for s in top
    )
    return (
        "Generate a contextual reply based on the current email and similar past emails.\n\n"
        "Current Email:\n"
        f"From: {record.sender}\n"
        f"Subject: {record.subject}\n"
        f"Content: {body_text(record)}\n\n"
        "Similar Past Emails (for context):\n"
        f"{context or 'None'}\n\n"
        "Generate a professional reply that:\n"
        "1. Addresses the current email appropriately\n"
        "2. Uses context from similar past emails to provide relevant information\n"
        "3. Is professional and helpful\n"
        "4. Includes a clear call-to-action if appropriate\n\n"
        "Reply:"
    )


def build_insights_prompt(record: EmailRecord, similar: list[SimilarEmail]) -> str:
    context = "\n".join(
        f"Subject: {s.record.subject} (Similarity: {s.similarity * 100:.1f}%)"
        for s in similar
    )
    return (
        "Based on the current email and similar past emails, provide 3-5 key insights:\n\n"
        "Current Email:\n"
        f"Subject: {record.subject}\n"
        f"From: {record.sender}\n\n"
        "Similar Past Emails:\n"
        f"{context}\n\n"
        "Provide insights about:\n"
        "1. Common patterns or themes\n"
        "2. Response strategies that worked\n"
        "3. Important context or background\n"
        "4. Potential follow-up actions\n\n"
        "Format as a bulleted list of insights."
    )
