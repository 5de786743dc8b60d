"""Shared pytest fixtures."""

from datetime import datetime, timezone

import pytest

from mailpipe.mail.types import AccountConfig, RawMessage


@pytest.fixture
def sample_raw_message() -> RawMessage:
    """A fully populated downloaded message for use in tests."""
    return RawMessage(
        uid=42,
        message_id="<abc123@example.com>",
        subject="Partnership opportunity",
        sender="alice@example.com",
        recipient="sales@example.com",
        date=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc),
        text="Hi, we would love to discuss a partnership with your team next week.",
        html=None,
    )


@pytest.fixture
def sample_account() -> AccountConfig:
    return AccountConfig(
        name="Work",
        host="imap.example.com",
        user="me@example.com",
        password="secret",
    )
