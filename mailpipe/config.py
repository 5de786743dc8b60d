"""Process configuration, read once from the environment at startup."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from mailpipe.mail.types import AccountConfig

logger = logging.getLogger(__name__)

_ACCOUNT_HOST_KEY = re.compile(r"^IMAP_ACCOUNT_(\d+)_HOST$")
_TRUE = {"1", "true", "yes", "on"}


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE


def load_accounts(environ: Mapping[str, str]) -> list[AccountConfig]:
    """Build one AccountConfig per ``IMAP_ACCOUNT_<N>_HOST`` variable.

    Slots are ordered by N; gaps are allowed.  A slot without a user or
    password is skipped with a warning rather than failing startup.  A name
    already taken by an earlier slot gets " (N)" appended, since the name keys
    both the supervisor's tasks and the sync state.
    """
    slots = sorted(
        int(m.group(1))
        for key in environ
        if (m := _ACCOUNT_HOST_KEY.match(key)) and environ[key].strip()
    )
    accounts: list[AccountConfig] = []
    seen: set[str] = set()
    for n in slots:
        prefix = f"IMAP_ACCOUNT_{n}_"
        user = environ.get(prefix + "USER", "")
        password = environ.get(prefix + "PASSWORD", "")
        if not user or not password:
            logger.warning("IMAP account %d has no user/password — skipped", n)
            continue
        try:
            port = int(environ.get(prefix + "PORT", "993"))
        except ValueError:
            logger.warning("Invalid %sPORT %r; defaulting to 993", prefix, environ[prefix + "PORT"])
            port = 993
        name = environ.get(prefix + "NAME") or f"Account {n}"
        if name in seen:
            unique = f"{name} ({n})"
            logger.warning("IMAP account %d reuses name %r; renamed to %r", n, name, unique)
            name = unique
        seen.add(name)
        accounts.append(
            AccountConfig(
                name=name,
                host=environ[prefix + "HOST"].strip(),
                port=port,
                user=user,
                password=password,
                ssl=_flag(environ.get(prefix + "SSL"), default=True),
            )
        )
    return accounts


@dataclass(frozen=True)
class Settings:
    """Everything the service needs to construct its clients."""

    accounts: list[AccountConfig] = field(default_factory=list)
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_index: str = "emails"
    anthropic_api_key: str = ""
    classifier_model: str | None = None
    reply_model: str | None = None
    vector_store_dir: Path | None = None
    slack_webhook_url: str | None = None
    webhook_url: str | None = None
    frontend_url: str = "http://localhost:3000"
    sync_state_db: Path = field(default_factory=lambda: Path("data/sync_state.db"))
    retention_days: int = 90
    retention_time: str = "03:00"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build Settings from environment variables (``os.environ`` by default)."""
        env = os.environ if environ is None else environ
        vector_dir = env.get("VECTOR_STORE_DIR", "").strip()
        try:
            retention_days = int(env.get("RETENTION_DAYS", "90"))
        except ValueError:
            logger.warning("Invalid RETENTION_DAYS %r; defaulting to 90", env.get("RETENTION_DAYS"))
            retention_days = 90
        return cls(
            accounts=load_accounts(env),
            elasticsearch_url=env.get("ELASTICSEARCH_URL", "http://localhost:9200"),
            elasticsearch_index=env.get("ELASTICSEARCH_INDEX", "emails"),
            anthropic_api_key=env.get("ANTHROPIC_API_KEY", ""),
            classifier_model=env.get("CLASSIFIER_MODEL") or None,
            reply_model=env.get("REPLY_MODEL") or None,
            vector_store_dir=Path(vector_dir) if vector_dir else None,
            slack_webhook_url=env.get("SLACK_WEBHOOK_URL") or None,
            webhook_url=env.get("WEBHOOK_URL") or None,
            frontend_url=env.get("FRONTEND_URL", "http://localhost:3000"),
            sync_state_db=Path(env.get("SYNC_STATE_DB", "data/sync_state.db")),
            retention_days=retention_days,
            retention_time=env.get("RETENTION_TIME", "03:00"),
        )
