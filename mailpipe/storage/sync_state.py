"""SQLite record of which mailbox messages have already been ingested."""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/sync_state.db")

_CREATE_PROCESSED = """
CREATE TABLE IF NOT EXISTS processed_messages (
    account       TEXT NOT NULL,
    folder        TEXT NOT NULL,
    uid_validity  INTEGER NOT NULL,
    uid           INTEGER NOT NULL,
    email_id      TEXT NOT NULL,
    processed_at  TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (account, folder, uid_validity, uid)
)
"""


class SyncStateStore:
    """Per-account, per-folder record of ingested IMAP UIDs.

    A message is identified by (account, folder, UIDVALIDITY, UID); if the
    server resets UIDVALIDITY every message in that folder counts as new.
    Rows are only written once a record has been persisted to the search
    index, so a restart re-scans the backfill window but skips mail that was
    already classified and notified.

    Designed for use from the event loop — calls are blocking but tiny.

    Usage::

        state = SyncStateStore()
        if not state.is_processed("Work", "INBOX", 1, 42):
            ...
            state.mark_processed("Work", "INBOX", 1, 42, record.id)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        with self._conn:
            self._conn.execute(_CREATE_PROCESSED)

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    def is_processed(self, account: str, folder: str, uid_validity: int, uid: int) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM processed_messages "
            "WHERE account = ? AND folder = ? AND uid_validity = ? AND uid = ?",
            (account, folder, uid_validity, uid),
        ).fetchone()
        return row is not None

    def mark_processed(
        self,
        account: str,
        folder: str,
        uid_validity: int,
        uid: int,
        email_id: str,
    ) -> None:
        """Record a message as ingested.  Re-marking keeps the first email_id."""
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO processed_messages "
                "(account, folder, uid_validity, uid, email_id) VALUES (?, ?, ?, ?, ?)",
                (account, folder, uid_validity, uid, email_id),
            )

    def processed_count(self, account: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM processed_messages WHERE account = ?",
            (account,),
        ).fetchone()
        return int(row["n"])
