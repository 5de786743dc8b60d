"""Mailbox sync worker — backfills one account, then follows INBOX via IDLE."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from mailpipe.mail.imap_client import ImapMailbox, MailboxError, filter_sync_folders
from mailpipe.mail.types import AccountConfig, RawMessage

if TYPE_CHECKING:
    from mailpipe.processing.pipeline import IngestionPipeline
    from mailpipe.storage.sync_state import SyncStateStore

logger = logging.getLogger(__name__)

#: Backfill window re-scanned on every start.
BACKFILL_DAYS = 30

#: NOOP keep-alive interval; also the longest a single IDLE is held.
KEEPALIVE_SECONDS = 30

LIVE_FOLDER = "INBOX"


# ── Mailbox interface ──────────────────────────────────────────────────────────


@runtime_checkable
class Mailbox(Protocol):
    """The subset of ImapMailbox the worker depends on."""

    @property
    def authenticated(self) -> bool: ...

    async def connect(self) -> None: ...

    async def logout(self) -> None: ...

    async def keep_alive(self) -> bool: ...

    async def list_folders(self) -> list[str]: ...

    async def select(self, folder: str, readonly: bool = True) -> int: ...

    def fetch_since(self, since: datetime) -> AsyncIterator[RawMessage]: ...

    def fetch_uids(self, uids: list[int]) -> AsyncIterator[RawMessage]: ...

    async def wait_for_changes(self, timeout: float) -> list[int]: ...


#: Builds an unconnected mailbox for an account.
MailboxFactory = Callable[[AccountConfig], Mailbox]


# ── Worker ─────────────────────────────────────────────────────────────────────


class MailboxSyncWorker:
    """Produces canonical records for one account and drives the pipeline.

    Lifecycle:
      1. connect — a failure is logged and re-raised; the worker exits and
         no retry is attempted (other accounts are unaffected).
      2. backfill every inbox/sent/drafts folder over the last 30 days.
      3. follow INBOX with IDLE until stop() is called.

    While connected, a NOOP keep-alive is sent every ``keepalive_interval``
    seconds, between backfill messages as well as between IDLE cycles.

    Messages are processed strictly one at a time, in fetch order.  With a
    SyncStateStore, messages already indexed on a previous run are skipped.

    Usage::

        worker = MailboxSyncWorker(account, pipeline, state=SyncStateStore())
        await worker.run()
    """

    def __init__(
        self,
        account: AccountConfig,
        pipeline: IngestionPipeline,
        mailbox_factory: MailboxFactory = ImapMailbox,
        state: SyncStateStore | None = None,
        backfill_days: int = BACKFILL_DAYS,
        keepalive_interval: float = KEEPALIVE_SECONDS,
    ) -> None:
        self.account = account
        self._pipeline = pipeline
        self._mailbox_factory = mailbox_factory
        self._state = state
        self._backfill_days = backfill_days
        self._keepalive_interval = keepalive_interval
        self._stop_event = asyncio.Event()
        self._last_keep_alive = time.monotonic()
        self.processed = 0

    def stop(self) -> None:
        """Ask the worker to finish the current message and shut down."""
        logger.info("Stop requested for %s", self.account.name)
        self._stop_event.set()

    async def run(self) -> None:
        """Connect, backfill, then follow live updates until stopped.

        Raises:
            MailboxError: if the connection cannot be established, or the
                live IDLE loop loses the server.
        """
        mailbox = await self.connect()
        try:
            for folder in await self.discover_folders(mailbox):
                if self._stop_event.is_set():
                    break
                await self._backfill(mailbox, folder)
            if not self._stop_event.is_set():
                await self._follow_inbox(mailbox)
        finally:
            await mailbox.logout()
        logger.info("Sync stopped for %s (%d message(s) processed)", self.account.name, self.processed)

    async def connect(self) -> Mailbox:
        logger.info("Connecting to %s (%s)", self.account.name, self.account.user)
        mailbox = self._mailbox_factory(self.account)
        try:
            await mailbox.connect()
        except MailboxError as exc:
            logger.error("Failed to connect %s: %s", self.account.name, exc)
            raise
        logger.info("Connected to %s", self.account.name)
        self._last_keep_alive = time.monotonic()
        return mailbox

    async def discover_folders(self, mailbox: Mailbox) -> list[str]:
        """List the account's folders and keep the inbox/sent/drafts ones."""
        folders = filter_sync_folders(await mailbox.list_folders())
        logger.info("%s: syncing folders %s", self.account.name, folders)
        return folders

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _backfill(self, mailbox: Mailbox, folder: str) -> None:
        """Process the folder's messages from the backfill window, oldest first."""
        since = datetime.now(timezone.utc) - timedelta(days=self._backfill_days)
        logger.info("%s: processing folder %s since %s", self.account.name, folder, since.date())
        try:
            uid_validity = await mailbox.select(folder)
            async for raw in mailbox.fetch_since(since):
                await self._handle(raw, folder, uid_validity)
                if self._stop_event.is_set():
                    break
                await self._keep_alive_if_due(mailbox)
        except MailboxError as exc:
            logger.error("%s: failed to process folder %s: %s", self.account.name, folder, exc)
            return
        logger.info("%s: completed folder %s", self.account.name, folder)

    async def _follow_inbox(self, mailbox: Mailbox) -> None:
        """IDLE on INBOX, processing arrivals and probing the connection."""
        logger.info("Setting up IDLE mode for %s", self.account.name)
        uid_validity = await mailbox.select(LIVE_FOLDER)

        while not self._stop_event.is_set():
            uids = await mailbox.wait_for_changes(self._keepalive_interval)
            if uids:
                logger.info("%s: %d new email(s) detected", self.account.name, len(uids))
                try:
                    async for raw in mailbox.fetch_uids(uids):
                        await self._handle(raw, LIVE_FOLDER, uid_validity)
                except MailboxError as exc:
                    logger.error("%s: failed to process new email: %s", self.account.name, exc)

            if uids:
                await self._keep_alive_if_due(mailbox)
            else:
                await self._send_keep_alive(mailbox)

    async def _keep_alive_if_due(self, mailbox: Mailbox) -> None:
        """NOOP once ``keepalive_interval`` has passed since the last one."""
        if time.monotonic() - self._last_keep_alive >= self._keepalive_interval:
            await self._send_keep_alive(mailbox)

    async def _send_keep_alive(self, mailbox: Mailbox) -> None:
        await mailbox.keep_alive()
        self._last_keep_alive = time.monotonic()

    async def _handle(self, raw: RawMessage, folder: str, uid_validity: int) -> None:
        name = self.account.name
        if self._already_ingested(folder, uid_validity, raw.uid):
            logger.debug("%s: UID %d in %s already ingested", name, raw.uid, folder)
            return
        try:
            record = await self._pipeline.process(raw, name, folder)
        except Exception as exc:  # noqa: BLE001
            logger.error("%s: pipeline failed on UID %d: %s", name, raw.uid, exc, exc_info=True)
            return
        if record is None:
            return
        self.processed += 1
        if self._state is None:
            return
        try:
            self._state.mark_processed(name, folder, uid_validity, raw.uid, record.id)
        except sqlite3.Error as exc:
            # The record is already indexed; the next start may re-ingest it.
            logger.warning("%s: could not record UID %d in %s as ingested: %s", name, raw.uid, folder, exc)

    def _already_ingested(self, folder: str, uid_validity: int, uid: int) -> bool:
        if self._state is None:
            return False
        try:
            return self._state.is_processed(self.account.name, folder, uid_validity, uid)
        except sqlite3.Error as exc:
            logger.error("%s: sync state lookup failed for UID %d in %s: %s", self.account.name, uid, folder, exc)
            return False
