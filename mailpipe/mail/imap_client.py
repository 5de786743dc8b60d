"""IMAP mailbox client — wraps IMAPClient behind a small async API."""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from imapclient import IMAPClient

from mailpipe.mail.parser import parse_message
from mailpipe.mail.types import AccountConfig, RawMessage

logger = logging.getLogger(__name__)

_SOCKET_TIMEOUT_SECONDS = 60.0


class MailboxError(Exception):
    """Raised when connecting to or talking to an IMAP server fails."""


class ImapMailbox:
    """One long-lived IMAP connection for a single account.

    IMAPClient is blocking, so every server round-trip runs in a worker
    thread.  Calls must not overlap: the owning worker awaits each one
    before issuing the next, which keeps the connection strictly
    sequential.

    Usage::

        mailbox = ImapMailbox(account)
        await mailbox.connect()
        uid_validity = await mailbox.select("INBOX")
        async for raw in mailbox.fetch_since(since):
            ...
    """

    def __init__(self, account: AccountConfig, timeout: float = _SOCKET_TIMEOUT_SECONDS) -> None:
        self._account = account
        self._timeout = timeout
        self._client: IMAPClient | None = None
        self._authenticated = False
        self._uid_next = 1

    @property
    def authenticated(self) -> bool:
        return self._client is not None and self._authenticated

    # ── Connection ─────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection and log in.

        Raises:
            MailboxError: on any network, TLS or authentication failure.
        """
        try:
            await asyncio.to_thread(self._connect)
        except Exception as exc:  # noqa: BLE001
            self._client = None
            self._authenticated = False
            raise MailboxError(
                f"Cannot connect to {self._account.host}:{self._account.port} "
                f"as {self._account.user}: {exc}"
            ) from exc

    def _connect(self) -> None:
        client = IMAPClient(
            self._account.host,
            port=self._account.port,
            ssl=self._account.ssl,
            timeout=self._timeout,
        )
        client.login(self._account.user, self._account.password)
        self._client = client
        self._authenticated = True

    async def logout(self) -> None:
        """Log out; errors are logged since the connection is being discarded anyway."""
        if self._client is None:
            return
        client, self._client = self._client, None
        self._authenticated = False
        try:
            await asyncio.to_thread(client.logout)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Logout from %s failed: %s", self._account.name, exc)

    async def keep_alive(self) -> bool:
        """Send a NOOP while authenticated.

        Failures are logged and swallowed; the connection is left as is.
        Returns True if the NOOP succeeded.
        """
        if not self.authenticated:
            return False
        try:
            await asyncio.to_thread(self._require().noop)
        except Exception as exc:  # noqa: BLE001
            logger.error("NOOP failed for %s: %s", self._account.name, exc)
            return False
        return True

    # ── Folders ────────────────────────────────────────────────────────────────

    async def list_folders(self) -> list[str]:
        folders = await self._call(self._require().list_folders)
        return [name for _flags, _delimiter, name in folders]

    async def select(self, folder: str, readonly: bool = True) -> int:
        """Open a folder; returns its UIDVALIDITY and remembers UIDNEXT."""
        info: dict[bytes, Any] = await self._call(
            self._require().select_folder, folder, readonly=readonly
        )
        self._uid_next = int(info.get(b"UIDNEXT", 1))
        return int(info.get(b"UIDVALIDITY", 0))

    # ── Messages ───────────────────────────────────────────────────────────────

    async def fetch_since(self, since: datetime) -> AsyncIterator[RawMessage]:
        """Yield messages of the selected folder received on or after ``since``.

        Envelopes for the whole window are fetched in one round-trip and
        ordered by arrival date; bodies are then downloaded one at a time as
        the caller consumes the iterator.
        """
        client = self._require()
        uids: list[int] = await self._call(client.search, ["SINCE", since.date()])
        if not uids:
            return
        envelopes: dict[int, dict[bytes, Any]] = await self._call(
            client.fetch, uids, ["ENVELOPE", "INTERNALDATE"]
        )
        ordered = sorted(
            (uid for uid, data in envelopes.items() if data.get(b"ENVELOPE") is not None),
            key=lambda uid: (_sort_date(envelopes[uid].get(b"INTERNALDATE")), uid),
        )
        async for raw in self.fetch_uids(ordered):
            yield raw

    async def fetch_uids(self, uids: list[int]) -> AsyncIterator[RawMessage]:
        """Download and parse each UID of the selected folder, in the given order."""
        client = self._require()
        for uid in uids:
            data: dict[int, dict[bytes, Any]] = await self._call(
                client.fetch, [uid], ["BODY.PEEK[]"]
            )
            body = data.get(uid, {}).get(b"BODY[]")
            if not body:
                logger.warning("UID %d in %s returned no body", uid, self._account.name)
                continue
            yield parse_message(body, uid)

    async def wait_for_changes(self, timeout: float) -> list[int]:
        """Hold an IDLE on the selected folder for up to ``timeout`` seconds.

        Returns the UIDs of messages that arrived, oldest first, or an empty
        list if the server reported nothing new before the timeout.
        """
        return await self._call(self._idle, timeout)

    def _idle(self, timeout: float) -> list[int]:
        client = self._require()
        client.idle()
        try:
            responses = client.idle_check(timeout=timeout)
        finally:
            client.idle_done()
        if not any(
            isinstance(r, tuple) and len(r) >= 2 and r[1] == b"EXISTS" for r in responses
        ):
            return []
        # "N:*" always matches the last message, so filter to genuinely new UIDs.
        uids = client.search(["UID", f"{self._uid_next}:*"])
        new = sorted(uid for uid in uids if uid >= self._uid_next)
        if new:
            self._uid_next = new[-1] + 1
        return new

    # ── Internal ───────────────────────────────────────────────────────────────

    def _require(self) -> IMAPClient:
        if self._client is None:
            raise MailboxError(f"{self._account.name} is not connected")
        return self._client

    async def _call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except MailboxError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise MailboxError(f"IMAP error for {self._account.name}: {exc}") from exc


def _sort_date(value: object) -> float:
    if isinstance(value, datetime):
        try:
            return value.timestamp()
        except (OverflowError, OSError, ValueError):
            return 0.0
    return 0.0


def filter_sync_folders(names: list[str]) -> list[str]:
    """Keep folders whose name contains inbox, sent or drafts (case-insensitive)."""
    keep = ("inbox", "sent", "drafts")
    return [name for name in names if any(k in name.lower() for k in keep)]
