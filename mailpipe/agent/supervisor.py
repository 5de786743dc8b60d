"""Sync supervisor — one tracked task per account, plus the service entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from dotenv import load_dotenv

from mailpipe.mail.types import AccountConfig

if TYPE_CHECKING:
    from mailpipe.config import Settings

logger = logging.getLogger(__name__)

RUNNING = "running"
FINISHED = "finished"
FAILED = "failed"
CANCELLED = "cancelled"


class Worker(Protocol):
    """What the supervisor needs from a per-account worker."""

    account: AccountConfig

    async def run(self) -> None: ...

    def stop(self) -> None: ...


#: Builds the worker for one account.
WorkerFactory = Callable[[AccountConfig], Worker]


@dataclass
class AccountStatus:
    """Observable outcome of one account's task."""

    account: str
    state: str = RUNNING
    error: BaseException | None = None


# ── Supervisor ─────────────────────────────────────────────────────────────────


class SyncSupervisor:
    """Starts one worker task per configured account and reports how each ended.

    Tasks share no mutable state and are never joined to each other: an
    exception in one account's task is captured on that task's status and
    never reaches the others.

    Account names key ``workers``, ``tasks`` and ``statuses``, so they must be
    unique; a duplicate raises ValueError at construction.

    Usage::

        supervisor = SyncSupervisor(settings.accounts, worker_factory)
        supervisor.start()
        statuses = await supervisor.wait()
    """

    def __init__(self, accounts: list[AccountConfig], worker_factory: WorkerFactory) -> None:
        names = [a.name for a in accounts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")
        self._accounts = list(accounts)
        self._worker_factory = worker_factory
        self.workers: dict[str, Worker] = {}
        self.tasks: dict[str, asyncio.Task[None]] = {}
        self.statuses: dict[str, AccountStatus] = {}

    def start(self) -> None:
        """Create and schedule a task for every account.  Must run inside a loop."""
        if not self._accounts:
            logger.warning("No IMAP accounts configured")
            return
        logger.info("Starting IMAP sync for %d account(s)", len(self._accounts))
        for account in self._accounts:
            worker = self._worker_factory(account)
            task = asyncio.create_task(worker.run(), name=f"sync:{account.name}")
            self.workers[account.name] = worker
            self.tasks[account.name] = task
            self.statuses[account.name] = AccountStatus(account.name)
            task.add_done_callback(lambda t, name=account.name: self._on_done(name, t))

    def stop(self) -> None:
        """Ask every worker to stop after its current message."""
        for worker in self.workers.values():
            worker.stop()

    def cancel(self) -> None:
        for task in self.tasks.values():
            task.cancel()

    async def wait(self) -> dict[str, AccountStatus]:
        """Wait for every task to end and return the final statuses."""
        if self.tasks:
            await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        return self.statuses

    def _on_done(self, name: str, task: asyncio.Task[None]) -> None:
        status = self.statuses[name]
        if task.cancelled():
            status.state = CANCELLED
            logger.warning("Account sync cancelled for %s", name)
            return
        exc = task.exception()
        if exc is not None:
            status.state = FAILED
            status.error = exc
            logger.error("Account sync failed for %s: %s", name, exc)
        else:
            status.state = FINISHED
            logger.info("Account sync finished for %s", name)


# ── Entry point ────────────────────────────────────────────────────────────────


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(level)
    for noisy in ("httpx", "elastic_transport", "imapclient"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main() -> None:
    """Start the sync service.  Called by `python -m mailpipe` and `mailpipe run`."""
    load_dotenv()
    configure_logging()

    from mailpipe.config import Settings

    try:
        asyncio.run(run_service(Settings.from_env()))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted — goodbye")


async def run_service(settings: Settings) -> dict[str, AccountStatus]:
    """Wire up every client from settings, run all accounts, then clean up."""
    from mailpipe.agent.scheduler import create_retention_scheduler
    from mailpipe.agent.worker import MailboxSyncWorker
    from mailpipe.notify.dispatcher import NotificationDispatcher
    from mailpipe.processing.classifier import EmailClassifier
    from mailpipe.processing.pipeline import IngestionPipeline
    from mailpipe.storage.search_index import SearchIndex
    from mailpipe.storage.sync_state import SyncStateStore
    from mailpipe.storage.vector_store import EmbeddingStore

    index = SearchIndex(settings.elasticsearch_url, settings.elasticsearch_index)
    classifier = EmailClassifier(
        api_key=settings.anthropic_api_key,
        model=settings.classifier_model,
        reply_model=settings.reply_model,
    )
    embeddings = EmbeddingStore(persist_dir=settings.vector_store_dir)
    notifier = NotificationDispatcher(
        slack_webhook_url=settings.slack_webhook_url,
        webhook_url=settings.webhook_url,
        frontend_url=settings.frontend_url,
    )
    state = SyncStateStore(settings.sync_state_db)
    pipeline = IngestionPipeline(classifier, index, embeddings=embeddings, notifier=notifier)

    scheduler = None
    if embeddings.configured:
        scheduler = create_retention_scheduler(
            embeddings, settings.retention_days, settings.retention_time
        )
        scheduler.start()

    supervisor = SyncSupervisor(
        settings.accounts,
        lambda account: MailboxSyncWorker(account, pipeline, state=state),
    )

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, supervisor.stop)
    except (NotImplementedError, AttributeError):
        pass

    try:
        await index.ensure_index()
        supervisor.start()
        statuses = await supervisor.wait()
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await notifier.aclose()
        await index.close()
        embeddings.close()
        state.close()

    for status in statuses.values():
        logger.info("%s: %s%s", status.account, status.state, f" ({status.error})" if status.error else "")
    return statuses
