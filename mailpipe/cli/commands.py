"""CLI command implementations — all commands delegate to MailQueryEngine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailpipe.processing.types import Category, EmailRecord

if TYPE_CHECKING:
    from mailpipe.cli.query import MailQueryEngine

logger = logging.getLogger(__name__)
console = Console(width=200)

T = TypeVar("T")

_CATEGORY_STYLE: dict[str, str] = {
    Category.INTERESTED.value: "green",
    Category.MEETING_BOOKED.value: "cyan",
    Category.NOT_INTERESTED.value: "dim",
    Category.SPAM.value: "red",
    Category.OUT_OF_OFFICE.value: "yellow",
}
_CATEGORY_CHOICE = click.Choice([c.value for c in Category])


def _run(engine: MailQueryEngine, coro: Awaitable[T]) -> T:
    """Run one command coroutine, then close the engine's async clients."""

    async def _inner() -> T:
        try:
            return await coro
        finally:
            await engine.aclose()

    return asyncio.run(_inner())


def _styled(category: str | None) -> str:
    if not category:
        return ""
    style = _CATEGORY_STYLE.get(category, "white")
    return f"[{style}]{category}[/{style}]"


async def _load(engine: MailQueryEngine, email_id: str) -> EmailRecord | None:
    record = await engine.get(email_id)
    if record is None:
        console.print(f"[red]Email not found: {email_id}[/red]")
    return record


# ── run ──────────────────────────────────────────────────────────────────────


@click.command()
def run() -> None:
    """Start IMAP sync for every configured account (runs until interrupted)."""
    from mailpipe.agent.supervisor import main

    main()


# ── search / show ────────────────────────────────────────────────────────────


@click.command()
@click.argument("query", required=False)
@click.option("--account", default=None, help="Only this account.")
@click.option("--folder", default=None, help="Only this folder.")
@click.option("--category", type=_CATEGORY_CHOICE, default=None, help="Only this category.")
@click.option("--page", default=1, show_default=True, help="Result page.")
@click.option("--limit", default=20, show_default=True, help="Results per page.")
@click.pass_obj
def search(
    engine: MailQueryEngine,
    query: str | None,
    account: str | None,
    folder: str | None,
    category: str | None,
    page: int,
    limit: int,
) -> None:
    """Full-text search over indexed emails."""
    filters = {"account": account, "folder": folder, "category": category}
    result = _run(engine, engine.search(query, filters, page=page, limit=limit))

    if not result.hits:
        console.print("[yellow]No emails matched.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", max_width=36)
    table.add_column("Subject", max_width=40)
    table.add_column("From", max_width=28)
    table.add_column("Date", width=12)
    table.add_column("Account", max_width=14)
    table.add_column("Category", width=16)

    for hit in result.hits:
        table.add_row(
            str(hit.get("id", "")),
            str(hit.get("subject", "")),
            str(hit.get("from", "")),
            str(hit.get("date", ""))[:10],
            str(hit.get("account", "")),
            _styled(hit.get("category")),
        )

    pages = max(1, -(-result.total // limit))
    console.print(table)
    console.print(f"[dim]{result.total} match(es) — page {page}/{pages}[/dim]")


@click.command()
@click.argument("email_id")
@click.pass_obj
def show(engine: MailQueryEngine, email_id: str) -> None:
    """Show a single indexed email."""
    record = _run(engine, engine.get(email_id))
    if record is None:
        console.print(f"[red]Email not found: {email_id}[/red]")
        raise SystemExit(1)

    header = (
        f"[bold]From:[/bold] {record.sender}\n"
        f"[bold]To:[/bold] {record.recipient}\n"
        f"[bold]Date:[/bold] {record.date:%Y-%m-%d %H:%M}\n"
        f"[bold]Account:[/bold] {record.account} / {record.folder}\n"
        f"[bold]Category:[/bold] {_styled(record.category.value if record.category else None) or 'unclassified'}"
    )
    if record.attachments:
        names = ", ".join(f"{a.filename} ({a.size} B)" for a in record.attachments)
        header += f"\n[bold]Attachments:[/bold] {names}"
    console.print(Panel(f"{header}\n\n{record.text}", title=record.subject, border_style="blue"))


# ── AI actions ───────────────────────────────────────────────────────────────


@click.command()
@click.argument("email_id")
@click.option("--set", "manual", type=_CATEGORY_CHOICE, default=None,
              help="Set this category instead of asking the classifier.")
@click.pass_obj
def categorize(engine: MailQueryEngine, email_id: str, manual: str | None) -> None:
    """Re-classify an email, or set its category by hand."""

    async def _categorize() -> EmailRecord | None:
        record = await _load(engine, email_id)
        if record is None:
            return None
        if manual:
            return await engine.set_category(email_id, Category(manual))
        return await engine.recategorize(record)

    record = _run(engine, _categorize())
    if record is None:
        raise SystemExit(1)
    console.print(
        f"Email [dim]{record.id}[/dim] is now "
        f"{_styled(record.category.value if record.category else None)}"
    )


@click.command()
@click.argument("email_id")
@click.option("--options", "count", default=0, help="Generate N alternative replies.")
@click.option("--contextual", is_flag=True, help="Use similar past emails as context.")
@click.pass_obj
def reply(engine: MailQueryEngine, email_id: str, count: int, contextual: bool) -> None:
    """Draft a reply to an indexed email."""

    async def _reply() -> list[str] | None:
        record = await _load(engine, email_id)
        if record is None:
            return None
        if count > 0:
            return await engine.reply_options(record, count)
        if contextual:
            return [await engine.contextual_reply(record)]
        return [await engine.reply(record)]

    drafts = _run(engine, _reply())
    if drafts is None:
        raise SystemExit(1)
    for i, draft in enumerate(drafts, start=1):
        title = f"Option {i}" if len(drafts) > 1 else "Suggested reply"
        console.print(Panel(draft, title=title, border_style="green"))


@click.command()
@click.argument("email_id")
@click.pass_obj
def sentiment(engine: MailQueryEngine, email_id: str) -> None:
    """Analyse the sentiment of an indexed email."""

    async def _sentiment() -> object:
        record = await _load(engine, email_id)
        if record is None:
            return None
        return await engine.sentiment(record)

    result = _run(engine, _sentiment())
    if result is None:
        raise SystemExit(1)
    console.print(
        f"[bold]{result.sentiment}[/bold] "  # type: ignore[attr-defined]
        f"(confidence {result.confidence:.2f}) — {result.summary}"  # type: ignore[attr-defined]
    )


# ── RAG actions ──────────────────────────────────────────────────────────────


@click.command()
@click.argument("text")
@click.option("--limit", default=5, show_default=True, help="Maximum results.")
@click.option("--category", type=_CATEGORY_CHOICE, default=None, help="Only this category.")
@click.pass_obj
def similar(engine: MailQueryEngine, text: str, limit: int, category: str | None) -> None:
    """Find stored emails semantically similar to TEXT."""
    results = _run(
        engine,
        engine.similar(text, limit=limit, category=Category(category) if category else None),
    )

    if not results:
        console.print("[yellow]No similar emails found.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=48)
    table.add_column("Category", width=16)
    table.add_column("Score", width=6)
    for i, result in enumerate(results, start=1):
        record = result.record
        table.add_row(
            str(i),
            record.subject,
            _styled(record.category.value if record.category else None),
            f"{result.similarity:.2f}",
        )
    console.print(f"\nEmails similar to [bold]{text!r}[/bold]\n")
    console.print(table)


@click.command()
@click.argument("email_id")
@click.pass_obj
def insights(engine: MailQueryEngine, email_id: str) -> None:
    """Similar emails, a contextual reply and insights for an indexed email."""

    async def _insights() -> object:
        record = await _load(engine, email_id)
        if record is None:
            return None
        return await engine.insights(record)

    result = _run(engine, _insights())
    if result is None:
        raise SystemExit(1)
    console.print(f"[bold]{len(result.similar)}[/bold] similar email(s)")  # type: ignore[attr-defined]
    for s in result.similar:  # type: ignore[attr-defined]
        console.print(f"  • {s.record.subject} [dim]({s.similarity:.0%})[/dim]")
    console.print(Panel(result.suggested_reply, title="Contextual reply", border_style="green"))  # type: ignore[attr-defined]
    for line in result.insights:  # type: ignore[attr-defined]
        console.print(f"  - {line}")


@click.command()
@click.argument("email_ids", nargs=-1, required=True)
@click.pass_obj
def embed(engine: MailQueryEngine, email_ids: tuple[str, ...]) -> None:
    """Store (or refresh) embeddings for the given indexed emails."""

    async def _embed() -> dict[str, bool] | None:
        if not engine.embeddings.configured:
            return None
        return await engine.embed(list(email_ids))

    results = _run(engine, _embed())
    if results is None:
        console.print("[yellow]Vector store not configured (set VECTOR_STORE_DIR).[/yellow]")
        return
    ok = sum(results.values())
    for email_id, indexed in results.items():
        if not indexed:
            console.print(f"[red]Failed:[/red] {email_id}")
    console.print(
        f"[green]Done.[/green] {ok} indexed"
        + (f", [red]{len(results) - ok} failed[/red]" if ok < len(results) else "")
        + "."
    )


@click.command()
@click.option("--days", default=90, show_default=True, help="Delete embeddings older than this.")
@click.pass_obj
def cleanup(engine: MailQueryEngine, days: int) -> None:
    """Delete old embeddings from the vector store."""
    deleted = _run(engine, engine.cleanup(days))
    console.print(f"Cleaned up [bold]{deleted}[/bold] embedding(s) older than {days} day(s).")
