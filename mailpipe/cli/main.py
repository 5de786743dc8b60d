"""CLI entry point for the mail ingestion pipeline."""

import logging

import click
from dotenv import load_dotenv

from mailpipe.cli.query import MailQueryEngine
from mailpipe.config import Settings

logger = logging.getLogger(__name__)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Mail pipeline — sync, search, classify, and reply commands."""
    load_dotenv()
    if ctx.invoked_subcommand == "run":
        # The sync service builds its own clients and configures logging at INFO.
        return
    logging.basicConfig(
        level=logging.WARNING,  # keep CLI output clean; errors still surface
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    ctx.obj = MailQueryEngine.from_settings(Settings.from_env())


# Import and register commands after cli is defined to avoid circular imports.
from mailpipe.cli.commands import (  # noqa: E402
    categorize,
    cleanup,
    embed,
    insights,
    reply,
    run,
    search,
    sentiment,
    show,
    similar,
)

for _command in (run, search, show, categorize, reply, sentiment, similar, insights, embed, cleanup):
    cli.add_command(_command)
