"""
Command-line interface for digester.

Provides commands to run one pipeline pass, initialize the database,
look channels up at their provider, and run diagnostic checks.

Usage:
    digester run                     # Poll, clean, schedule and send once
    digester init-db                 # Initialize database
    digester search rss_feed xkcd.com
    digester health                  # Check database connectivity
"""

import asyncio
import sys

import click

from digester.channels.schemas import ChannelType
from digester.config.settings import get_settings
from digester.observability.logging import setup_logging
from digester.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Digester - email digests of feeds, releases and tweets."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"

    setup_logging()


@main.command()
@click.option("--metrics-port", type=int, default=None, help="Expose metrics on this port")
def run(metrics_port: int | None) -> None:
    """Run one pass of the pipeline."""
    from digester.channels.registry import build_adapters
    from digester.digests.messaging import SendgridProvider
    from digester.services.run_service import RunOrchestrator
    from digester.storage.database import Database
    from digester.storage.repository import DigesterRepository

    settings = get_settings()

    async def run_pass():
        if metrics_port:
            get_metrics().start_server(port=metrics_port)

        provider = SendgridProvider() if settings.sendgrid_configured else None

        async with Database() as db:
            orchestrator = RunOrchestrator(
                DigesterRepository(db),
                build_adapters(settings),
                provider,
                settings,
            )
            return await orchestrator.run_once()

    report = asyncio.run(run_pass())
    for key, value in report.summary().items():
        click.echo(f"{key}: {value}")

    sys.exit(0 if report.ok else 1)


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from digester.storage.database import Database
    from digester.storage.repository import DigesterRepository

    async def run_init():
        async with Database() as db:
            await DigesterRepository(db).create_tables()

        click.echo("Database initialized successfully")

    asyncio.run(run_init())


@main.command()
@click.argument("channel_type", type=click.Choice([t.value for t in ChannelType]))
@click.argument("query")
def search(channel_type: str, query: str) -> None:
    """Look a channel up at its provider."""
    from digester.channels.errors import SearchError
    from digester.channels.registry import build_adapters

    adapter = build_adapters().get(ChannelType(channel_type))
    if adapter is None:
        click.echo(f"No adapter configured for {channel_type}", err=True)
        sys.exit(2)

    try:
        channels = asyncio.run(adapter.search(query))
    except SearchError as e:
        click.echo(f"Search failed ({e.kind.value}): {e}", err=True)
        sys.exit(1)

    if not channels:
        click.echo("No channels found")
    for info in channels:
        click.echo(f"{info.name}\t{info.ext_id}\t{info.link}")


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        try:
            from digester.storage.database import Database
            async with Database() as db:
                results["postgres"] = await db.health_check()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        settings = get_settings()
        results["github_configured"] = settings.github_configured
        results["twitter_configured"] = settings.twitter_configured
        results["sendgrid_configured"] = settings.sendgrid_configured
        return results

    results = asyncio.run(check())
    for name, healthy in results.items():
        status = click.style("OK", fg="green") if healthy else click.style("NO", fg="red")
        click.echo(f"{name}: {status}")

    sys.exit(0 if results["postgres"] else 1)


if __name__ == "__main__":
    main()
