"""
CLI entrypoint for the filter stream client.
"""
import asyncio
import sys
from typing import Optional

import httpx
import typer
from loguru import logger

from filter_stream.client.connection_manager import ConnectionManager
from filter_stream.client.filter_client import FilterClient, FilterCreationError, FilterSession
from filter_stream.client.visualizer import Visualizer
from filter_stream.shared.config import settings
from filter_stream.shared.models import FilterOptions

app = typer.Typer(help="Filtered live event stream client")


def configure_logging(log_file: Optional[str] = None):
    logger.remove()
    logger.add(log_file or sys.stderr, level=settings.LOG_LEVEL.upper())


async def _watch(options: FilterOptions, filter_key: Optional[str], duration: float):
    manager = ConnectionManager(settings)
    visualizer = Visualizer(manager)
    filter_client = FilterClient(settings)
    session = FilterSession(manager, filter_client)
    try:
        if filter_key:
            manager.activate(filter_key)
        else:
            await session.apply(options)
        await visualizer.run(duration)
    finally:
        await manager.aclose()
        await filter_client.aclose()


@app.command()
def watch(
    repository: str = typer.Option("", help="Only events from this repository (DID)"),
    path_prefix: str = typer.Option("", help="Only records whose path starts with this prefix"),
    keyword: str = typer.Option("", help="Only records containing this keyword"),
    filter_key: Optional[str] = typer.Option(None, help="Reuse an existing filter key instead of creating one"),
    duration: float = typer.Option(60.0, help="How long to stream, in seconds"),
    log_file: Optional[str] = typer.Option(None, help="Write logs here instead of stderr"),
):
    """Subscribe to the filtered stream and show it in a live dashboard."""
    configure_logging(log_file)
    options = FilterOptions(repository=repository, path_prefix=path_prefix, keyword=keyword)
    if not filter_key and options.is_empty:
        typer.echo("Give at least one of --repository, --path-prefix, --keyword or --filter-key.")
        raise typer.Exit(1)

    try:
        asyncio.run(_watch(options, filter_key, duration))
    except FilterCreationError as e:
        typer.echo(f"Failed to create filter: {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


@app.command("create-filter")
def create_filter(
    repository: str = typer.Option(""),
    path_prefix: str = typer.Option(""),
    keyword: str = typer.Option(""),
):
    """Create a filter on the backend and print its key."""
    configure_logging()
    options = FilterOptions(repository=repository, path_prefix=path_prefix, keyword=keyword)

    async def _create():
        filter_client = FilterClient(settings)
        try:
            return await filter_client.create_filter(options)
        finally:
            await filter_client.aclose()

    try:
        typer.echo(asyncio.run(_create()))
    except FilterCreationError as e:
        typer.echo(f"Failed to create filter: {e}")
        raise typer.Exit(1)


@app.command()
def status():
    """Query the backend status endpoint."""

    async def _status():
        filter_client = FilterClient(settings)
        try:
            return await filter_client.backend_status()
        finally:
            await filter_client.aclose()

    try:
        typer.echo(asyncio.run(_status()))
    except httpx.HTTPError as e:
        typer.echo(f"Backend unreachable: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
