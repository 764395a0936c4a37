#!/usr/bin/env python3
"""
Command line for SearchAnywhere.

Usage:
    sa search "query"                  - Ranked matches from apps, settings and files
    sa open "query" --index 2          - Open the second match
    sa history [--forget N]            - Recently used items
    sa reindex                         - Rebuild the file index
    sa status                          - Index and process status
    sa config reindex-on-startup on    - Change a preference
    sa daemon                          - Run the service until interrupted
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import click
from rich.console import Console
from rich.table import Table

from ..daemon.aggregator import UiState
from ..daemon.bus import Message
from ..daemon.config import Config
from ..daemon.indexers import IndexBuildError
from ..daemon.main import SearchAnywhereDaemon, main as run_daemon, setup_logging
from ..daemon.models import DisplayItem, item_kind
from ..daemon.session import DeleteFromHistory, Open
from ..daemon.streams import first_matching

console = Console()

SEARCH_TIMEOUT = 30.0


def load_config(ctx: click.Context) -> Config:
    path = ctx.obj.get("config_path")
    return Config.load(Path(path) if path else None)


def config_file(ctx: click.Context) -> Path:
    """The file preferences are written to."""
    path = ctx.obj.get("config_path")
    if path:
        return Path(path)
    for candidate in Config.default_locations():
        if candidate.exists():
            return candidate
    return Path.home() / ".config" / "searchanywhere" / "config.yaml"


@asynccontextmanager
async def running_daemon(config: Config, rebuild: bool = False) -> AsyncIterator[SearchAnywhereDaemon]:
    daemon = SearchAnywhereDaemon(config)
    await daemon.start(prepare_index=False)
    try:
        await daemon.prepare_index(rebuild=rebuild)
        yield daemon
    finally:
        await daemon.stop()


async def settled_search(daemon: SearchAnywhereDaemon, text: str) -> UiState:
    """Issue a query and wait for the state of exactly that query."""
    queries = daemon.session.on_search_changed(text)
    files_query = queries if daemon.session.files_allowed else ()
    return await first_matching(
        daemon.aggregator.state,
        lambda s: not s.placeholder and s.query == queries and s.files_query == files_query,
        timeout=SEARCH_TIMEOUT,
    )


async def settled_history(daemon: SearchAnywhereDaemon) -> UiState:
    return await first_matching(daemon.aggregator.state, lambda s: not s.placeholder, timeout=SEARCH_TIMEOUT)


def display_items(title: str, rows: list) -> None:
    """Display (item, weight) rows in a table."""
    if not rows:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan", no_wrap=False)
    table.add_column("Kind", style="magenta")
    table.add_column("Weight", justify="right")

    for i, (item, weight) in enumerate(rows, 1):
        table.add_row(str(i), item.display_name, item_kind(item).value, "" if weight is None else str(weight))

    console.print(table)


def pick(items: tuple, index: int) -> Optional[DisplayItem]:
    if 1 <= index <= len(items):
        return items[index - 1]
    console.print(f"[red]No item #{index}[/red] ({len(items)} available)")
    return None


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx, config_path: Optional[str], verbose: bool):
    """SearchAnywhere - one query over apps, settings and files."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand != "daemon":
        config = load_config(ctx)
        setup_logging(config.paths.data_dir / "logs", level="DEBUG" if verbose else "WARNING")


@cli.command()
@click.argument("query")
@click.option("--limit", "-l", default=20, help="Max results")
@click.pass_context
def search(ctx, query: str, limit: int):
    """Search apps, settings and files."""
    asyncio.run(search_items(load_config(ctx), query, limit))


async def search_items(config: Config, query: str, limit: int):
    async with running_daemon(config) as daemon:
        state = await settled_search(daemon, query)
        rows = [(w.item, w.weight) for w in state.items[:limit]]
        display_items(f"Results for {query!r} ({len(state.items)} total)", rows)
        if "files" in state.loading:
            console.print("[dim]File search unavailable[/dim]")


@cli.command(name="open")
@click.argument("query")
@click.option("--index", "-n", default=1, help="Result number to open")
@click.pass_context
def open_item(ctx, query: str, index: int):
    """Open one search result and record it in history."""
    ok = asyncio.run(open_result(load_config(ctx), query, index))
    if not ok:
        sys.exit(1)


async def open_result(config: Config, query: str, index: int) -> bool:
    async with running_daemon(config) as daemon:
        state = await settled_search(daemon, query)
        item = pick(tuple(w.item for w in state.items), index)
        if item is None:
            return False

        if await daemon.session.on_item_action(Open(item)):
            console.print(f"[green]✓[/green] Opened {item.display_name}")
            return True
        console.print(f"[red]Could not open[/red] {item.display_name}")
        return False


@cli.command()
@click.option("--forget", "-f", type=int, help="Remove entry N from history")
@click.pass_context
def history(ctx, forget: Optional[int]):
    """Show recently used items."""
    asyncio.run(show_history(load_config(ctx), forget))


async def show_history(config: Config, forget: Optional[int]):
    async with running_daemon(config) as daemon:
        state = await settled_history(daemon)
        items = state.history or ()

        if forget is not None:
            item = pick(items, forget)
            if item is not None and await daemon.session.on_item_action(DeleteFromHistory(item)):
                console.print(f"[green]Forgot[/green] {item.display_name}")
            return

        display_items("History", [(item, None) for item in items])


@cli.command()
@click.pass_context
def reindex(ctx):
    """Rebuild the file index."""
    asyncio.run(rebuild_index(load_config(ctx)))


async def rebuild_index(config: Config):
    try:
        async with running_daemon(config, rebuild=True) as daemon:
            status = daemon.get_status()["index"]
            console.print(f"Index: {status['state']}")
    except IndexBuildError as e:
        console.print(f"[red]Index build failed:[/red] {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show index and process status."""
    asyncio.run(show_status(load_config(ctx)))


async def show_status(config: Config):
    async with running_daemon(config) as daemon:
        data = daemon.get_status()

    table = Table(title="SearchAnywhere")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Version", data["version"])
    table.add_row("Scan root", data["config"]["scan_root"])
    table.add_row("Index", data["index"]["state"])
    table.add_row("Indexed files", str(data["index"]["indexed_count"]))
    table.add_row("Reindex on startup", "on" if data["config"]["reindex_on_startup"] else "off")
    for kind, count in data["history"].items():
        table.add_row(f"History ({kind})", str(count))
    table.add_row("Memory", f"{data['stats']['memory_mb']:.1f} MB")
    console.print(table)


@cli.group(name="config")
def config_group():
    """Change preferences."""
    pass


@config_group.command(name="reindex-on-startup")
@click.argument("value", type=click.Choice(["on", "off"]))
@click.pass_context
def reindex_on_startup(ctx, value: str):
    """Rebuild the file index every time the service starts."""
    config = load_config(ctx)
    config.index.reindex_on_startup = value == "on"

    path = config_file(ctx)
    config.save(path)
    console.print(f"[green]✓[/green] reindex_on_startup = {value} ({path})")


@cli.command()
@click.pass_context
def daemon(ctx):
    """Run the service until interrupted, printing messages."""
    console.print("[cyan]Starting SearchAnywhere daemon...[/cyan]")
    try:
        asyncio.run(run_daemon(ctx.obj.get("config_path"), on_message=print_message))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except IndexBuildError as e:
        console.print(f"[red]Daemon stopped:[/red] {e}")
        sys.exit(1)


async def print_message(message: Message) -> None:
    console.print(f"[bold]{message.type}[/bold] {message.text}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
