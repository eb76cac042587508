"""
CLI interface for tgingest.

Commands:
- fetch: recent messages for a channel (cache, then web or API backend)
- sessions: discover and validate session files
- export: write a cached batch to JSON, CSV, Parquet or Markdown
- cache-key: result-cache key for a cached batch
- stats: cache statistics
- init: write a configuration file interactively
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .cache import CacheManager
from .config import Config
from .errors import ConfigurationError, TGIngestError
from .export import EXPORT_FORMATS, default_export_path, export_messages
from .ingest import ChannelIngestor
from .sessions import SessionPool

console = Console()


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """Configure logging."""
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error: {escape(message)}[/red]")
    raise SystemExit(1)


def _open_cache(config: Config) -> CacheManager:
    return CacheManager(Path(config.data_dir), config.cache_db)


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Config file path')
@click.option('--data-dir', '-d', help='Data directory (cache database, exports)')
@click.option('--sessions-dir', '-s', help='Directory holding *.session files')
@click.option('--log-level', '-l', help='Log level')
@click.option('--log-file', type=click.Path(), help='Also log to this file')
@click.pass_context
def cli(ctx, config, data_dir, sessions_dir, log_level, log_file):
    """
    tgingest - Telegram channel message ingestion

    Fetches recent channel messages through the public preview pages or
    the authenticated API, respecting per-backend cooldowns and caching
    every batch.
    """
    ctx.ensure_object(dict)
    load_dotenv()

    try:
        cfg = Config.from_file(Path(config)) if config else Config.from_env()
    except ConfigurationError as e:
        _fail(str(e))

    if data_dir:
        cfg.data_dir = data_dir
    if sessions_dir:
        cfg.sessions_dir = sessions_dir
    if log_level:
        cfg.log_level = log_level
    if log_file:
        cfg.log_file = log_file

    ctx.obj['config'] = cfg
    setup_logging(cfg.log_level, cfg.log_file)


@cli.command()
@click.argument('channel')
@click.option('--pages', '-p', type=int, help='Maximum preview pages to scrape')
@click.option('--backend', '-b', 'backends', multiple=True,
              type=click.Choice(['web', 'api']),
              help='Backend preference order (repeatable)')
@click.option('--json', 'as_json', is_flag=True, help='Print messages as JSON')
@click.pass_context
def fetch(ctx, channel, pages, backends, as_json):
    """
    Fetch recent messages from a channel.

    CHANNEL can be @name, a bare username or a t.me link.

    Examples:

        tgingest fetch @durov

        tgingest fetch @durov --backend api --json

        tgingest fetch https://t.me/s/durov --pages 2
    """
    config = ctx.obj['config']

    if pages:
        config.max_pages = pages
    if backends:
        config.backend_order = list(backends)

    try:
        messages, hit_both = asyncio.run(_fetch_channel(config, channel))
    except TGIngestError as e:
        _fail(str(e))
    except Exception as e:
        _fail(f"{type(e).__name__}: {e}")

    if as_json:
        click.echo(json.dumps([m.to_dict() for m in messages], ensure_ascii=False, indent=2))
    else:
        table = Table(title=f"Messages from {channel}")
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Date", style="yellow")
        table.add_column("Text", style="green")

        for i, message in enumerate(messages, 1):
            date = message.date.strftime("%Y-%m-%d %H:%M") if message.date else "-"
            text = message.text if len(message.text) <= 120 else message.text[:117] + "..."
            table.add_row(str(i), date, escape(text))

        console.print(table)
        console.print(f"[green]{len(messages)} messages[/green]")

    if hit_both:
        console.print(
            "[yellow]Warning: both backends were rate limited; "
            "this request had to wait for a cooldown[/yellow]"
        )


async def _fetch_channel(config: Config, channel: str):
    """Internal async fetch implementation."""
    async with ChannelIngestor.from_config(config) as ingestor:
        return await ingestor.get_messages(channel)


@cli.command()
@click.option('--no-validate', is_flag=True, help='Only list files, do not connect')
@click.pass_context
def sessions(ctx, no_validate):
    """Discover and validate session files."""
    config = ctx.obj['config']

    if not no_validate:
        if not config.api_id or not config.api_hash:
            console.print("[red]Error: API credentials required[/red]")
            console.print("Set TG_API_ID and TG_API_HASH environment variables")
            console.print("\nGet credentials at: https://my.telegram.org")
            raise SystemExit(1)

    pool = SessionPool(
        Path(config.sessions_dir),
        api_id=config.api_id,
        api_hash=config.api_hash,
        suffix=config.session_suffix
    )

    try:
        found = pool.discover()
    except ConfigurationError as e:
        _fail(str(e))

    table = Table(title=f"Sessions in {config.sessions_dir}")
    table.add_column("Session", style="cyan")
    table.add_column("Status", style="green")

    if no_validate:
        for session in sorted(found, key=lambda s: s.name):
            table.add_row(session.name, "-")
        console.print(table)
        return

    result = asyncio.run(pool.validate_all())

    for session in result.valid:
        table.add_row(session.name, "[green]valid[/green]")
    for session in result.invalid:
        table.add_row(session.name, "[red]invalid[/red]")

    console.print(table)

    if result.is_success:
        console.print(Panel.fit(result.success_message(), title="Sessions"))
    else:
        console.print(Panel.fit(f"[red]{result.error_message()}[/red]", title="Sessions"))
        raise SystemExit(1)


@cli.command()
@click.argument('channel')
@click.option('--format', '-f', 'fmt', type=click.Choice(list(EXPORT_FORMATS)),
              default='markdown', help='Export format')
@click.option('--output', '-o', type=click.Path(), help='Output file path')
@click.pass_context
def export(ctx, channel, fmt, output):
    """
    Export the cached batch of a channel to file.

    Examples:

        tgingest export @durov

        tgingest export @durov -f parquet -o /tmp/durov.parquet
    """
    config = ctx.obj['config']
    messages = _open_cache(config).load_channel_messages(channel)

    if messages is None:
        console.print(f"[yellow]No cached messages for channel: {channel}[/yellow]")
        console.print(f"Run [cyan]tgingest fetch {channel}[/cyan] first")
        raise SystemExit(1)

    output_path = Path(output) if output else default_export_path(Path(config.data_dir), channel, fmt)
    path = export_messages(channel, messages, output_path, fmt)

    console.print(f"[green]Exported {len(messages)} messages to: {path}[/green]")


@cli.command('cache-key')
@click.argument('channel')
@click.argument('purpose')
@click.pass_context
def cache_key(ctx, channel, purpose):
    """Print the result-cache key for a channel's cached batch and a purpose tag."""
    config = ctx.obj['config']
    cache = _open_cache(config)
    messages = cache.load_channel_messages(channel)

    if messages is None:
        console.print(f"[yellow]No cached messages for channel: {channel}[/yellow]")
        raise SystemExit(1)

    click.echo(cache.result_cache_key(messages, purpose))


@cli.command()
@click.pass_context
def stats(ctx):
    """Show cache statistics."""
    config = ctx.obj['config']
    statistics = _open_cache(config).get_stats()

    table = Table(title="Cache Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Cached Channels", f"{statistics['channels']:,}")
    table.add_row("Cached Results", f"{statistics['results']:,}")
    table.add_row("Database", statistics['db_path'])

    console.print(table)


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize configuration file interactively."""
    console.print(Panel.fit(
        "[bold blue]tgingest Setup[/bold blue]\n\n"
        "This will create a configuration file with your API credentials.\n"
        "Get your credentials at: https://my.telegram.org",
        title="Welcome"
    ))

    api_id = Prompt.ask("Enter your API ID")
    api_hash = Prompt.ask("Enter your API Hash")
    sessions_dir = Prompt.ask("Sessions directory", default="./sessions")
    data_dir = Prompt.ask("Data directory", default="./data")

    try:
        config = Config(
            api_id=int(api_id),
            api_hash=api_hash,
            sessions_dir=sessions_dir,
            data_dir=data_dir
        )
    except ValueError:
        _fail("API ID must be a valid integer")

    config_path = Path("tgingest_config.json")
    config.to_file(config_path)

    console.print(f"\n[green]Configuration saved to: {config_path}[/green]")
    console.print("\nYou can now run:")
    console.print(f"  [cyan]tgingest -c {config_path} fetch @channel[/cyan]")


def main():
    """Entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
