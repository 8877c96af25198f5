#!/usr/bin/env python3
"""
123pan Upload CLI

Command-line interface for sliced uploads to the 123pan open platform.

Usage:
    pan-upload upload FILE            # Upload a file to the root folder
    pan-upload upload FILE -r /a/b    # Upload into /a/b (created if missing)
    pan-upload token                  # Fetch an access token
    pan-upload mkdir /a/b/c           # Create folders recursively
    pan-upload ls                     # List a folder
    pan-upload whoami                 # Show account info
"""

import asyncio
import logging
from pathlib import Path
import click
import httpx
from rich.console import Console
from rich.table import Table
from rich.progress import (
    Progress, SpinnerColumn, TextColumn, BarColumn, DownloadColumn,
    TransferSpeedColumn, TimeRemainingColumn,
)
from rich.panel import Panel
from rich.logging import RichHandler

from .api import PanClient, get_access_token
from .config import DuplicatePolicy, UploadConfig, load_config
from .exceptions import UploadError
from .session import UploadSession
from .transfer import ProgressEvent

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


async def resolve_token(config: UploadConfig) -> str:
    """Use the configured access token, or fetch one from client credentials."""
    if config.access_token:
        return config.access_token
    if not (config.client_id and config.client_secret):
        raise click.UsageError(
            "No access token: pass --token, or set PAN_ACCESS_TOKEN, "
            "or PAN_CLIENT_ID and PAN_CLIENT_SECRET"
        )
    token = await get_access_token(config.client_id, config.client_secret,
                                   base_url=config.api_base_url)
    return token.access_token


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.option('--token', help='Access token (overrides PAN_ACCESS_TOKEN)')
@click.pass_context
def cli(ctx, verbose, config_path, token):
    """123pan sliced uploader."""
    config = load_config(Path(config_path) if config_path else None)
    if token:
        config.access_token = token
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--parent-id', '-p', type=int, default=0, help='Destination folder id')
@click.option('--remote-dir', '-r', help='Destination folder path, created if missing')
@click.option('--name', help='File name on the drive (default: local name)')
@click.option('--concurrency', '-c', type=int, help='Chunks uploaded in parallel')
@click.option('--retry-times', type=int, help='Retries per chunk')
@click.option('--duplicate', type=click.Choice(['keep', 'overwrite']),
              help='What to do if the name already exists')
@click.pass_context
def upload(ctx, file_path, parent_id, remote_dir, name, concurrency, retry_times, duplicate):
    """Upload a file."""
    config: UploadConfig = ctx.obj['config']
    if concurrency is not None:
        config.concurrency = concurrency
    if retry_times is not None:
        config.retry_times = retry_times
    if duplicate:
        config.duplicate = (DuplicatePolicy.OVERWRITE if duplicate == 'overwrite'
                            else DuplicatePolicy.KEEP_BOTH)

    async def run():
        token = await resolve_token(config)

        target_id = parent_id
        if remote_dir:
            async with PanClient(token, base_url=config.api_base_url,
                                 timeout=config.api_timeout) as client:
                target_id = await client.mkdir_recursive(remote_dir)

        session = UploadSession(file_path, token, parent_file_id=target_id,
                                config=config, filename=name)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Preparing...", total=session.size or 1)

            def update_progress(event: ProgressEvent):
                progress.update(
                    task,
                    completed=event.loaded if session.size else event.progress,
                    description=event.phase.value.capitalize(),
                )

            session.on('progress', update_progress)

            try:
                return session, await session.upload()
            except asyncio.CancelledError:
                session.cancel()
                raise

    try:
        session, result = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Upload cancelled[/yellow]")
        return
    except (UploadError, httpx.HTTPError) as e:
        console.print(f"\n[red]✗ Upload failed: {e}[/red]")
        ctx.exit(1)

    if result is None:
        console.print("\n[yellow]Upload cancelled[/yellow]")
        return

    console.print(Panel.fit(
        f"[bold green]File Uploaded Successfully[/bold green]\n\n"
        f"Name: [cyan]{result.filename}[/cyan]\n"
        f"Size: [yellow]{format_size(session.size)}[/yellow]\n"
        f"Chunks: [yellow]{len(session.tasks)}[/yellow]\n\n"
        f"File ID: [green]{result.file_id}[/green]",
        title="Uploaded File"
    ))


@cli.command()
@click.pass_context
def token(ctx):
    """Fetch an access token from PAN_CLIENT_ID / PAN_CLIENT_SECRET."""
    config: UploadConfig = ctx.obj['config']
    if not (config.client_id and config.client_secret):
        raise click.UsageError("Set PAN_CLIENT_ID and PAN_CLIENT_SECRET")

    async def run():
        return await get_access_token(config.client_id, config.client_secret,
                                      base_url=config.api_base_url)

    result = asyncio.run(run())
    console.print(Panel.fit(
        f"[green]{result.access_token}[/green]\n\n"
        f"Expires: [yellow]{result.expired_at}[/yellow]",
        title="Access Token"
    ))


@cli.command()
@click.argument('path')
@click.pass_context
def mkdir(ctx, path):
    """Create a folder path, e.g. /backups/2024."""
    config: UploadConfig = ctx.obj['config']

    async def run():
        token = await resolve_token(config)
        async with PanClient(token, base_url=config.api_base_url,
                             timeout=config.api_timeout) as client:
            return await client.mkdir_recursive(path)

    dir_id = asyncio.run(run())
    console.print(f"[green]✓ {path}[/green] (id [cyan]{dir_id}[/cyan])")


@cli.command('ls')
@click.option('--parent-id', '-p', type=int, default=0, help='Folder id')
@click.pass_context
def list_files(ctx, parent_id):
    """List a folder."""
    config: UploadConfig = ctx.obj['config']

    async def run():
        token = await resolve_token(config)
        async with PanClient(token, base_url=config.api_base_url,
                             timeout=config.api_timeout) as client:
            return await client.list_all(parent_id)

    items = [item for item in asyncio.run(run()) if not item.is_trashed]

    if not items:
        console.print("[yellow]Empty folder[/yellow]")
        return

    table = Table(title=f"Folder {parent_id}")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Updated", style="dim")

    for item in items:
        table.add_row(
            str(item.file_id),
            f"[bold blue]{item.filename}/[/bold blue]" if item.is_folder else item.filename,
            '' if item.is_folder else format_size(item.size),
            item.update_at,
        )

    console.print(table)


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show account information."""
    config: UploadConfig = ctx.obj['config']

    async def run():
        token = await resolve_token(config)
        async with PanClient(token, base_url=config.api_base_url,
                             timeout=config.api_timeout) as client:
            return await client.get_user_info()

    info = asyncio.run(run())
    console.print(Panel.fit(
        f"[bold]{info.nickname}[/bold] (uid [cyan]{info.uid}[/cyan])\n\n"
        f"VIP: [{'green' if info.vip else 'dim'}]{'Yes' if info.vip else 'No'}[/]\n"
        f"Used: [yellow]{format_size(info.space_used)}[/yellow] of "
        f"[yellow]{format_size(info.space_permanent + info.space_temp)}[/yellow]",
        title="Account"
    ))


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
