#!/usr/bin/env python3
"""
Propagation CLI

Command-line interface for pushing and pulling DataStore snapshots.

Usage:
    propagation push STORE_ID ROOT_HASH --peer HOST     # Upload a snapshot
    propagation pull STORE_ID ROOT_HASH --peer HOST     # Download a snapshot
    propagation probe STORE_ID --peer HOST              # Check a store on a peer
    propagation file-info STORE_ID ROOT_HASH PATH ...   # Check one file on a peer
    propagation keygen                                  # Create/show the signing key
    propagation config                                  # Show effective configuration
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, TextColumn, BarColumn, DownloadColumn, TransferSpeedColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .auth.credentials import Credentials, PromptCredentials, StaticCredentials
from .auth.signer import KeyFileSigner
from .client import PropagationClient
from .config import EXAMPLE_CONFIG, load_config
from .exceptions import PropagationError
from .transfer.progress import RichProgressFactory
from .transfer.scheduler import FailurePolicy

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def transfer_progress() -> Progress:
    return Progress(
        TextColumn("[yellow]{task.description}"),
        BarColumn(bar_width=30),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


def run_operation(coro):
    """Run a client coroutine; PropagationErrors become a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except PropagationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(path_type=Path), help='Config file (JSON)')
@click.option('--store-root', type=click.Path(path_type=Path), help='Local stores directory')
@click.option('--port', type=int, help='Peer propagation port')
@click.option('--cert', type=click.Path(path_type=Path), help='Client TLS certificate')
@click.option('--key', type=click.Path(path_type=Path), help='Client TLS private key')
@click.pass_context
def cli(ctx, verbose, config_path, store_root, port, cert, key):
    """Propagation client - replicate DataStore snapshots between peers."""
    config = load_config(config_path)
    if store_root:
        config.store_root = store_root
    if port:
        config.port = port
    if cert:
        config.cert_path = cert
    if key:
        config.key_path = key
    config.validate()

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('store_id')
@click.argument('root_hash')
@click.option('--peer', required=True, help='Peer address')
@click.option('--concurrency', type=int, help='Parallel uploads')
@click.option('--fail-fast', is_flag=True, help='Cancel remaining uploads on the first failure')
@click.option('--username', envvar='PROPAGATION_USERNAME', help='Username if the store must be created')
@click.option('--password', envvar='PROPAGATION_PASSWORD', help='Password if the store must be created')
@click.pass_context
def push(ctx, store_id, root_hash, peer, concurrency, fail_fast, username, password):
    """Upload a snapshot to a peer."""
    config = ctx.obj['config']
    if concurrency:
        config.upload_concurrency = concurrency
    if fail_fast:
        config.failure_policy = FailurePolicy.CANCEL
    config.validate()

    if username and password:
        prompt = StaticCredentials(Credentials(username=username, password=password))
    else:
        prompt = PromptCredentials(console)

    with transfer_progress() as progress:
        client = PropagationClient(
            config, store_id, peer,
            prompt=prompt,
            progress=RichProgressFactory(progress),
        )
        result = run_operation(client.push(root_hash))

    if result.already_replicated:
        console.print(f"[blue]Root hash {root_hash} already exists on {peer}. Nothing to upload.[/blue]")
        return

    console.print(Panel.fit(
        f"[bold green]Snapshot Uploaded[/bold green]\n\n"
        f"Store: [cyan]{store_id}[/cyan]\n"
        f"Root Hash: [cyan]{root_hash}[/cyan]\n"
        f"Session: [yellow]{result.session_id}[/yellow]\n"
        f"Files uploaded: [yellow]{result.files_uploaded}[/yellow]\n"
        f"Files already on peer: [yellow]{result.files_skipped}[/yellow]",
        title="Push"
    ))


@cli.command()
@click.argument('store_id')
@click.argument('root_hash')
@click.option('--peer', required=True, help='Peer address')
@click.option('--concurrency', type=int, help='Parallel downloads')
@click.option('--fail-fast', is_flag=True, help='Cancel remaining downloads on the first failure')
@click.pass_context
def pull(ctx, store_id, root_hash, peer, concurrency, fail_fast):
    """Download a snapshot from a peer."""
    config = ctx.obj['config']
    if concurrency:
        config.download_concurrency = concurrency
    if fail_fast:
        config.failure_policy = FailurePolicy.CANCEL
    config.validate()

    with transfer_progress() as progress:
        client = PropagationClient(
            config, store_id, peer,
            progress=RichProgressFactory(progress),
        )
        result = run_operation(client.pull(root_hash))

    console.print(Panel.fit(
        f"[bold green]Snapshot Downloaded[/bold green]\n\n"
        f"Store: [cyan]{store_id}[/cyan]\n"
        f"Root Hash: [cyan]{root_hash}[/cyan]\n"
        f"Files: [yellow]{result.files_downloaded}[/yellow]\n"
        f"Size: [yellow]{format_size(result.bytes_downloaded)}[/yellow]\n"
        f"Manifest: [blue]{result.manifest_path}[/blue]",
        title="Pull"
    ))


@cli.command()
@click.argument('store_id')
@click.option('--peer', required=True, help='Peer address')
@click.option('--root-hash', help='Also check for this root hash')
@click.pass_context
def probe(ctx, store_id, peer, root_hash):
    """Check whether a peer holds a store."""
    client = PropagationClient(ctx.obj['config'], store_id, peer)
    status = run_operation(client.probe(root_hash))

    table = Table(title=f"Store {store_id} on {peer}")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_row("Store exists", _yes_no(status.store_exists))
    if root_hash:
        table.add_row(f"Root hash {root_hash[:16]}...", _yes_no(status.root_hash_exists))
    console.print(table)


@cli.command('file-info')
@click.argument('store_id')
@click.argument('root_hash')
@click.argument('data_path')
@click.option('--peer', required=True, help='Peer address')
@click.pass_context
def file_info(ctx, store_id, root_hash, data_path, peer):
    """Check one committed file on a peer."""
    client = PropagationClient(ctx.obj['config'], store_id, peer)
    status = run_operation(client.file_details(root_hash, data_path))

    if status.exists:
        console.print(f"[green]✓ {data_path}: {format_size(status.size)}[/green]")
    else:
        console.print(f"[yellow]{data_path} not found on {peer}[/yellow]")


@cli.command()
@click.pass_context
def keygen(ctx):
    """Create the signing key if needed and print its public key."""
    config = ctx.obj['config']
    try:
        signer = KeyFileSigner(config.key_file)
    except PropagationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    console.print(Panel.fit(
        f"Key file: [blue]{config.key_file}[/blue]\n"
        f"Public key: [green]{signer.public_key().hex()}[/green]",
        title="Signing Key"
    ))


@cli.command('config')
@click.option('--example', is_flag=True, help='Print an example config file instead')
@click.pass_context
def show_config(ctx, example):
    """Show the effective configuration."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return
    click.echo(json.dumps(ctx.obj['config'].to_dict(), indent=2))


def _yes_no(value: bool) -> str:
    return "[green]Yes[/green]" if value else "[red]No[/red]"


def format_size(bytes_count: Optional[float]) -> str:
    """Format bytes as human-readable size."""
    bytes_count = bytes_count or 0
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
