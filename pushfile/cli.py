#!/usr/bin/env python3
"""
pushfile CLI

Command-line front end for sending and receiving single files.

Usage:
    pushfile receive                  # Wait for one file on 127.0.0.1:8080
    pushfile send FILE                # Push FILE to 127.0.0.1:8080
    pushfile send FILE --checksum     # ... with a SHA-1 for verification
    pushfile config                   # Show effective configuration
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .config import Config, EXAMPLE_CONFIG, load_config
from .transfer import Receiver, Sender, TransferListener, TransferResult

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


class ProgressListener(TransferListener):
    """Feeds transfer notifications into a rich progress bar."""

    def __init__(self, progress: Progress, task_id):
        self.progress = progress
        self.task_id = task_id

    def on_status(self, text: str) -> None:
        self.progress.update(self.task_id, description=text)

    def on_progress(self, percent: float) -> None:
        self.progress.update(self.task_id, completed=percent)


def _progress_bar() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def _show_result(result: TransferResult, title: str):
    """Print the outcome and exit non-zero on failure."""
    if result.ok:
        lines = [
            f"[bold green]{result.status}[/bold green]\n",
            f"Name: [cyan]{result.file_name}[/cyan]",
            f"Size: [yellow]{result.bytes_transferred:,} bytes[/yellow]",
        ]
        if result.path:
            lines.append(f"Path: [blue]{result.path}[/blue]")
        if result.digest:
            lines.append(f"SHA-1: [green]{result.digest.hex()}[/green]")
        console.print(Panel.fit("\n".join(lines), title=title))
    else:
        console.print(f"[red]✗ {result.status}[/red] [dim]({result.error_kind.value})[/dim]")
        sys.exit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """pushfile - send a single file over raw TCP."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ValueError as e:
        # Malformed JSON or a non-numeric PUSHFILE_* value
        raise click.UsageError(f"Invalid configuration: {e}")
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--host', help='Receiver address')
@click.option('--port', type=int, help='Receiver port')
@click.option('--buffer-size', type=int, help='Chunk size in bytes')
@click.option('--checksum/--no-checksum', default=None, help='Send a SHA-1 of the file')
@click.pass_context
def send(ctx, file_path, host, port, buffer_size, checksum):
    """Send FILE_PATH to a waiting receiver."""
    config = _override(ctx.obj['config'], host=host, port=port, buffer_size=buffer_size)
    if checksum is None:
        checksum = config.checksum

    async def run():
        with _progress_bar() as progress:
            task = progress.add_task("Starting...", total=100)
            sender = Sender.from_config(config, [ProgressListener(progress, task)])
            return await sender.send_file(config.host, config.port, file_path, checksum)

    _show_result(asyncio.run(run()), "Sent File")


@cli.command()
@click.option('--host', help='Address to listen on')
@click.option('--port', type=int, help='Port to listen on')
@click.option('--buffer-size', type=int, help='Chunk size in bytes')
@click.option('--dest', 'destination', type=click.Path(file_okay=False),
              help='Folder to save the file in')
@click.option('--timeout', 'accept_timeout', type=float,
              help='Seconds to wait for a sender')
@click.pass_context
def receive(ctx, host, port, buffer_size, destination, accept_timeout):
    """Wait for one file and save it."""
    config = _override(
        ctx.obj['config'],
        host=host,
        port=port,
        buffer_size=buffer_size,
        destination=Path(destination) if destination else None,
        accept_timeout=accept_timeout,
    )

    async def run():
        with _progress_bar() as progress:
            task = progress.add_task("Starting...", total=100)
            receiver = Receiver.from_config(config, [ProgressListener(progress, task)])
            return await receiver.receive_file(config.host, config.port, config.destination)

    try:
        result = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped listening[/yellow]")
        sys.exit(130)
    _show_result(result, "Received File")


@cli.command('config')
@click.option('--example', is_flag=True, help='Print an example config file')
@click.pass_context
def show_config(ctx, example):
    """Show the effective configuration."""
    if example:
        console.print("Example configuration file (config.json):")
        console.print(EXAMPLE_CONFIG)
        return

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for key, value in ctx.obj['config'].to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


def _override(config: Config, **values) -> Config:
    """Apply command-line values that were actually given, then validate."""
    for key, value in values.items():
        if value is not None:
            setattr(config, key, value)
    try:
        return config.validate()
    except ValueError as e:
        raise click.BadParameter(str(e))


def main():
    cli()


if __name__ == '__main__':
    main()
