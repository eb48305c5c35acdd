"""
Resumable File Transfer CLI

Command-line interface for the transfer server and client.

Usage:
    filetransfer serve --port 8469        # Run a server
    filetransfer ping --host HOST         # Test the connection
    filetransfer upload FILE --host HOST  # Upload a file
    filetransfer download FILE            # Download a file
    filetransfer shell --host HOST        # Interactive console
    filetransfer config --example         # Print a config template
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn
)

from .client import TransferClient
from .config import EXAMPLE_CONFIG, Config, load_config
from .transfer import (
    OutcomeKind, RejectReason, RetriesExhausted, TransferOutcome,
    TransferProgress, TransferServer
)

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    if verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def _apply_overrides(config: Config, host: Optional[str] = None,
                     port: Optional[int] = None, root: Optional[str] = None,
                     listen: bool = False) -> Config:
    if host:
        if listen:
            config.host = host
        else:
            config.server_host = host
    if port is not None:
        config.port = port
    if root:
        config.root_dir = Path(root)
    return config


def _make_client(config: Config) -> TransferClient:
    def on_retry(outcome: TransferOutcome, attempts: int):
        console.print(
            f"[yellow]Connection lost ({outcome.error}), "
            f"reconnecting from byte {outcome.offset:,}...[/yellow]"
        )
    return TransferClient(config, retry_callback=on_retry)


def _run_transfer(client: TransferClient, command: str, filename: str,
                  is_new_file: bool = True, fresh: bool = False) -> int:
    """Run an upload or download with a progress bar. Returns an exit code."""
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    ) as progress:
        verb = "Uploading" if command == 'upload' else "Downloading"
        task = progress.add_task(f"{verb} {filename}", total=None)

        def update_progress(p: TransferProgress):
            progress.update(
                task,
                total=p.total_bytes,
                completed=p.transferred_bytes,
                description=f"{verb} {filename} (attempt {p.attempt})",
            )

        try:
            if command == 'upload':
                outcome = asyncio.run(
                    client.upload(filename, is_new_file=is_new_file,
                                  progress_callback=update_progress)
                )
            else:
                outcome = asyncio.run(
                    client.download(filename, fresh=fresh,
                                    progress_callback=update_progress)
                )
        except RetriesExhausted as e:
            console.print(f"\n[red]✗ {e}[/red]")
            return 1

    return _report(outcome, command, filename)


def _report(outcome: TransferOutcome, command: str, filename: str) -> int:
    if outcome.kind is OutcomeKind.COMPLETED:
        verb = "Sent" if command == 'upload' else "Received"
        console.print(f"[green]✓ {verb} {filename}, {command} complete![/green]")
        return 0

    if outcome.reason is RejectReason.LOCAL_FILE_MISSING:
        console.print(f"[red]✗ File {filename} does not exist, upload rejected![/red]")
    else:
        console.print(f"[red]✗ File {filename} does not exist on server, download rejected![/red]")
    return 1


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(path_type=Path),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """Resumable File Transfer - push and pull files over flaky links."""
    config = load_config(config_path)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Listen address')
@click.option('--port', type=int, default=None, help='Listen port')
@click.option('--root', type=click.Path(file_okay=False), default=None,
              help='Directory files are stored in')
@click.pass_context
def serve(ctx, host, port, root):
    """Run a transfer server."""
    config = _apply_overrides(ctx.obj['config'], host, port, root, listen=True)
    server = TransferServer.from_config(config)

    async def run():
        await server.start()
        console.print(Panel.fit(
            f"[bold green]Server is running[/bold green]\n\n"
            f"Address: [yellow]{config.host}:{server.bound_port}[/yellow]\n"
            f"Files: [blue]{Path(config.root_dir).resolve()}[/blue]\n\n"
            f"[dim]Press Ctrl+C to stop[/dim]",
            title="File Transfer Server"
        ))
        await server.serve_forever()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")


@cli.command()
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.pass_context
def ping(ctx, host, port):
    """Test the connection to a server."""
    config = _apply_overrides(ctx.obj['config'], host, port)
    client = TransferClient(config)

    if asyncio.run(client.ping()):
        console.print(f"[green]✓ Server {config.server_host}:{config.port} is reachable[/green]")
    else:
        console.print(f"[red]✗ Cannot reach {config.server_host}:{config.port}[/red]")
        ctx.exit(1)


@cli.command()
@click.argument('filename')
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.option('--root', type=click.Path(file_okay=False), default=None,
              help='Directory the file is read from')
@click.option('--resume', is_flag=True,
              help='Continue an earlier upload instead of replacing the server copy')
@click.pass_context
def upload(ctx, filename, host, port, root, resume):
    """Upload FILENAME to the server."""
    config = _apply_overrides(ctx.obj['config'], host, port, root)
    ctx.exit(_run_transfer(_make_client(config), 'upload', filename,
                           is_new_file=not resume))


@cli.command()
@click.argument('filename')
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.option('--root', type=click.Path(file_okay=False), default=None,
              help='Directory the file is written to')
@click.option('--fresh', is_flag=True,
              help='Delete a partial local copy instead of resuming it')
@click.pass_context
def download(ctx, filename, host, port, root, fresh):
    """Download FILENAME from the server."""
    config = _apply_overrides(ctx.obj['config'], host, port, root)
    ctx.exit(_run_transfer(_make_client(config), 'download', filename, fresh=fresh))


@cli.command()
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.option('--root', type=click.Path(file_okay=False), default=None,
              help='Local directory for uploads and downloads')
@click.pass_context
def shell(ctx, host, port, root):
    """Interactive console: upload <file>, download <file>, exit."""
    config = _apply_overrides(ctx.obj['config'], host, port, root)
    client = _make_client(config)

    if not asyncio.run(client.ping()):
        console.print(f"[red]✗ Cannot reach {config.server_host}:{config.port}[/red]")
        ctx.exit(1)

    console.print("To upload a file to server:")
    console.print("    > upload <filename>")
    console.print("To download a file from server:")
    console.print("    > download <filename>")
    console.print("To exit:")
    console.print("    > exit")

    prompt = f"server@{config.server_host}:{config.port}> "
    while True:
        try:
            line = console.input(prompt)
        except EOFError:
            break

        parts = line.split()
        if not parts:
            continue

        command = parts[0].lower()
        if command == 'exit':
            break
        if command in ('upload', 'download') and len(parts) > 1:
            _run_transfer(client, command, parts[1])
        else:
            console.print("[red]Error: Invalid command.[/red]")


@cli.command('config')
@click.option('--example', is_flag=True, help='Print a template config file instead')
@click.pass_context
def show_config(ctx, example):
    """Print the effective configuration as JSON."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
    else:
        click.echo(json.dumps(ctx.obj['config'].to_dict(), indent=2))
