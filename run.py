"""Entry-point for the Drive GIF gallery."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gallery.bootstrap import initialize_app
from gallery.config import AppConfig
from gallery.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from gallery.services.catalog import ReadinessCatalog
from gallery.services.conversions import ConversionScheduler
from gallery.services.drive import DriveStore
from gallery.services.pipeline import ConversionPipeline
from gallery.services.polling import ConversionPoller, HttpGalleryTransport, PollOutcome, PollState
from gallery.services.sweep import start_missing_conversions
from gallery.web import create_app


LOGGER = logging.getLogger("drive_gif_gallery.cli")


cli = typer.Typer(add_completion=False, help="Drive GIF gallery management commands")


def _prepare_logging(log_root: Path) -> None:
    log_file = get_log_file_path(log_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def _require_drive(config: AppConfig) -> DriveStore:
    if not config.has_credentials:
        typer.secho(
            "Set GOOGLE_SERVICE_ACCOUNT_KEY or GOOGLE_SERVICE_ACCOUNT_FILE first.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=2)
    return DriveStore.from_service_account(
        info=config.service_account_info,
        credentials_file=config.service_account_file,
    )


def _require_folders(config: AppConfig) -> tuple[str, str]:
    if not config.source_folder_id or not config.target_folder_id:
        typer.secho(
            "Set GOOGLE_DRIVE_FOLDER_ID and GOOGLE_DRIVE_MP4_FOLDER_ID first.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=2)
    return config.source_folder_id, config.target_folder_id


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=None, port=None)


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host interface (defaults to HOST or config)"),
    port: Optional[int] = typer.Option(None, help="Port (defaults to PORT or config)"),
) -> None:
    """Run the FastAPI-powered gallery with its auto-conversion sweep."""

    app_config = initialize_app(clear_temp=True)
    _prepare_logging(app_config.log_root)

    app = create_app(app_config)

    server_config = uvicorn.Config(
        app,
        host=host or app_config.host,
        port=port or app_config.port,
        log_config=None,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Server running on port %s", server_config.port)
    server.run()


async def _sweep_once(config: AppConfig, drive: DriveStore) -> int:
    source_folder_id, target_folder_id = _require_folders(config)
    with ThreadPoolExecutor(
        max_workers=config.max_concurrent_conversions + 2, thread_name_prefix="drive-io"
    ) as executor:
        catalog = ReadinessCatalog(drive, executor=executor)
        pipeline = ConversionPipeline(
            drive, temp_root=config.temp_root, encoder=config.encoder, executor=executor
        )
        scheduler = ConversionScheduler(
            pipeline,
            max_concurrent=config.max_concurrent_conversions,
            dedupe_in_flight=config.dedupe_in_flight,
        )
        total, started = await start_missing_conversions(
            catalog, scheduler, source_folder_id, target_folder_id, label="Manual"
        )
        typer.echo(f"{len(started)} of {total} GIF(s) need conversion")
        await scheduler.join()
        if scheduler.failed:
            typer.secho(f"{scheduler.failed} conversion(s) failed", fg=typer.colors.RED, err=True)
        return scheduler.failed


@cli.command()
def sweep() -> None:
    """Convert every GIF that does not have an MP4 yet and wait for the runs."""

    config = initialize_app()
    _prepare_logging(config.log_root)
    drive = _require_drive(config)
    failed = asyncio.run(_sweep_once(config, drive))
    if failed:
        raise typer.Exit(code=1)


@cli.command()
def status() -> None:
    """Print how many GIFs are ready for display."""

    config = initialize_app()
    _prepare_logging(config.log_root)
    drive = _require_drive(config)
    source_folder_id, target_folder_id = _require_folders(config)

    summary = asyncio.run(ReadinessCatalog(drive).status(source_folder_id, target_folder_id))

    metrics = Table.grid(expand=True, padding=(0, 1))
    metrics.add_column(style="dim")
    metrics.add_column(justify="right", style="bold")
    metrics.add_row("Total GIFs", str(summary.total))
    metrics.add_row("Ready for display", str(summary.ready))
    metrics.add_row("Processing", str(summary.processing))

    style = "yellow" if summary.processing else "green"
    body = Group(metrics, Text(summary.message, style=style))
    Console().print(Panel(body, title="Conversion status", border_style=style, box=box.ROUNDED))


def _report_transition(state: PollState, outcome: PollOutcome) -> None:
    if state is PollState.POLLING and outcome.attempts == 0:
        typer.echo("Conversion started; waiting for the MP4…")


@cli.command()
def convert(
    gif_id: str = typer.Argument(..., help="Drive file id of the GIF to convert."),
    server: str = typer.Option("http://127.0.0.1:3000", help="Base URL of a running gallery."),
    initial_delay: float = typer.Option(2.0, min=0.0, help="Seconds to wait before the first check."),
    max_attempts: int = typer.Option(40, min=1, help="Catalog checks before giving up."),
    period: float = typer.Option(3.0, min=0.0, help="Seconds between catalog checks."),
) -> None:
    """Ask a running server to convert GIF_ID and wait until the MP4 is ready."""

    transport = HttpGalleryTransport(server)
    try:
        poller = ConversionPoller(
            transport,
            initial_delay=initial_delay,
            period=period,
            max_attempts=max_attempts,
            on_transition=_report_transition,
        )
        outcome = poller.run(gif_id)
    finally:
        transport.close()

    if outcome.state is PollState.READY:
        typer.secho(f"MP4 ready: {outcome.mp4_url}", fg=typer.colors.GREEN)
        return
    if outcome.state is PollState.TIMED_OUT:
        typer.secho(f"Timed out: {outcome.error}. Run the command again to retry.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=3)
    typer.secho(f"Conversion request failed: {outcome.error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
