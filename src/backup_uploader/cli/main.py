"""CLI interface for uploading backup exports."""

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from ..core.backoff import calculate_backoff_series
from ..core.dispatch import build_dropbox_uploader, build_gdrive_uploader, dropbox_up, gdrive_up
from ..core.exports import list_files
from ..core.models import DEFAULT_CONFIG_FILE, Settings
from ..core.results import UploadOutcome

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def add_file_logging(log_path: str) -> None:
    """Also log to main.log in ``log_path``; carry on without it if that's impossible."""
    try:
        os.makedirs(log_path, exist_ok=True)
        handler = logging.FileHandler(os.path.join(log_path, "main.log"))
    except OSError as e:
        logger.warning(f"Couldn't open log file in {log_path}, logging to console only: {e}")
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)


def get_settings(ctx: click.Context) -> Settings:
    """Load settings once per invocation and apply command line overrides."""
    obj = ctx.ensure_object(dict)
    if obj.get("settings") is not None:
        return obj["settings"]

    settings = Settings.load(obj["config"])
    overrides = obj.get("overrides", {})
    if overrides.get("log_path"):
        settings.startup.log_path = overrides["log_path"]
    if overrides.get("export_path"):
        settings.startup.export_path = overrides["export_path"]
    if overrides.get("dropbox_token"):
        settings.dropbox.access_token = overrides["dropbox_token"]
    if overrides.get("dropbox_dest_path"):
        settings.dropbox.dest_path = overrides["dropbox_dest_path"]
    if overrides.get("gdrive_token"):
        settings.gdrive.access_token = overrides["gdrive_token"]
    if overrides.get("gdrive_dir_id"):
        settings.gdrive.dir_id = overrides["gdrive_dir_id"]

    if obj.get("file_logging", True):
        add_file_logging(settings.startup.log_path)
    obj["settings"] = settings
    return settings


@click.group()
@click.option(
    "--config",
    "-c",
    envvar="BACKUP_UPLOADER_CONFIG",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Config file path; created with defaults if it doesn't exist",
)
@click.option("--log-path", "-l", envvar="BACKUP_UPLOADER_LOG_PATH", help="Directory for main.log")
@click.option("--export-path", "-x", envvar="BACKUP_UPLOADER_EXPORT_PATH", help="Directory holding exports")
@click.option("--dropbox-token", envvar="BACKUP_UPLOADER_DROPBOX_TOKEN", help="Dropbox access token")
@click.option("--dropbox-dest-path", envvar="BACKUP_UPLOADER_DROPBOX_DEST_PATH", help="Dropbox destination folder")
@click.option("--gdrive-token", envvar="BACKUP_UPLOADER_GDRIVE_TOKEN", help="Google Drive access token")
@click.option("--gdrive-dir-id", envvar="BACKUP_UPLOADER_GDRIVE_DIR_ID", help="Google Drive destination folder ID")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, config, log_path, export_path, dropbox_token, dropbox_dest_path, gdrive_token, gdrive_dir_id, verbose):
    """Backup Uploader - Upload backup exports to Dropbox and Google Drive."""
    setup_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["overrides"] = {
        "log_path": log_path,
        "export_path": export_path,
        "dropbox_token": dropbox_token,
        "dropbox_dest_path": dropbox_dest_path,
        "gdrive_token": gdrive_token,
        "gdrive_dir_id": gdrive_dir_id,
    }


@cli.command()
@click.option("--source", "-s", default="", help="Only upload this source (default: all)")
@click.pass_context
def upload_dropbox(ctx, source):
    """Upload the latest exports to Dropbox."""
    try:
        settings = get_settings(ctx)
        sources = settings.selected_sources(source)
        uploader = build_dropbox_uploader(settings)

        table = Table(title="Dropbox Upload")
        table.add_column("Source", style="cyan")
        table.add_column("Uploaded", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Not attempted", justify="right", style="yellow")

        ok = True
        for name in sources:
            result = dropbox_up(name, settings, uploader)
            table.add_row(
                name,
                str(len(result.succeeded)),
                str(len(result.failed)),
                str(len(result.not_attempted)),
            )
            ok = ok and result.ok
            if result.aborted:
                console.print("[red]Dropbox is unusable, stopping.[/red]")
                break

        console.print(table)
        if not ok:
            sys.exit(1)
        console.print("[green]✓[/green] Dropbox upload completed successfully!")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--source", "-s", default="", help="Only upload this source (default: all)")
@click.pass_context
def upload_gdrive(ctx, source):
    """Upload the latest exports to Google Drive."""
    try:
        settings = get_settings(ctx)
        sources = settings.selected_sources(source)
        uploader = build_gdrive_uploader(settings)

        for name in sources:
            if not gdrive_up(name, settings, uploader):
                console.print("[red]Google Drive uploads are not possible, stopping.[/red]")
                sys.exit(1)
        console.print("[green]✓[/green] Google Drive upload completed!")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--dest", help="Dropbox folder to upload into (default: configured dest_path)")
@click.pass_context
def upload_file(ctx, local_path, dest):
    """Upload a single file to Dropbox."""
    try:
        settings = get_settings(ctx)
        if dest:
            settings.dropbox.dest_path = dest

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(f"Uploading {Path(local_path).name}", total=None)

            def on_progress(uploaded, total, rate):
                progress.update(task, completed=uploaded, total=total)

            uploader = build_dropbox_uploader(settings, progress_callback=on_progress)
            console.print(
                f"Uploading [cyan]{local_path}[/cyan] to [green]{uploader.destination_for(local_path)}[/green]"
            )
            outcome = uploader.upload_one_file(local_path)

        if outcome is not UploadOutcome.SUCCESS:
            console.print(f"[red]Upload failed ({outcome.value}). See the log for details.[/red]")
            sys.exit(1)
        console.print("[green]✓[/green] Upload completed successfully!")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("source")
@click.pass_context
def list_exports(ctx, source):
    """List the parts of a source's latest export."""
    try:
        settings = get_settings(ctx)
        files = list_files(settings.startup.export_path, source)
        if not files:
            console.print(f"[yellow]No exports found for {source}.[/yellow]")
            return

        table = Table(title=f"Latest export of {source}", caption=settings.startup.export_path)
        table.add_column("File", style="cyan", no_wrap=True)
        table.add_column("Size", justify="right")
        for path in files:
            table.add_row(os.path.basename(path), f"{os.path.getsize(path):,}")
        console.print(table)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--initial", type=float, default=0.5, show_default=True, help="First wait in seconds")
@click.option("--multiplier", type=float, default=1.5, show_default=True, help="Growth factor per step")
@click.option("--max-retries", type=int, default=10, show_default=True, help="Number of waits")
@click.option("--max-wait", type=float, default=60.0, show_default=True, help="Largest single wait")
@click.option("--max-total-wait", type=float, default=600.0, show_default=True, help="Largest total wait")
@click.option("--jitter", type=float, default=0.5, show_default=True, help="Jitter factor")
def backoff(initial, multiplier, max_retries, max_wait, max_total_wait, jitter):
    """Print a backoff series for the given parameters."""
    series = calculate_backoff_series(initial, multiplier, max_retries, max_wait, max_total_wait, jitter)

    table = Table(title="Backoff Series")
    table.add_column("Retry", justify="right", style="cyan")
    table.add_column("Wait (s)", justify="right", style="green")
    table.add_column("Total (s)", justify="right")
    total = 0.0
    for i, wait in enumerate(series, start=1):
        total += wait
        table.add_row(str(i), f"{wait:.2f}", f"{total:.2f}")
    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
