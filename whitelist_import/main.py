import asyncio
import contextlib
import signal
import sys

import click

from whitelist_import.config.settings import Settings
from whitelist_import.logging.logger import Log
from whitelist_import.processing.exceptions import ProcessingError
from whitelist_import.processing.file_processor import (
    AddressFileProcessor,
    build_file_processor,
)
from whitelist_import.processing.models import ProcessingProgress, ProcessingResult
from whitelist_import.upload.exceptions import UploadCancelledError, UploadError
from whitelist_import.upload.factory import SessionClientFactory
from whitelist_import.upload.memory_client_adapter import InMemorySessionClient
from whitelist_import.upload.models import UploadOutcome, UploadProgress, UploadStage
from whitelist_import.upload.partitioner import BatchLimits
from whitelist_import.upload.uploader import build_uploader

STDIN_PATH = "-"
INVALID_PREVIEW_LIMIT = 10


async def _process(
    processor: AddressFileProcessor, path: str, batch_size: int | None
) -> ProcessingResult:
    if path == STDIN_PATH:
        return processor.process_text(sys.stdin.read(), batch_size_hint=batch_size)
    return await processor.process_file(
        path, on_progress=_log_processing_progress, batch_size_hint=batch_size
    )


def _log_processing_progress(progress: ProcessingProgress) -> None:
    Log.debug(
        f"[{progress.stage.value}] {progress.progress_percent}% {progress.message}",
        line=progress.current_line,
    )


def _log_upload_progress(progress: UploadProgress) -> None:
    if progress.stage is UploadStage.ERROR:
        return
    Log.info(
        f"[{progress.stage.value}] {progress.progress_percent}% "
        f"batch {progress.current_batch}/{progress.total_batches}, "
        f"{progress.processed_addresses}/{progress.total_addresses} addresses",
        speed=progress.speed_label,
        eta=progress.eta_label,
        errors=len(progress.errors),
    )


def _echo_stats(result: ProcessingResult) -> None:
    stats = result.stats
    click.echo(f"Lines:        {stats.total_lines}")
    click.echo(f"Valid:        {stats.valid_count}")
    click.echo(f"Duplicates:   {stats.duplicate_count}")
    click.echo(f"Invalid:      {stats.invalid_count}")
    click.echo(f"Upload time:  {stats.estimated_upload_time_label}")
    for entry in result.invalid_entries[:INVALID_PREVIEW_LIMIT]:
        click.echo(f"  line {entry.line_number}: {entry.original_value!r} ({entry.reason})")
    hidden = len(result.invalid_entries) - INVALID_PREVIEW_LIMIT
    if hidden > 0:
        click.echo(f"  ... and {hidden} more invalid lines")


def _echo_outcome(outcome: UploadOutcome) -> None:
    summary = outcome.summary
    click.echo(f"Session:      {outcome.session.session_id}")
    click.echo(f"Processed:    {summary.total_processed}")
    click.echo(f"Added:        {summary.total_added}")
    click.echo(f"Skipped:      {summary.total_skipped}")
    click.echo(f"Errors:       {summary.total_errors}")
    for result in outcome.results:
        for error in result.errors:
            click.echo(f"  batch {result.batch_index + 1}: {error.message}")


async def _upload(
    settings: Settings,
    target_id: str,
    path: str,
    replace_mode: bool,
    batch_size: int | None,
    dry_run: bool,
) -> UploadOutcome:
    batch_size = BatchLimits.from_settings(settings).clamp(batch_size)
    processor = build_file_processor(settings)
    result = await _process(processor, path, batch_size)
    _echo_stats(result)
    if not result.valid_entries:
        raise click.ClickException("No valid addresses found to upload")

    if dry_run:
        client = InMemorySessionClient()
    else:
        try:
            client = SessionClientFactory.create(settings)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
    async with client:
        uploader = build_uploader(settings, client)
        loop = asyncio.get_running_loop()
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, uploader.cancel)
        try:
            return await uploader.upload_addresses(
                target_id,
                result.valid_entries,
                replace_mode=replace_mode,
                on_progress=_log_upload_progress,
                batch_size=batch_size,
            )
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose (DEBUG) logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Validate, deduplicate and upload whitelist address lists."""
    settings = Settings()
    Log.configure("DEBUG" if verbose else settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("path", type=str)
@click.option("--batch-size", type=int, default=None, help="Batch size used for the time estimate")
@click.pass_context
def inspect(ctx: click.Context, path: str, batch_size: int | None) -> None:
    """Process PATH (or '-' for stdin) and print statistics without uploading."""
    settings: Settings = ctx.obj["settings"]
    processor = build_file_processor(settings)
    batch_size = BatchLimits.from_settings(settings).clamp(batch_size)
    try:
        result = asyncio.run(_process(processor, path, batch_size))
    except ProcessingError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_stats(result)


@cli.command()
@click.argument("target_id", type=str)
@click.argument("path", type=str)
@click.option("--replace", "replace_mode", is_flag=True, help="Replace the existing whitelist")
@click.option("--batch-size", type=int, default=None, help="Addresses per upload batch")
@click.option("--dry-run", is_flag=True, help="Upload to an in-memory store instead of the API")
@click.pass_context
def upload(
    ctx: click.Context,
    target_id: str,
    path: str,
    replace_mode: bool,
    batch_size: int | None,
    dry_run: bool,
) -> None:
    """Process PATH (or '-' for stdin) and upload valid addresses to TARGET_ID."""
    settings: Settings = ctx.obj["settings"]
    try:
        outcome = asyncio.run(
            _upload(settings, target_id, path, replace_mode, batch_size, dry_run)
        )
    except UploadCancelledError as exc:
        click.echo(f"Upload cancelled: {exc}", err=True)
        sys.exit(1)
    except (ProcessingError, UploadError) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_outcome(outcome)
    if outcome.summary.total_errors:
        sys.exit(1)


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
