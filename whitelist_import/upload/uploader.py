"""Sequential, retrying batch upload orchestrator."""

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import ClassVar

from whitelist_import.config.settings import Settings
from whitelist_import.formatting import format_duration, format_rate
from whitelist_import.logging.logger import Log
from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.exceptions import (
    EmptyUploadError,
    UploadCancelledError,
    UploadInProgressError,
)
from whitelist_import.upload.models import (
    BatchError,
    BatchUploadResult,
    CompletionStats,
    SessionStatus,
    UploadErrorInfo,
    UploadOutcome,
    UploadProgress,
    UploadSession,
    UploadStage,
    UploadSummary,
)
from whitelist_import.upload.partitioner import BatchLimits, BatchPartitioner

ProgressCallback = Callable[[UploadProgress], None]

CALCULATING_LABEL = "Calculating..."


@dataclass
class _RunState:
    total: int
    total_batches: int
    batches: list[list[str]] = field(default_factory=list)
    processed: int = 0
    current_batch: int = 0
    results: list[BatchUploadResult] = field(default_factory=list)


class BatchUploader:
    """Uploads an address list through one server-side session.

    Batches are sent strictly one after another. A failing batch is retried
    with exponential backoff and, once retries are exhausted, recorded as an
    errored result without aborting the run. Cancellation is cooperative and
    checked before each batch.
    """

    # ERROR is reachable from every stage; CANCELLED only while uploading.
    _TRANSITIONS: ClassVar[dict[UploadStage, frozenset[UploadStage]]] = {
        UploadStage.IDLE: frozenset({UploadStage.CREATING_SESSION, UploadStage.ERROR}),
        UploadStage.CREATING_SESSION: frozenset({UploadStage.UPLOADING, UploadStage.ERROR}),
        UploadStage.UPLOADING: frozenset(
            {UploadStage.COMPLETING, UploadStage.ERROR, UploadStage.CANCELLED}
        ),
        UploadStage.COMPLETING: frozenset({UploadStage.COMPLETED, UploadStage.ERROR}),
        UploadStage.COMPLETED: frozenset({UploadStage.CREATING_SESSION, UploadStage.ERROR}),
        UploadStage.ERROR: frozenset({UploadStage.CREATING_SESSION, UploadStage.ERROR}),
        UploadStage.CANCELLED: frozenset({UploadStage.CREATING_SESSION, UploadStage.ERROR}),
    }

    def __init__(
        self,
        client: BaseSessionClient,
        *,
        limits: BatchLimits | None = None,
        max_retries: int = 3,
        backoff_base_seconds: float = 2.0,
        error_sample_size: int = 5,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self._client = client
        self._partitioner = BatchPartitioner(limits or BatchLimits())
        self._batch_size = self._partitioner.limits.default
        self._max_retries = max_retries
        self._backoff_base = backoff_base_seconds
        self._error_sample_size = error_sample_size
        self._sleep = sleep
        self._clock = clock

        self._stage = UploadStage.IDLE
        self._session: UploadSession | None = None
        self._cancelled = False
        self._running = False
        self._started_at = 0.0

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def set_batch_size(self, size: int) -> None:
        self._batch_size = self._partitioner.limits.clamp(size)

    @property
    def stage(self) -> UploadStage:
        return self._stage

    @property
    def session(self) -> UploadSession | None:
        return self._session

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next batch starts."""
        self._cancelled = True
        Log.info("Upload cancellation requested", stage=self._stage.value)

    async def upload_addresses(
        self,
        target_id: str,
        entries: Sequence[str],
        replace_mode: bool = False,
        on_progress: ProgressCallback | None = None,
        batch_size: int | None = None,
    ) -> UploadOutcome:
        """Upload ``entries`` for ``target_id`` and return per-batch results.

        Raises:
            EmptyUploadError: if ``entries`` is empty.
            UploadInProgressError: if this instance is already uploading.
            UploadCancelledError: if cancel() was called during the run.
            SessionClientError: if the session cannot be created or completed.
        """
        if self._running:
            raise UploadInProgressError("An upload is already in progress")
        if not entries:
            raise EmptyUploadError("No addresses to upload")
        if batch_size is not None:
            self.set_batch_size(batch_size)

        self._running = True
        self._cancelled = False
        self._started_at = self._clock()
        run = _RunState(
            total=len(entries),
            total_batches=self._partitioner.batch_count(len(entries), self._batch_size),
        )
        try:
            return await self._run(target_id, entries, replace_mode, run, on_progress)
        except UploadCancelledError:
            raise
        except Exception as exc:
            self._fail(exc, run, on_progress)
            raise
        finally:
            self._session = None
            self._running = False

    async def _run(
        self,
        target_id: str,
        entries: Sequence[str],
        replace_mode: bool,
        run: _RunState,
        on_progress: ProgressCallback | None,
    ) -> UploadOutcome:
        self._transition(UploadStage.CREATING_SESSION)
        self._emit(on_progress, self._snapshot(run, progress_percent=0))

        Log.info(
            f"Creating upload session for {target_id}: {run.total} addresses "
            f"in {run.total_batches} batches",
            replace_mode=replace_mode,
            batch_size=self._batch_size,
        )
        session = await self._client.create_session(
            target_id, run.total, replace_mode, self._batch_size
        )
        # Local progress must not alias the client's own session record.
        session = replace(session)
        self._session = session
        Log.info(f"Upload session {session.session_id} created")

        run.batches = self._partitioner.partition(entries, self._batch_size)
        run.total_batches = len(run.batches)

        self._transition(UploadStage.UPLOADING)
        self._emit(on_progress, self._snapshot(run, progress_percent=0))

        for index, batch in enumerate(run.batches):
            if self._cancelled:
                self._cancel_run(run, on_progress)
            await self._upload_one(target_id, session, index, batch, run)
            self._emit(
                on_progress,
                self._snapshot(
                    run,
                    progress_percent=round(run.processed / run.total * 100),
                    eta_label=self._eta_label(run.processed, run.total),
                    errors=self._collect_errors(run),
                ),
            )

        self._transition(UploadStage.COMPLETING)
        self._emit(
            on_progress,
            self._snapshot(run, progress_percent=95, eta_label="Finishing..."),
        )
        final_stats = await self._client.complete_session(target_id, session.session_id)

        summary = self._summarize(run)
        session.status = SessionStatus.COMPLETED
        self._transition(UploadStage.COMPLETED)
        self._emit(
            on_progress,
            self._snapshot(run, progress_percent=100, eta_label="Done"),
        )
        Log.info(
            f"Upload session {session.session_id} completed: "
            f"{summary.total_added} added, {summary.total_skipped} skipped, "
            f"{summary.total_errors} errors"
        )
        return UploadOutcome(
            session=replace(session),
            results=list(run.results),
            summary=summary,
            final_stats=final_stats,
        )

    async def _upload_one(
        self,
        target_id: str,
        session: UploadSession,
        index: int,
        batch: list[str],
        run: _RunState,
    ) -> None:
        Log.info(
            f"Starting batch {index + 1}/{run.total_batches} ({len(batch)} addresses)"
        )
        try:
            result = await self._upload_with_retry(target_id, session.session_id, index, batch)
        except Exception as exc:
            Log.error(f"Batch {index + 1} failed after {self._max_retries} attempts: {exc}")
            result = BatchUploadResult(
                batch_index=index,
                added=0,
                skipped=0,
                errors=[BatchError(message=f"Batch upload failed: {exc}")],
            )
        else:
            run.processed += len(batch)
            session.processed_addresses = run.processed
            session.completed_batches += 1
            Log.info(
                f"Batch {index + 1} completed: {result.added} added, "
                f"{result.skipped} skipped, {len(result.errors)} errors"
            )
        run.results.append(result)
        run.current_batch = index + 1

    async def _upload_with_retry(
        self,
        target_id: str,
        session_id: str,
        batch_index: int,
        batch: list[str],
    ) -> BatchUploadResult:
        attempt = 1
        while True:
            try:
                return await self._client.upload_batch(
                    target_id, session_id, batch_index, batch
                )
            except Exception as exc:
                if attempt >= self._max_retries:
                    raise
                delay = self._backoff_base**attempt
                Log.warning(
                    f"Batch {batch_index + 1} attempt {attempt} failed: {exc}; "
                    f"retrying in {delay:g}s"
                )
                await self._sleep(delay)
                attempt += 1

    def _cancel_run(self, run: _RunState, on_progress: ProgressCallback | None) -> None:
        self._transition(UploadStage.CANCELLED)
        if self._session is not None:
            self._session.status = SessionStatus.CANCELLED
        Log.warning(
            f"Upload cancelled after {run.current_batch}/{run.total_batches} batches"
        )
        self._emit(
            on_progress,
            self._snapshot(
                run,
                progress_percent=round(run.processed / run.total * 100),
                eta_label="Cancelled",
                errors=self._collect_errors(run),
            ),
        )
        raise UploadCancelledError("Upload cancelled by user")

    def _fail(
        self,
        exc: Exception,
        run: _RunState,
        on_progress: ProgressCallback | None,
    ) -> None:
        self._transition(UploadStage.ERROR)
        if self._session is not None:
            self._session.status = SessionStatus.FAILED
        Log.error(f"Upload failed: {exc}")
        self._emit(
            on_progress,
            self._snapshot(
                run,
                progress_percent=round(run.processed / run.total * 100),
                eta_label="Error",
                errors=(UploadErrorInfo(batch_index=-1, message=str(exc) or type(exc).__name__),),
            ),
        )

    def _transition(self, stage: UploadStage) -> None:
        if stage not in self._TRANSITIONS[self._stage]:
            raise RuntimeError(
                f"Illegal upload stage transition {self._stage.value} -> {stage.value}"
            )
        self._stage = stage

    def _snapshot(
        self,
        run: _RunState,
        *,
        progress_percent: int,
        eta_label: str | None = None,
        errors: tuple[UploadErrorInfo, ...] = (),
    ) -> UploadProgress:
        return UploadProgress(
            stage=self._stage,
            total_addresses=run.total,
            processed_addresses=run.processed,
            current_batch=run.current_batch,
            total_batches=run.total_batches,
            progress_percent=progress_percent,
            speed_label=self._speed_label(run.processed),
            eta_label=eta_label if eta_label is not None else CALCULATING_LABEL,
            errors=errors,
            session=replace(self._session) if self._session is not None else None,
        )

    def _collect_errors(self, run: _RunState) -> tuple[UploadErrorInfo, ...]:
        return tuple(
            UploadErrorInfo(
                batch_index=result.batch_index,
                message=result.errors[0].message,
                sample_addresses=tuple(
                    run.batches[result.batch_index][: self._error_sample_size]
                ),
            )
            for result in run.results
            if result.errors
        )

    @staticmethod
    def _summarize(run: _RunState) -> UploadSummary:
        return UploadSummary(
            total_processed=run.processed,
            total_added=sum(r.added for r in run.results),
            total_skipped=sum(r.skipped for r in run.results),
            total_errors=sum(len(r.errors) for r in run.results),
        )

    def _elapsed(self) -> float:
        return self._clock() - self._started_at

    def _speed_label(self, processed: int) -> str:
        elapsed = self._elapsed()
        if processed == 0 or elapsed <= 0:
            return format_rate(0)
        return format_rate(processed / elapsed)

    def _eta_label(self, processed: int, total: int) -> str:
        elapsed = self._elapsed()
        if processed == 0 or elapsed <= 0:
            return CALCULATING_LABEL
        rate = processed / elapsed
        return format_duration(math.ceil((total - processed) / rate))

    @staticmethod
    def _emit(on_progress: ProgressCallback | None, progress: UploadProgress) -> None:
        if on_progress is not None:
            on_progress(progress)


def build_uploader(settings: Settings, client: BaseSessionClient) -> BatchUploader:
    """Build a BatchUploader with limits and retry policy from settings."""
    return BatchUploader(
        client,
        limits=BatchLimits.from_settings(settings),
        max_retries=settings.max_upload_retries,
        backoff_base_seconds=settings.retry_backoff_base_seconds,
        error_sample_size=settings.error_sample_size,
    )
