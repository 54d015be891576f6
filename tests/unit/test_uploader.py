import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from unittest.mock import AsyncMock, call

import pytest

from whitelist_import.config.settings import Settings
from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.exceptions import (
    EmptyUploadError,
    SessionClientHTTPError,
    SessionClientNetworkError,
    UploadCancelledError,
    UploadInProgressError,
)
from whitelist_import.upload.models import (
    BatchError,
    BatchUploadResult,
    CompletionStats,
    SessionStatus,
    UploadProgress,
    UploadSession,
    UploadStage,
)
from whitelist_import.upload.partitioner import BatchLimits
from whitelist_import.upload.uploader import BatchUploader, build_uploader

LIMITS = BatchLimits(default=100, minimum=1, maximum=1000, step=1)


class FakeClock:
    """Monotonic clock that only moves when advanced."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _addresses(count: int) -> list[str]:
    return [f"0x{i:040x}" for i in range(count)]


def _make_session(*_args: object) -> UploadSession:
    return UploadSession(
        session_id="sess-1",
        survey_id="survey-1",
        total_addresses=0,
        processed_addresses=0,
        total_batches=0,
        completed_batches=0,
        replace_mode=False,
        created_at=datetime(2025, 1, 10, tzinfo=timezone.utc),
    )


def _ok(batch_index: int, entries: Sequence[str]) -> BatchUploadResult:
    return BatchUploadResult(batch_index=batch_index, added=len(entries), skipped=0)


def _make_client() -> AsyncMock:
    client = AsyncMock(spec=BaseSessionClient)
    client.create_session.side_effect = _make_session

    async def upload_batch(
        target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
    ) -> BatchUploadResult:
        return _ok(batch_index, entries)

    client.upload_batch.side_effect = upload_batch
    client.complete_session.return_value = CompletionStats(
        message="done", session_id="sess-1", total=3, completed=3, pending=0
    )
    return client


def _make_uploader(
    client: AsyncMock,
    clock: FakeClock | None = None,
    max_retries: int = 3,
) -> tuple[BatchUploader, AsyncMock]:
    sleep = AsyncMock()
    uploader = BatchUploader(
        client,
        limits=LIMITS,
        max_retries=max_retries,
        sleep=sleep,
        clock=clock or FakeClock(),
    )
    return uploader, sleep


class TestSuccessfulUpload:
    @pytest.mark.asyncio
    async def test_uploads_every_batch_in_order(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)
        entries = _addresses(250)

        outcome = await uploader.upload_addresses("survey-1", entries, batch_size=100)

        calls = client.upload_batch.await_args_list
        assert [c.args[2] for c in calls] == [0, 1, 2]
        assert [len(c.args[3]) for c in calls] == [100, 100, 50]
        assert [e for c in calls for e in c.args[3]] == entries
        assert [r.batch_index for r in outcome.results] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_summary_totals(self) -> None:
        client = _make_client()
        client.upload_batch.side_effect = [
            BatchUploadResult(batch_index=0, added=90, skipped=10),
            BatchUploadResult(
                batch_index=1,
                added=45,
                skipped=4,
                errors=[BatchError(message="rejected", value="0xbad")],
            ),
        ]
        uploader, _sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(150), batch_size=100)

        assert outcome.summary.total_processed == 150
        assert outcome.summary.total_added == 135
        assert outcome.summary.total_skipped == 14
        assert outcome.summary.total_errors == 1

    @pytest.mark.asyncio
    async def test_passes_replace_mode_to_create_session(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        await uploader.upload_addresses("survey-1", _addresses(5), replace_mode=True)

        client.create_session.assert_awaited_once_with("survey-1", 5, True, 100)

    @pytest.mark.asyncio
    async def test_completes_session(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(5))

        client.complete_session.assert_awaited_once_with("survey-1", "sess-1")
        assert outcome.final_stats is not None
        assert outcome.final_stats.completed == 3

    @pytest.mark.asyncio
    async def test_returns_completed_session_copy(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(250), batch_size=100)

        assert outcome.session.status is SessionStatus.COMPLETED
        assert outcome.session.completed_batches == 3
        assert outcome.session.processed_addresses == 250
        assert uploader.session is None
        assert uploader.stage is UploadStage.COMPLETED

    @pytest.mark.asyncio
    async def test_clamps_requested_batch_size(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        await uploader.upload_addresses("survey-1", _addresses(5), batch_size=0)

        assert uploader.batch_size == 1
        assert client.upload_batch.await_count == 5

    @pytest.mark.asyncio
    async def test_does_not_sleep_without_failures(self) -> None:
        client = _make_client()
        uploader, sleep = _make_uploader(client)

        await uploader.upload_addresses("survey-1", _addresses(250))

        sleep.assert_not_awaited()


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff_then_succeeds(self) -> None:
        client = _make_client()
        client.upload_batch.side_effect = [
            SessionClientNetworkError("timeout"),
            SessionClientNetworkError("timeout"),
            BatchUploadResult(batch_index=0, added=5, skipped=0),
        ]
        uploader, sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(5))

        assert client.upload_batch.await_count == 3
        assert sleep.await_args_list == [call(2.0), call(4.0)]
        assert outcome.results[0].added == 5
        assert outcome.summary.total_errors == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        client = _make_client()
        client.upload_batch.side_effect = SessionClientHTTPError("boom", 500)
        uploader, sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(5))

        assert client.upload_batch.await_count == 3
        assert sleep.await_count == 2
        failed = outcome.results[0]
        assert (failed.added, failed.skipped) == (0, 0)
        assert len(failed.errors) == 1
        assert "boom" in failed.errors[0].message

    @pytest.mark.asyncio
    async def test_respects_custom_retry_count(self) -> None:
        client = _make_client()
        client.upload_batch.side_effect = SessionClientNetworkError("down")
        uploader, sleep = _make_uploader(client, max_retries=1)

        await uploader.upload_addresses("survey-1", _addresses(5))

        assert client.upload_batch.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_block_later_batches(self) -> None:
        client = _make_client()

        async def upload_batch(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            if batch_index == 1:
                raise SessionClientNetworkError("batch 2 down")
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = upload_batch
        uploader, _sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(250), batch_size=100)

        assert [c.args[2] for c in client.upload_batch.await_args_list] == [0, 1, 1, 1, 2]
        assert [r.added for r in outcome.results] == [100, 0, 50]
        assert outcome.summary.total_added == 150
        assert outcome.summary.total_errors >= 1
        assert outcome.summary.total_processed == 150
        assert outcome.session.completed_batches == 2
        client.complete_session.assert_awaited_once()

    def test_rejects_zero_retries(self) -> None:
        with pytest.raises(ValueError, match="max_retries"):
            BatchUploader(_make_client(), max_retries=0)


class TestProgress:
    @pytest.mark.asyncio
    async def test_emits_stages_in_order(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        await uploader.upload_addresses(
            "survey-1", _addresses(250), on_progress=events.append, batch_size=100
        )

        assert [e.stage for e in events] == [
            UploadStage.CREATING_SESSION,
            UploadStage.UPLOADING,
            UploadStage.UPLOADING,
            UploadStage.UPLOADING,
            UploadStage.UPLOADING,
            UploadStage.COMPLETING,
            UploadStage.COMPLETED,
        ]
        assert [e.progress_percent for e in events] == [0, 0, 40, 80, 100, 95, 100]
        assert [e.current_batch for e in events[2:5]] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_batch_count_known_before_session_exists(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        await uploader.upload_addresses(
            "survey-1", _addresses(250), on_progress=events.append, batch_size=100
        )

        assert events[0].total_batches == 3
        assert events[0].session is None
        assert events[1].session is not None

    @pytest.mark.asyncio
    async def test_processed_addresses_never_decrease(self) -> None:
        client = _make_client()

        async def upload_batch(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            if batch_index == 2:
                raise SessionClientNetworkError("down")
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = upload_batch
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        await uploader.upload_addresses(
            "survey-1", _addresses(450), on_progress=events.append, batch_size=100
        )

        processed = [e.processed_addresses for e in events]
        assert processed == sorted(processed)
        assert processed[-1] == 350

    @pytest.mark.asyncio
    async def test_speed_and_eta_labels(self) -> None:
        clock = FakeClock()
        client = _make_client()

        async def upload_batch(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            clock.advance(1.0)
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = upload_batch
        uploader, _sleep = _make_uploader(client, clock=clock)
        events: list[UploadProgress] = []

        await uploader.upload_addresses(
            "survey-1", _addresses(200), on_progress=events.append, batch_size=100
        )

        assert events[1].speed_label == "0 addr/s"
        assert events[1].eta_label == "Calculating..."
        after_first = events[2]
        assert after_first.speed_label == "100 addr/s"
        assert after_first.eta_label == "~1s"
        assert events[3].eta_label == "~0s"

    @pytest.mark.asyncio
    async def test_errors_carry_sample_addresses(self) -> None:
        client = _make_client()

        async def upload_batch(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            if batch_index == 0:
                raise SessionClientNetworkError("down")
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = upload_batch
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []
        entries = _addresses(20)

        await uploader.upload_addresses(
            "survey-1", entries, on_progress=events.append, batch_size=10
        )

        after_second = events[3]
        assert len(after_second.errors) == 1
        error = after_second.errors[0]
        assert error.batch_index == 0
        assert "down" in error.message
        assert error.sample_addresses == tuple(entries[:5])

    @pytest.mark.asyncio
    async def test_server_reported_errors_are_listed(self) -> None:
        client = _make_client()
        client.upload_batch.side_effect = [
            BatchUploadResult(
                batch_index=0, added=4, skipped=0, errors=[BatchError(message="rejected")]
            )
        ]
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        await uploader.upload_addresses("survey-1", _addresses(5), on_progress=events.append)

        assert events[2].errors[0].message == "rejected"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_batch(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        async def upload_batch(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            if batch_index == 1:
                uploader.cancel()
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = upload_batch
        events: list[UploadProgress] = []

        with pytest.raises(UploadCancelledError):
            await uploader.upload_addresses(
                "survey-1", _addresses(500), on_progress=events.append, batch_size=100
            )

        assert [c.args[2] for c in client.upload_batch.await_args_list] == [0, 1]
        client.complete_session.assert_not_awaited()
        final = events[-1]
        assert final.stage is UploadStage.CANCELLED
        assert final.current_batch == 2
        assert final.processed_addresses == 200
        assert final.session is not None
        assert final.session.status is SessionStatus.CANCELLED
        assert uploader.stage is UploadStage.CANCELLED
        assert uploader.session is None

    @pytest.mark.asyncio
    async def test_cancel_before_run_is_reset(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)
        uploader.cancel()

        outcome = await uploader.upload_addresses("survey-1", _addresses(5))

        assert outcome.summary.total_added == 5

    @pytest.mark.asyncio
    async def test_uploader_can_run_again_after_cancel(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        async def cancel_during_first(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            uploader.cancel()
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = cancel_during_first
        with pytest.raises(UploadCancelledError):
            await uploader.upload_addresses("survey-1", _addresses(20), batch_size=10)

        client.upload_batch.side_effect = None
        client.upload_batch.return_value = BatchUploadResult(batch_index=0, added=5, skipped=0)
        outcome = await uploader.upload_addresses("survey-1", _addresses(5))

        assert outcome.summary.total_added == 5
        assert uploader.stage is UploadStage.COMPLETED


class TestSessionFailures:
    @pytest.mark.asyncio
    async def test_create_session_failure_is_fatal(self) -> None:
        client = _make_client()
        client.create_session.side_effect = SessionClientHTTPError("forbidden", 403)
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        with pytest.raises(SessionClientHTTPError, match="forbidden"):
            await uploader.upload_addresses("survey-1", _addresses(5), on_progress=events.append)

        client.upload_batch.assert_not_awaited()
        final = events[-1]
        assert final.stage is UploadStage.ERROR
        assert final.errors[0].batch_index == -1
        assert final.errors[0].message == "forbidden"
        assert uploader.stage is UploadStage.ERROR

    @pytest.mark.asyncio
    async def test_complete_session_failure_is_fatal(self) -> None:
        client = _make_client()
        client.complete_session.side_effect = SessionClientNetworkError("lost connection")
        uploader, _sleep = _make_uploader(client)
        events: list[UploadProgress] = []

        with pytest.raises(SessionClientNetworkError):
            await uploader.upload_addresses("survey-1", _addresses(5), on_progress=events.append)

        final = events[-1]
        assert final.stage is UploadStage.ERROR
        assert final.session is not None
        assert final.session.status is SessionStatus.FAILED
        assert uploader.session is None


class TestGuards:
    @pytest.mark.asyncio
    async def test_empty_entries_raise_before_remote_calls(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)

        with pytest.raises(EmptyUploadError):
            await uploader.upload_addresses("survey-1", [])

        client.create_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_run_is_rejected(self) -> None:
        client = _make_client()
        uploader, _sleep = _make_uploader(client)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_upload(
            target_id: str, session_id: str, batch_index: int, entries: Sequence[str]
        ) -> BatchUploadResult:
            started.set()
            await release.wait()
            return _ok(batch_index, entries)

        client.upload_batch.side_effect = slow_upload
        first = asyncio.create_task(uploader.upload_addresses("survey-1", _addresses(5)))
        await started.wait()

        with pytest.raises(UploadInProgressError):
            await uploader.upload_addresses("survey-1", _addresses(5))

        release.set()
        outcome = await first
        assert outcome.summary.total_added == 5


class TestBuildUploader:
    def test_applies_settings(self) -> None:
        settings = Settings(
            default_batch_size=200,
            min_batch_size=50,
            max_batch_size=400,
            max_upload_retries=5,
        )

        uploader = build_uploader(settings, _make_client())

        assert uploader.batch_size == 200
        uploader.set_batch_size(10_000)
        assert uploader.batch_size == 400


class TestSessionOwnership:
    @pytest.mark.asyncio
    async def test_counts_batches_on_its_own_session_copy(self) -> None:
        client = _make_client()
        created = _make_session()
        client.create_session.side_effect = None
        client.create_session.return_value = created
        uploader, _sleep = _make_uploader(client)

        outcome = await uploader.upload_addresses("survey-1", _addresses(250), batch_size=100)

        assert outcome.session.completed_batches == 3
        assert created.completed_batches == 0
        assert created.status is SessionStatus.ACTIVE
