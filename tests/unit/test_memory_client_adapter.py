import pytest

from whitelist_import.upload.exceptions import SessionClientHTTPError
from whitelist_import.upload.memory_client_adapter import InMemorySessionClient
from whitelist_import.upload.models import SessionStatus


class TestInMemorySessionClient:
    @pytest.mark.asyncio
    async def test_creates_session_with_batch_count(self) -> None:
        client = InMemorySessionClient()

        session = await client.create_session("survey-1", 250, False, 100)

        assert session.total_batches == 3
        assert session.status is SessionStatus.ACTIVE
        assert session.survey_id == "survey-1"

    @pytest.mark.asyncio
    async def test_skips_already_stored_addresses(self) -> None:
        client = InMemorySessionClient(stored={"survey-1": {"0xa"}})
        session = await client.create_session("survey-1", 2, False, 100)

        result = await client.upload_batch("survey-1", session.session_id, 0, ["0xa", "0xb"])

        assert result.added == 1
        assert result.skipped == 1
        assert client.stored["survey-1"] == {"0xa", "0xb"}

    @pytest.mark.asyncio
    async def test_replace_mode_clears_store(self) -> None:
        client = InMemorySessionClient(stored={"survey-1": {"0xa", "0xold"}})
        session = await client.create_session("survey-1", 1, True, 100)

        result = await client.upload_batch("survey-1", session.session_id, 0, ["0xa"])

        assert result.added == 1
        assert client.stored["survey-1"] == {"0xa"}

    @pytest.mark.asyncio
    async def test_complete_reports_final_stats(self) -> None:
        client = InMemorySessionClient()
        session = await client.create_session("survey-1", 2, False, 1)
        await client.upload_batch("survey-1", session.session_id, 0, ["0xa"])

        stats = await client.complete_session("survey-1", session.session_id)

        assert (stats.total, stats.completed, stats.pending) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_unknown_session_raises_not_found(self) -> None:
        client = InMemorySessionClient()

        with pytest.raises(SessionClientHTTPError, match="not found") as info:
            await client.upload_batch("survey-1", "nope", 0, ["0xa"])

        assert info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_completed_session_rejects_batches(self) -> None:
        client = InMemorySessionClient()
        session = await client.create_session("survey-1", 1, False, 100)
        await client.complete_session("survey-1", session.session_id)

        with pytest.raises(SessionClientHTTPError, match="completed"):
            await client.upload_batch("survey-1", session.session_id, 0, ["0xa"])

    @pytest.mark.asyncio
    async def test_returned_session_is_detached_from_store(self) -> None:
        client = InMemorySessionClient()
        session = await client.create_session("survey-1", 2, False, 1)

        session.completed_batches = 5
        session.status = SessionStatus.CANCELLED
        await client.upload_batch("survey-1", session.session_id, 0, ["0xa"])

        stored = client.sessions[session.session_id]
        assert stored.completed_batches == 1
        assert stored.status is SessionStatus.ACTIVE
