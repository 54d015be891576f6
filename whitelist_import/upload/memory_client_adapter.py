"""In-memory session client adapter.

Reproduces the service's add/skip/replace semantics without any network calls.
Useful for dry runs, local development, and tests.
"""

import math
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timezone

from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.exceptions import SessionClientHTTPError
from whitelist_import.upload.models import (
    BatchUploadResult,
    CompletionStats,
    SessionStatus,
    UploadSession,
)


class InMemorySessionClient(BaseSessionClient):
    """Session client backed by per-target address sets held in memory."""

    def __init__(self, stored: dict[str, set[str]] | None = None) -> None:
        self.stored: dict[str, set[str]] = stored if stored is not None else {}
        self.sessions: dict[str, UploadSession] = {}

    async def create_session(
        self,
        target_id: str,
        total_count: int,
        replace_mode: bool,
        batch_size: int,
    ) -> UploadSession:
        if replace_mode:
            self.stored[target_id] = set()
        else:
            self.stored.setdefault(target_id, set())
        session = UploadSession(
            session_id=str(uuid.uuid4()),
            survey_id=target_id,
            total_addresses=total_count,
            processed_addresses=0,
            total_batches=math.ceil(total_count / max(1, batch_size)),
            completed_batches=0,
            replace_mode=replace_mode,
            created_at=datetime.now(timezone.utc),
        )
        self.sessions[session.session_id] = session
        return replace(session)

    async def upload_batch(
        self,
        target_id: str,
        session_id: str,
        batch_index: int,
        entries: Sequence[str],
    ) -> BatchUploadResult:
        session = self._active_session(target_id, session_id)
        store = self.stored[target_id]
        added = 0
        for entry in entries:
            if entry in store:
                continue
            store.add(entry)
            added += 1
        session.processed_addresses += len(entries)
        session.completed_batches += 1
        return BatchUploadResult(
            batch_index=batch_index,
            added=added,
            skipped=len(entries) - added,
        )

    async def complete_session(self, target_id: str, session_id: str) -> CompletionStats:
        session = self._active_session(target_id, session_id)
        session.status = SessionStatus.COMPLETED
        return CompletionStats(
            message="Upload session completed",
            session_id=session_id,
            total=session.total_batches,
            completed=session.completed_batches,
            pending=max(0, session.total_batches - session.completed_batches),
        )

    def _active_session(self, target_id: str, session_id: str) -> UploadSession:
        session = self.sessions.get(session_id)
        if session is None or session.survey_id != target_id:
            raise SessionClientHTTPError(f"Upload session {session_id} not found", 404)
        if session.status is not SessionStatus.ACTIVE:
            raise SessionClientHTTPError(
                f"Upload session {session_id} is {session.status.value}", 409
            )
        return session
