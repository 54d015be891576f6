from abc import ABC, abstractmethod
from collections.abc import Sequence
from types import TracebackType

from whitelist_import.upload.models import BatchUploadResult, CompletionStats, UploadSession


class BaseSessionClient(ABC):
    """Contract for the remote upload-session service.

    Implementations translate shapes only. Failures are raised as
    SessionClientError subclasses and handled by the uploader.
    """

    @abstractmethod
    async def create_session(
        self,
        target_id: str,
        total_count: int,
        replace_mode: bool,
        batch_size: int,
    ) -> UploadSession:
        """Open a server-side session correlating every batch of one import."""

    @abstractmethod
    async def upload_batch(
        self,
        target_id: str,
        session_id: str,
        batch_index: int,
        entries: Sequence[str],
    ) -> BatchUploadResult:
        """Send one batch; the server classifies each address as added or skipped."""

    @abstractmethod
    async def complete_session(self, target_id: str, session_id: str) -> CompletionStats:
        """Close the session and return its final counters."""

    async def aclose(self) -> None:
        """Release any held resources."""

    async def __aenter__(self) -> "BaseSessionClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
