from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class UploadSession:
    """Local mirror of a server-side upload session.

    The remote service is the source of truth; the uploader only updates
    ``status`` and the counters for display.
    """

    session_id: str
    survey_id: str
    total_addresses: int
    processed_addresses: int
    total_batches: int
    completed_batches: int
    replace_mode: bool
    created_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BatchError:
    message: str
    value: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class BatchUploadResult:
    """Outcome of one attempted batch, as classified by the server."""

    batch_index: int
    added: int
    skipped: int
    errors: list[BatchError] = field(default_factory=list)


@dataclass(frozen=True)
class CompletionStats:
    message: str
    session_id: str
    total: int
    completed: int
    pending: int


class UploadStage(str, Enum):
    IDLE = "idle"
    CREATING_SESSION = "creating_session"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class UploadErrorInfo:
    batch_index: int
    message: str
    sample_addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class UploadProgress:
    """Snapshot emitted after every state change and every batch."""

    stage: UploadStage
    total_addresses: int
    processed_addresses: int
    current_batch: int
    total_batches: int
    progress_percent: int
    speed_label: str
    eta_label: str
    errors: tuple[UploadErrorInfo, ...] = ()
    session: UploadSession | None = None


@dataclass(frozen=True)
class UploadSummary:
    total_processed: int
    total_added: int
    total_skipped: int
    total_errors: int


@dataclass(frozen=True)
class UploadOutcome:
    session: UploadSession
    results: list[BatchUploadResult]
    summary: UploadSummary
    final_stats: CompletionStats | None = None
