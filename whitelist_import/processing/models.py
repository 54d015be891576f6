from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class InvalidEntry:
    """A non-blank line rejected by the line validator."""

    original_value: str
    line_number: int
    reason: str


@dataclass(frozen=True)
class ProcessingStats:
    total_lines: int
    valid_count: int
    duplicate_count: int
    invalid_count: int
    estimated_upload_time_label: str


@dataclass(frozen=True)
class ProcessingResult:
    """Output of one processing run.

    ``valid_entries`` is unique and in first-seen order. ``duplicates`` holds one
    element per repeated occurrence of an already accepted entry.
    """

    valid_entries: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    invalid_entries: list[InvalidEntry] = field(default_factory=list)
    stats: ProcessingStats = field(
        default_factory=lambda: ProcessingStats(0, 0, 0, 0, "~0s")
    )


class ProcessingStage(str, Enum):
    READING = "reading"
    PARSING = "parsing"
    DEDUPLICATING = "deduplicating"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProcessingProgress:
    """Point-in-time snapshot emitted while a file is being processed."""

    stage: ProcessingStage
    progress_percent: int
    current_line: int
    message: str
    total_lines: int | None = None
