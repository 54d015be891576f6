"""Streaming parse, validation and dedup of address lists."""

import codecs
import math
from collections.abc import Callable
from pathlib import Path

import aiofiles
import aiofiles.os

from whitelist_import.config.settings import Settings
from whitelist_import.formatting import format_duration
from whitelist_import.logging.logger import Log
from whitelist_import.processing.exceptions import FileReadError, UnsupportedFileTypeError
from whitelist_import.processing.models import (
    InvalidEntry,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStage,
    ProcessingStats,
)
from whitelist_import.processing.validators import BaseLineValidator, ValidatorFactory

INVALID_ADDRESS_REASON = "Invalid address format"

ProgressCallback = Callable[[ProcessingProgress], None]


class _LineAccumulator:
    """Classifies lines one at a time, tracking the seen-set and line counter."""

    def __init__(self, validator: BaseLineValidator) -> None:
        self._validator = validator
        self._seen: set[str] = set()
        self.valid_entries: list[str] = []
        self.duplicates: list[str] = []
        self.invalid_entries: list[InvalidEntry] = []
        self.current_line = 0
        self._carry = ""

    def feed(self, text: str) -> None:
        """Consume decoded text; the trailing partial line is carried over."""
        lines = (self._carry + text).split("\n")
        self._carry = lines.pop()
        for line in lines:
            self._add_line(line)

    def finish(self) -> None:
        """Treat the carried-over remainder as the final line."""
        remainder, self._carry = self._carry, ""
        if remainder.strip():
            self._add_line(remainder)

    def _add_line(self, raw_line: str) -> None:
        self.current_line += 1
        trimmed = raw_line.strip()
        if not trimmed:
            return
        normalized = trimmed.lower()
        if not self._validator.is_valid(normalized):
            self.invalid_entries.append(
                InvalidEntry(
                    original_value=trimmed,
                    line_number=self.current_line,
                    reason=INVALID_ADDRESS_REASON,
                )
            )
            return
        if normalized in self._seen:
            self.duplicates.append(normalized)
            return
        self._seen.add(normalized)
        self.valid_entries.append(normalized)


class AddressFileProcessor:
    """Turns raw text or files into a deduplicated, validated address set."""

    DEFAULT_CHUNK_SIZE = 1024 * 1024
    READ_PROGRESS_SHARE = 70
    DEDUP_PROGRESS = 85

    def __init__(
        self,
        validator: BaseLineValidator,
        *,
        chunk_size_bytes: int = DEFAULT_CHUNK_SIZE,
        default_batch_size: int = 1000,
        seconds_per_batch: int = 2,
        allowed_extensions: tuple[str, ...] = (".txt", ".csv"),
    ) -> None:
        if chunk_size_bytes < 1:
            raise ValueError("chunk_size_bytes must be positive")
        self._validator = validator
        self._chunk_size = chunk_size_bytes
        self._default_batch_size = default_batch_size
        self._seconds_per_batch = seconds_per_batch
        self._allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)

    def process_text(
        self, text: str, batch_size_hint: int | None = None
    ) -> ProcessingResult:
        """Process pasted text held fully in memory."""
        accumulator = _LineAccumulator(self._validator)
        accumulator.feed(text)
        accumulator.finish()
        result = self._build_result(accumulator, batch_size_hint)
        Log.info(
            f"Processed text input: {result.stats.valid_count} valid, "
            f"{result.stats.duplicate_count} duplicates, "
            f"{result.stats.invalid_count} invalid"
        )
        return result

    async def process_file(
        self,
        path: str | Path,
        on_progress: ProgressCallback | None = None,
        batch_size_hint: int | None = None,
    ) -> ProcessingResult:
        """Process a file of arbitrary size in fixed-size byte windows.

        Raises:
            UnsupportedFileTypeError: if the suffix is not an accepted type.
            FileReadError: if the file cannot be opened or read.
        """
        path = Path(path)
        self._check_extension(path)

        accumulator = _LineAccumulator(self._validator)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._emit(
            on_progress,
            ProcessingProgress(
                stage=ProcessingStage.READING,
                progress_percent=0,
                current_line=0,
                message="Reading file...",
            ),
        )

        try:
            total_bytes = (await aiofiles.os.stat(path)).st_size
            processed_bytes = 0
            async with aiofiles.open(path, "rb") as handle:
                while True:
                    chunk = await handle.read(self._chunk_size)
                    if not chunk:
                        break
                    processed_bytes += len(chunk)
                    accumulator.feed(decoder.decode(chunk))
                    self._emit(
                        on_progress,
                        self._parsing_progress(accumulator, processed_bytes, total_bytes),
                    )
        except OSError as exc:
            raise FileReadError(f"Failed to read {path}: {exc}") from exc

        accumulator.feed(decoder.decode(b"", final=True))
        accumulator.finish()

        self._emit(
            on_progress,
            ProcessingProgress(
                stage=ProcessingStage.DEDUPLICATING,
                progress_percent=self.DEDUP_PROGRESS,
                current_line=accumulator.current_line,
                total_lines=accumulator.current_line,
                message="Finalizing...",
            ),
        )

        result = self._build_result(accumulator, batch_size_hint)

        self._emit(
            on_progress,
            ProcessingProgress(
                stage=ProcessingStage.COMPLETE,
                progress_percent=100,
                current_line=accumulator.current_line,
                total_lines=accumulator.current_line,
                message=f"Done! Found {result.stats.valid_count} unique addresses",
            ),
        )
        Log.info(
            f"Processed {path.name}: {result.stats.total_lines} lines, "
            f"{result.stats.valid_count} valid, "
            f"{result.stats.duplicate_count} duplicates, "
            f"{result.stats.invalid_count} invalid",
            bytes=total_bytes,
        )
        return result

    def estimate_upload_time(self, valid_count: int, batch_size: int | None = None) -> str:
        batch_size = batch_size or self._default_batch_size
        batch_count = math.ceil(valid_count / batch_size)
        return format_duration(batch_count * self._seconds_per_batch)

    def _check_extension(self, path: Path) -> None:
        if not self._allowed_extensions:
            return
        if path.suffix.lower() not in self._allowed_extensions:
            raise UnsupportedFileTypeError(
                f"File type '{path.suffix or path.name}' is not supported. "
                f"Expected one of: {list(self._allowed_extensions)}"
            )

    def _parsing_progress(
        self,
        accumulator: _LineAccumulator,
        processed_bytes: int,
        total_bytes: int,
    ) -> ProcessingProgress:
        # The file may grow between stat() and the last read.
        total_bytes = max(total_bytes, processed_bytes)
        ratio = processed_bytes / total_bytes
        return ProcessingProgress(
            stage=ProcessingStage.PARSING,
            progress_percent=round(ratio * self.READ_PROGRESS_SHARE),
            current_line=accumulator.current_line,
            total_lines=round(accumulator.current_line / ratio),
            message=f"Processed {accumulator.current_line} lines...",
        )

    def _build_result(
        self, accumulator: _LineAccumulator, batch_size_hint: int | None
    ) -> ProcessingResult:
        stats = ProcessingStats(
            total_lines=accumulator.current_line,
            valid_count=len(accumulator.valid_entries),
            duplicate_count=len(accumulator.duplicates),
            invalid_count=len(accumulator.invalid_entries),
            estimated_upload_time_label=self.estimate_upload_time(
                len(accumulator.valid_entries), batch_size_hint
            ),
        )
        return ProcessingResult(
            valid_entries=accumulator.valid_entries,
            duplicates=accumulator.duplicates,
            invalid_entries=accumulator.invalid_entries,
            stats=stats,
        )

    @staticmethod
    def _emit(on_progress: ProgressCallback | None, progress: ProcessingProgress) -> None:
        if on_progress is not None:
            on_progress(progress)


def build_file_processor(settings: Settings) -> AddressFileProcessor:
    """Build an AddressFileProcessor from application settings."""
    return AddressFileProcessor(
        ValidatorFactory.create(settings),
        chunk_size_bytes=settings.read_chunk_size_bytes,
        default_batch_size=settings.default_batch_size,
        seconds_per_batch=settings.estimated_seconds_per_batch,
        allowed_extensions=settings.file_extensions(),
    )
