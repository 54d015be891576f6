import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

from whitelist_import.config.settings import Settings

T = TypeVar("T")


@dataclass(frozen=True)
class BatchLimits:
    """User-tunable batch size range; values outside it are clamped silently."""

    default: int = 1000
    minimum: int = 100
    maximum: int = 5000
    step: int = 100

    def __post_init__(self) -> None:
        if self.minimum < 1:
            raise ValueError(f"minimum batch size must be >= 1, got {self.minimum}")
        if self.minimum > self.maximum:
            raise ValueError(
                f"minimum batch size {self.minimum} exceeds maximum {self.maximum}"
            )
        if not self.minimum <= self.default <= self.maximum:
            raise ValueError(
                f"default batch size {self.default} is outside "
                f"[{self.minimum}, {self.maximum}]"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchLimits":
        return cls(
            default=settings.default_batch_size,
            minimum=settings.min_batch_size,
            maximum=settings.max_batch_size,
            step=settings.batch_size_step,
        )

    def clamp(self, size: int | None) -> int:
        if size is None:
            return self.default
        return max(self.minimum, min(self.maximum, size))


def chunked(entries: Sequence[T], size: int) -> list[list[T]]:
    """Split entries into consecutive chunks of ``size``; the last may be shorter."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(entries[i : i + size]) for i in range(0, len(entries), size)]


class BatchPartitioner:
    """Splits address lists into zero-indexed batches within configured limits."""

    def __init__(self, limits: BatchLimits) -> None:
        self._limits = limits

    @property
    def limits(self) -> BatchLimits:
        return self._limits

    def partition(self, entries: Sequence[T], batch_size: int | None) -> list[list[T]]:
        return chunked(entries, self._limits.clamp(batch_size))

    def batch_count(self, total: int, batch_size: int | None) -> int:
        return math.ceil(total / self._limits.clamp(batch_size))
