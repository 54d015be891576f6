"""Human-readable labels for durations and throughput."""

import math


def format_duration(seconds: float) -> str:
    """Bucket a duration into seconds, minutes, or hours+minutes.

    Examples: ``~45s``, ``~3 min``, ``~1h 5m``.
    """
    seconds = max(0.0, seconds)
    if seconds < 60:
        return f"~{math.ceil(seconds)}s"
    if seconds < 3600:
        return f"~{math.ceil(seconds / 60)} min"
    hours = int(seconds // 3600)
    minutes = math.ceil((seconds % 3600) / 60)
    return f"~{hours}h {minutes}m"


def format_rate(addresses_per_second: float) -> str:
    return f"{round(addresses_per_second)} addr/s"
