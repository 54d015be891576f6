"""Translates upload-session service responses into domain models."""

from datetime import datetime, timezone
from typing import Any

from whitelist_import.upload.exceptions import SessionResponseError
from whitelist_import.upload.models import (
    BatchError,
    BatchUploadResult,
    CompletionStats,
    SessionStatus,
    UploadSession,
)

_VALID_STATUSES = frozenset(status.value for status in SessionStatus)


def unwrap_envelope(payload: Any) -> dict[str, Any]:
    """Return the response object, unwrapping ``{"success": ..., "data": ...}``.

    Raises:
        SessionResponseError: if the body is not an object or reports failure.
    """
    if not isinstance(payload, dict):
        raise SessionResponseError("Response body must be an object")
    if "success" not in payload or "data" not in payload:
        return payload
    if payload["success"] is False:
        raise SessionResponseError(_envelope_error_message(payload))
    data = payload["data"]
    if not isinstance(data, dict):
        raise SessionResponseError("Response 'data' must be an object")
    return data


def build_session(data: dict[str, Any]) -> UploadSession:
    status = data.get("status", SessionStatus.ACTIVE.value)
    if status not in _VALID_STATUSES:
        raise SessionResponseError(
            f"'status' must be one of {sorted(_VALID_STATUSES)}, got {status!r}"
        )
    replace_mode = data.get("replaceMode")
    if not isinstance(replace_mode, bool):
        raise SessionResponseError("'replaceMode' must be a boolean")
    return UploadSession(
        session_id=_require_str(data, "sessionId"),
        survey_id=_require_str(data, "surveyId"),
        total_addresses=_require_int(data, "totalAddresses"),
        processed_addresses=_require_int(data, "processedAddresses"),
        total_batches=_require_int(data, "totalBatches"),
        completed_batches=_require_int(data, "completedBatches"),
        replace_mode=replace_mode,
        created_at=_parse_timestamp(data.get("createdAt"), "createdAt"),
        status=SessionStatus(status),
    )


def build_batch_result(batch_index: int, data: dict[str, Any]) -> BatchUploadResult:
    raw_errors = data.get("errors", [])
    if not isinstance(raw_errors, list):
        raise SessionResponseError("'errors' must be a list")
    return BatchUploadResult(
        batch_index=batch_index,
        added=_require_int(data, "added"),
        skipped=_require_int(data, "skipped"),
        errors=[_build_batch_error(item, i) for i, item in enumerate(raw_errors)],
    )


def build_completion(data: dict[str, Any]) -> CompletionStats:
    final_stats = data.get("finalStats")
    if not isinstance(final_stats, dict):
        raise SessionResponseError("'finalStats' must be an object")
    message = data.get("message", "")
    if not isinstance(message, str):
        raise SessionResponseError("'message' must be a string")
    return CompletionStats(
        message=message,
        session_id=_require_str(data, "sessionId"),
        total=_require_int(final_stats, "total"),
        completed=_require_int(final_stats, "completed"),
        pending=_require_int(final_stats, "pending"),
    )


def _build_batch_error(raw: Any, index: int) -> BatchError:
    if not isinstance(raw, dict):
        raise SessionResponseError(f"Error at index {index} must be an object")
    message = raw.get("message")
    if not isinstance(message, str):
        raise SessionResponseError(f"Error at index {index}: 'message' must be a string")
    value = raw.get("value")
    if value is not None and not isinstance(value, str):
        raise SessionResponseError(
            f"Error at index {index}: 'value' must be a string or null"
        )
    raw_timestamp = raw.get("timestamp")
    if raw_timestamp is None:
        return BatchError(message=message, value=value)
    return BatchError(
        message=message,
        value=value,
        timestamp=_parse_timestamp(raw_timestamp, f"errors[{index}].timestamp"),
    )


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise SessionResponseError(f"'{key}' must be a non-empty string")
    return value


def _require_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise SessionResponseError(f"'{key}' must be an integer")
    if value < 0:
        raise SessionResponseError(f"'{key}' must not be negative")
    return value


def _parse_timestamp(raw: Any, key: str) -> datetime:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    if not isinstance(raw, str):
        raise SessionResponseError(f"'{key}' must be an ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise SessionResponseError(f"'{key}' is not a valid timestamp: {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _envelope_error_message(payload: dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return "Service reported failure"
