from collections.abc import Sequence
from typing import Any

import httpx

from whitelist_import.logging.logger import Log
from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.exceptions import (
    SessionClientHTTPError,
    SessionClientNetworkError,
    SessionResponseError,
)
from whitelist_import.upload.models import BatchUploadResult, CompletionStats, UploadSession
from whitelist_import.upload.wire import (
    build_batch_result,
    build_completion,
    build_session,
    unwrap_envelope,
)


class HttpSessionClient(BaseSessionClient):
    """Session client adapter for the admin whitelist REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str = "",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def create_session(
        self,
        target_id: str,
        total_count: int,
        replace_mode: bool,
        batch_size: int,
    ) -> UploadSession:
        data = await self._post(
            self._sessions_path(target_id),
            {
                "totalAddresses": total_count,
                "replaceMode": replace_mode,
                "batchSize": batch_size,
            },
        )
        return build_session(data)

    async def upload_batch(
        self,
        target_id: str,
        session_id: str,
        batch_index: int,
        entries: Sequence[str],
    ) -> BatchUploadResult:
        data = await self._post(
            f"{self._sessions_path(target_id)}/{session_id}/batches",
            {"batchIndex": batch_index, "addresses": list(entries)},
        )
        return build_batch_result(batch_index, data)

    async def complete_session(self, target_id: str, session_id: str) -> CompletionStats:
        data = await self._post(
            f"{self._sessions_path(target_id)}/{session_id}/complete", {}
        )
        return build_completion(data)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _sessions_path(target_id: str) -> str:
        return f"/admin/surveys/{target_id}/whitelist/upload-sessions"

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        Log.debug(f"POST {path}")
        try:
            response = await self._client.post(path, json=body)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise SessionClientNetworkError(
                f"Upload service network error: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise SessionClientNetworkError(
                f"Upload service transport error: {exc}"
            ) from exc

        if response.is_error:
            raise SessionClientHTTPError(
                f"Upload service returned {response.status_code} for {path}: "
                f"{self._error_message(response)}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise SessionResponseError(f"Invalid JSON response: {exc}") from exc
        return unwrap_envelope(payload)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            if isinstance(payload.get("message"), str):
                return payload["message"]
        return response.reason_phrase
