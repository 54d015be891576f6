from whitelist_import.config.settings import Settings
from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.http_client_adapter import HttpSessionClient
from whitelist_import.upload.memory_client_adapter import InMemorySessionClient


class SessionClientFactory:
    """Creates the configured session client adapter."""

    SUPPORTED = ("http", "memory")

    @classmethod
    def create(cls, settings: Settings) -> BaseSessionClient:
        kind = settings.session_client.lower()
        if kind == "memory":
            return InMemorySessionClient()
        if kind == "http":
            base_url = settings.api_base_url.strip()
            if not base_url:
                raise ValueError("api_base_url is required for session_client=http")
            return HttpSessionClient(
                base_url=base_url,
                api_token=settings.api_token,
                timeout_seconds=settings.api_timeout_seconds,
            )
        raise ValueError(
            f"Unknown session client '{kind}'. Choose from: {list(cls.SUPPORTED)}"
        )
