from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    api_base_url: str = "http://localhost:3001/api"
    api_token: str = ""
    api_timeout_seconds: float = 30.0

    session_client: str = "http"
    address_validator: str = "any"

    default_batch_size: int = 1000
    min_batch_size: int = 100
    max_batch_size: int = 5000
    batch_size_step: int = 100

    max_upload_retries: int = 3
    retry_backoff_base_seconds: float = 2.0
    error_sample_size: int = 5

    read_chunk_size_bytes: int = 1024 * 1024
    estimated_seconds_per_batch: int = 2
    allowed_file_extensions: str = ".txt,.csv"

    def file_extensions(self) -> tuple[str, ...]:
        """Return the allowed upload file suffixes, lower-cased with a leading dot."""
        suffixes = []
        for raw in self.allowed_file_extensions.split(","):
            suffix = raw.strip().lower()
            if not suffix:
                continue
            suffixes.append(suffix if suffix.startswith(".") else f".{suffix}")
        return tuple(suffixes)
