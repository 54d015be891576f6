class UploadError(Exception):
    """Base exception for batch upload failures."""


class UploadCancelledError(UploadError):
    """Raised when an upload run stops because cancel() was requested."""


class EmptyUploadError(UploadError):
    """Raised when an upload is started without any addresses."""


class UploadInProgressError(UploadError):
    """Raised when an uploader instance is asked to run twice at once."""


class SessionClientError(UploadError):
    """Raised when a remote session call fails."""


class SessionClientNetworkError(SessionClientError):
    """Raised when the remote service cannot be reached or times out."""


class SessionClientHTTPError(SessionClientError):
    """Raised when the remote service answers with a non-success status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionResponseError(SessionClientError):
    """Raised when a response body does not have the expected shape."""
