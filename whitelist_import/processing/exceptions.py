class ProcessingError(Exception):
    """Base exception for all address processing errors."""


class FileReadError(ProcessingError):
    """Raised when an address file cannot be read from disk."""


class UnsupportedFileTypeError(ProcessingError):
    """Raised when an address file has a suffix that is not accepted."""
