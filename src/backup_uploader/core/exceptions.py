"""
Exception classes for Backup Uploader.

Remote clients raise these; the upload orchestrators turn them into per-file
results at the file boundary.
"""

from typing import Any, Dict, Optional


class BackupUploaderError(Exception):
    """Base exception for all Backup Uploader errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(BackupUploaderError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class RemoteError(BackupUploaderError):
    """Raised when a call to a remote storage API fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class NetworkError(RemoteError):
    """Raised when the remote could not be reached at all."""


class PermanentError(RemoteError):
    """Raised when the remote refuses a request for this file for good; retrying won't help."""


class BadRequestError(PermanentError):
    """Raised when the remote rejects a request as malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class FileTooLargeError(PermanentError):
    """Raised when a single file is larger than an upload session accepts."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 409)


class RateLimitedError(RemoteError):
    """Raised when the remote asks us to slow down for a while."""

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message, 429)
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after


class PathNotFoundError(RemoteError):
    """Raised when nothing exists at a remote path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Remote path not found: {path}", 409)
        self.path = path
        self.details["path"] = path


class SystemicError(RemoteError):
    """Raised when the whole destination is unusable, not just one file."""


class AuthenticationError(SystemicError):
    """Raised when the remote refuses our credentials."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, 401)


class InsufficientStorageError(SystemicError):
    """Raised when the destination account is out of space."""

    def __init__(self, message: str = "Insufficient storage space") -> None:
        super().__init__(message, 507)


class UploadSizeLimitError(SystemicError):
    """Raised when a file is larger than the destination accepts."""

    def __init__(self, size: int, max_size: Optional[int] = None) -> None:
        limit = max_size if max_size is not None else "unknown"
        super().__init__(f"File won't fit in destination. File size: {size}, Max size: {limit}", 413)
        self.size = size
        self.max_size = max_size


class BlockUploadError(BackupUploaderError):
    """Raised when a block could not be appended after exhausting its retries."""

    def __init__(self, message: str, offset: int) -> None:
        super().__init__(message, {"offset": offset})
        self.offset = offset
