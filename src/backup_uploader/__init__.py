"""
Backup Uploader - resumable uploads of backup exports to cloud storage.

This package provides:
- Parallel, resumable Dropbox upload sessions with backoff between attempts
- Google Drive resumable uploads with quota checks
- CLI tool for one-off uploads
- FastAPI server that queues upload actions
"""

__version__ = "1.0.0"
__author__ = "Backup Uploader Team"

from .core.backoff import BackoffTracker, calculate_backoff_series
from .core.dropbox import DropboxClient
from .core.exceptions import (
    AuthenticationError,
    BackupUploaderError,
    BlockUploadError,
    ConfigurationError,
    InsufficientStorageError,
    NetworkError,
    PermanentError,
    RemoteError,
    SystemicError,
)
from .core.gdrive import GoogleDriveClient, GoogleDriveUploader
from .core.orchestrator import DropboxUploader, upload_attempt
from .core.results import BatchResult, UploadOutcome

__all__ = [
    # Core classes
    "DropboxClient",
    "DropboxUploader",
    "GoogleDriveClient",
    "GoogleDriveUploader",
    "BackoffTracker",
    "BatchResult",
    "UploadOutcome",
    # Exceptions
    "BackupUploaderError",
    "ConfigurationError",
    "RemoteError",
    "NetworkError",
    "PermanentError",
    "SystemicError",
    "AuthenticationError",
    "InsufficientStorageError",
    "BlockUploadError",
    # Convenience functions
    "calculate_backoff_series",
    "upload_attempt",
    # Metadata
    "__version__",
    "__author__",
]
