"""
Google Drive upload support.

Talks to the Drive v3 REST API directly with requests and uploads through
resumable upload sessions, retrying transient failures along a backoff series.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, Optional, TypeVar, Union

import requests

from .backoff import BackoffTracker, calculate_backoff_series
from .exceptions import (
    AuthenticationError,
    BadRequestError,
    InsufficientStorageError,
    NetworkError,
    RateLimitedError,
    RemoteError,
    SystemicError,
    UploadSizeLimitError,
)
from .results import UploadOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Must be a multiple of 256 KiB.
CHUNK_SIZE = 1 << 27

MIME_TYPE = "application/octet-stream"

# Wait after a rate limit that came without a Retry-After header.
RATE_LIMIT_WAIT = 30.0

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def default_tracker() -> BackoffTracker:
    return BackoffTracker.rounded(calculate_backoff_series(1.0, 2.0, 6, 60.0, 300.0, 0.5))


def is_retriable(error: RemoteError) -> bool:
    """Network trouble, request timeouts and server errors are worth waiting out."""
    if isinstance(error, SystemicError):
        return False
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, NetworkError):
        return True
    status = error.status_code or 0
    return status == 408 or status >= 500


def is_systemic(error: RemoteError) -> bool:
    """Any client error other than a timeout or rate limit means no further upload will work either."""
    if isinstance(error, SystemicError):
        return True
    if isinstance(error, (NetworkError, RateLimitedError)):
        return False
    status = error.status_code or 0
    return 400 <= status < 500 and status != 408


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _parse_range(header: Optional[str]) -> int:
    """Turn a ``Range: bytes=0-N`` header into the next offset the server expects."""
    if not header:
        return 0
    _, _, span = header.partition("=")
    _, _, last = span.partition("-")
    try:
        return int(last) + 1
    except ValueError:
        raise RemoteError(f"Malformed Range header in upload status: {header!r}") from None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class DriveAbout:
    """The parts of the Drive ``about`` resource that decide whether an upload fits."""

    limit: Optional[int] = None
    usage: Optional[int] = None
    usage_in_drive: Optional[int] = None
    max_upload_size: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DriveAbout":
        quota = data.get("storageQuota") or {}
        return cls(
            limit=_optional_int(quota.get("limit")),
            usage=_optional_int(quota.get("usage")),
            usage_in_drive=_optional_int(quota.get("usageInDrive")),
            max_upload_size=_optional_int(data.get("maxUploadSize")),
        )


class GoogleDriveClient:
    """Client for the Google Drive v3 REST API."""

    API_URL = "https://www.googleapis.com/drive/v3"
    UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

    def __init__(
        self,
        access_token: str,
        timeout: float = 300.0,
        session: Optional[requests.Session] = None,
        chunk_size: int = CHUNK_SIZE,
        tracker_factory: Callable[[], BackoffTracker] = default_tracker,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the Google Drive client.

        Args:
            access_token: OAuth2 bearer token with the full Drive scope.
            timeout: Per-request timeout in seconds.
            session: Optional pre-built requests session.
            chunk_size: Bytes sent per resumable upload request.
            tracker_factory: Builds the backoff policy for one upload.
            sleep: Function used to wait between retries.
        """
        if not access_token:
            raise AuthenticationError("There is no Google Drive access token configured.")
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {self.access_token}"})
        self.chunk_size = chunk_size
        self.tracker_factory = tracker_factory
        self.sleep = sleep

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"HTTP connection failed: {e}") from e

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self._send(method, url, **kwargs)
        if response.status_code not in (200, 201):
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response) -> RemoteError:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            error = {}
        message = error.get("message") or response.text or f"HTTP {status}"
        reasons = {e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)}

        if status == 401:
            return AuthenticationError(f"Google Drive rejected credentials: {message}")
        if "storageQuotaExceeded" in reasons:
            return InsufficientStorageError(f"Google Drive storage quota exceeded: {message}")
        if status == 400:
            return BadRequestError(f"Bad Request: {message}")
        if status == 429 or (status == 403 and reasons & RATE_LIMIT_REASONS):
            try:
                retry_after = float(response.headers.get("Retry-After", 0))
            except (TypeError, ValueError):
                retry_after = 0.0
            return RateLimitedError(f"Rate limited: {message}", retry_after=retry_after)
        return RemoteError(f"HTTP response contained failure code {status}: {message}", status)

    def _retry_wait(self, tracker: BackoffTracker, error: RemoteError) -> Optional[float]:
        """How long to wait before retrying after ``error``, or None to give up.

        Rate limits are always waited out and don't count against the tracker.
        """
        if not is_retriable(error):
            return None
        if isinstance(error, RateLimitedError):
            return error.retry_after if error.retry_after > 0 else RATE_LIMIT_WAIT
        return tracker.next_wait()

    def _with_backoff(self, tracker: BackoffTracker, call: Callable[[], T]) -> T:
        while True:
            try:
                return call()
            except RemoteError as e:
                wait = self._retry_wait(tracker, e)
                if wait is None:
                    if is_retriable(e):
                        logger.error(f"Giving up after repeated failures: {e}")
                    raise
                logger.warning(f"Google Drive request failed ({e}), retrying in {wait:.0f}s")
                self.sleep(wait)

    def about(self) -> DriveAbout:
        response = self._request(
            "GET", f"{self.API_URL}/about", params={"fields": "storageQuota,maxUploadSize"}
        )
        return DriveAbout.from_json(response.json())

    def find_file(self, name: str, parent_id: str) -> Optional[Dict[str, Any]]:
        """
        Look for a non-trashed file with the given name directly inside a folder.

        Searches across all drives the account can see.

        Returns:
            The first matching file's metadata, or None if there is none.

        Raises:
            RemoteError: If the search failed or was too incomplete to trust.
        """
        query = f"trashed = false and name = '{_escape_query(name)}' and '{_escape_query(parent_id)}' in parents"
        response = self._request(
            "GET",
            f"{self.API_URL}/files",
            params={
                "q": query,
                "spaces": "drive",
                "corpora": "allDrives",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
                "fields": "incompleteSearch, files(id, name, size)",
            },
        )
        data = response.json()
        files = data.get("files")
        if data.get("incompleteSearch") and not files:
            raise RemoteError(f"Unable to determine if file already exists: {name}")
        if files:
            return files[0]
        return None

    def start_resumable_upload(
        self,
        name: str,
        parent_id: str,
        size: int,
        description: str = "backup archive",
    ) -> str:
        """Open a resumable upload session and return its URL."""
        try:
            response = self._request(
                "POST",
                self.UPLOAD_URL,
                params={"uploadType": "resumable", "supportsAllDrives": "true"},
                headers={
                    "X-Upload-Content-Type": MIME_TYPE,
                    "X-Upload-Content-Length": str(size),
                },
                json={
                    "name": name,
                    "originalFilename": name,
                    "parents": [parent_id],
                    "mimeType": MIME_TYPE,
                    "description": description,
                },
            )
        except RemoteError as e:
            if e.status_code == 413:
                raise UploadSizeLimitError(size) from e
            raise
        upload_url = response.headers.get("Location")
        if not upload_url:
            raise RemoteError("Resumable upload response had no session URL")
        return upload_url

    def _put_range(self, upload_url: str, content_range: str, data: bytes) -> Optional[int]:
        response = self._send(
            "PUT", upload_url, data=data, headers={"Content-Range": content_range}
        )
        if response.status_code in (200, 201):
            return None
        if response.status_code == 308:
            return _parse_range(response.headers.get("Range"))
        raise self._error_from_response(response)

    def upload_chunk(self, upload_url: str, data: bytes, offset: int, total: int) -> Optional[int]:
        """
        Send one chunk of a resumable upload.

        Returns:
            None once the upload is complete, otherwise the next offset the server expects.
        """
        if data:
            content_range = f"bytes {offset}-{offset + len(data) - 1}/{total}"
        else:
            content_range = f"bytes */{total}"
        return self._put_range(upload_url, content_range, data)

    def query_upload_status(self, upload_url: str, total: int) -> Optional[int]:
        """Ask how much of an interrupted upload the server kept."""
        return self._put_range(upload_url, f"bytes */{total}", b"")

    def upload_resumable(self, source: BinaryIO, name: str, parent_id: str, size: int) -> None:
        """Upload a whole file through a resumable session, riding out transient failures."""
        tracker = self.tracker_factory()
        upload_url = self._with_backoff(
            tracker, lambda: self.start_resumable_upload(name, parent_id, size)
        )
        offset = 0
        while True:
            source.seek(offset)
            data = source.read(self.chunk_size)
            try:
                next_offset = self.upload_chunk(upload_url, data, offset, size)
            except RemoteError as e:
                wait = self._retry_wait(tracker, e)
                if wait is None:
                    if is_retriable(e):
                        logger.error(f"Giving up on {name} after repeated failures: {e}")
                    raise
                logger.warning(f"Chunk at {offset} of {name} failed ({e}), retrying in {wait:.0f}s")
                self.sleep(wait)
                # The server may have kept some or all of the chunk.
                next_offset = self._with_backoff(
                    tracker, lambda: self.query_upload_status(upload_url, size)
                )
            if next_offset is None:
                return
            offset = next_offset
            logger.debug(f"{name}: {offset} of {size} bytes uploaded")


class GoogleDriveUploader:
    """Upload files into one Google Drive folder, skipping any already there."""

    def __init__(self, client: GoogleDriveClient, parent_id: str) -> None:
        self.client = client
        self.parent_id = parent_id

    def check_free_space(self, upload_size: int) -> bool:
        """Check that a file of ``upload_size`` bytes fits in the account."""
        try:
            about = self.client.about()
        except RemoteError as e:
            logger.error(f"Couldn't check free space on google drive (stopping uploads): {e}")
            return False

        if about.max_upload_size is not None and about.max_upload_size < upload_size:
            logger.error(
                f"File to upload ({upload_size}) bigger than max_upload_size "
                f"({about.max_upload_size}), stopping uploads"
            )
            return False

        if about.limit is None:
            return True
        if about.usage is None:
            if about.limit < upload_size:
                logger.error(
                    f"File to upload ({upload_size}) bigger than storage limit ({about.limit}), stopping uploads"
                )
                return False
            return True

        remaining = about.limit - about.usage
        if remaining < upload_size:
            logger.error(
                f"File to upload ({upload_size}) bigger than free space remaining, stopping uploads. "
                f"Limit: {about.limit} Usage: {about.usage} total, "
                f"({about.usage_in_drive or 0} of which is in Drive). Remaining: {remaining}"
            )
            return False
        return True

    def upload_file(self, path: Union[str, Path]) -> UploadOutcome:
        """Upload a single file."""
        path = str(path)
        name = Path(path).name
        logger.info(f"Uploading file to gdrive: {path}")
        try:
            source = open(path, "rb")
        except OSError as e:
            logger.error(f"Couldn't open file! File: {path} -- Error: {e}")
            return UploadOutcome.FAILURE

        with source:
            try:
                size = os.fstat(source.fileno()).st_size
            except OSError as e:
                logger.error(f"Couldn't get file size, stopping uploads: {e}")
                return UploadOutcome.SYSTEMIC_FAILURE

            if not self.check_free_space(size):
                return UploadOutcome.SYSTEMIC_FAILURE

            try:
                self.client.upload_resumable(source, name, self.parent_id, size)
            except RemoteError as e:
                logger.error(f"Couldn't upload file! File: {path} -- Reason: {e}")
                return UploadOutcome.SYSTEMIC_FAILURE if is_systemic(e) else UploadOutcome.FAILURE
            except OSError as e:
                logger.error(f"Couldn't upload file! File: {path} -- Reason: IO error: {e}")
                return UploadOutcome.FAILURE

        logger.info(f"Uploaded file to gdrive: {path}")
        return UploadOutcome.SUCCESS

    def upload_files(self, paths: Iterable[Union[str, Path]]) -> bool:
        """
        Upload every file not already present in the folder.

        Safe to run repeatedly until everything is up.

        Returns:
            False if uploading was found to be impossible and nothing more should be
            attempted. True does not mean every file succeeded.
        """
        for path in paths:
            path = str(path)
            name = Path(path).name
            if not name:
                logger.error(f"Couldn't determine filename! File: {path}")
                continue
            try:
                existing = self.client.find_file(name, self.parent_id)
            except RemoteError as e:
                logger.error(f"Couldn't search for file! File: {name} -- Error: {e}")
                continue
            if existing is not None:
                logger.info(f"File already in gdrive: {path}")
                continue

            if self.upload_file(path) is UploadOutcome.SYSTEMIC_FAILURE:
                return False
        return True
