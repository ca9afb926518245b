"""Dropbox HTTP API client for concurrent upload sessions."""

import json
import logging
from typing import Any, Dict, Optional

import requests

from .exceptions import (
    AuthenticationError,
    BadRequestError,
    FileTooLargeError,
    InsufficientStorageError,
    NetworkError,
    PathNotFoundError,
    RateLimitedError,
    RemoteError,
)
from .remote import DeletedMetadata, FileMetadata, FolderMetadata, Metadata, RemoteStorage
from .session import AppendArg, CommitArg

logger = logging.getLogger(__name__)


class DropboxClient(RemoteStorage):
    """Client for the Dropbox v2 HTTP API."""

    API_URL = "https://api.dropboxapi.com/2"
    CONTENT_URL = "https://content.dropboxapi.com/2"

    def __init__(
        self,
        access_token: str,
        timeout: float = 300.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the Dropbox client.

        Args:
            access_token: OAuth2 bearer token for the Dropbox account.
            timeout: Per-request timeout in seconds.
            session: Optional pre-built requests session (shared connection pool).
        """
        if not access_token:
            raise AuthenticationError(
                "There is no saved Dropbox authorization. Provide an access token."
            )
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {self.access_token}"})

    def _content_request(self, endpoint: str, arg: Dict[str, Any], data: bytes = b"") -> requests.Response:
        headers = {
            "Content-Type": "application/octet-stream",
            "Dropbox-API-Arg": json.dumps(arg),
        }
        return self._request(f"{self.CONTENT_URL}{endpoint}", data=data, headers=headers)

    def _rpc_request(self, endpoint: str, body: Dict[str, Any]) -> requests.Response:
        return self._request(f"{self.API_URL}{endpoint}", json=body)

    def _request(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e
        if response.status_code != 200:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response) -> RemoteError:
        """Classify a failed Dropbox response into our exception hierarchy."""
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        summary = body.get("error_summary") or response.text or f"HTTP {status}"

        if status == 429 or "too_many_requests" in summary or "too_many_write_operations" in summary:
            retry_after = response.headers.get("Retry-After")
            if retry_after is None:
                retry_after = (body.get("error") or {}).get("retry_after", 0)
            try:
                wait = float(retry_after)
            except (TypeError, ValueError):
                wait = 0.0
            return RateLimitedError(f"Rate limited: {summary}", retry_after=wait)
        if status == 401:
            return AuthenticationError(f"Dropbox rejected credentials: {summary}")
        if status == 400:
            return BadRequestError(f"Bad request: {summary}")
        if status == 409:
            if "insufficient_space" in summary:
                return InsufficientStorageError(f"Dropbox account is full: {summary}")
            if "not_found" in summary:
                return PathNotFoundError(summary)
            if "too_large" in summary:
                return FileTooLargeError(f"File exceeds the upload session limit: {summary}")
        return RemoteError(f"Dropbox API error: {summary}", status)

    def session_start(self) -> str:
        response = self._content_request(
            "/files/upload_session/start", {"close": False, "session_type": "concurrent"}
        )
        session_id = response.json()["session_id"]
        logger.debug(f"Started upload session {session_id}")
        return session_id

    def session_append(self, arg: AppendArg, data: bytes) -> None:
        self._content_request(
            "/files/upload_session/append_v2",
            {
                "cursor": {"session_id": arg.session_id, "offset": arg.offset},
                "close": arg.close,
            },
            data,
        )

    def session_finish(self, arg: CommitArg) -> Dict[str, Any]:
        response = self._content_request(
            "/files/upload_session/finish",
            {
                "cursor": {"session_id": arg.session_id, "offset": arg.offset},
                "commit": {
                    "path": arg.path,
                    "mode": arg.mode,
                    "client_modified": arg.client_modified,
                },
            },
        )
        return response.json()

    def get_metadata(self, path: str) -> Metadata:
        try:
            response = self._rpc_request("/files/get_metadata", {"path": path})
        except PathNotFoundError:
            raise PathNotFoundError(path) from None
        meta = response.json()
        tag = meta.get(".tag")
        if tag == "file":
            return FileMetadata(path=path, size=int(meta["size"]))
        if tag == "folder":
            return FolderMetadata(path=path)
        if tag == "deleted":
            return DeletedMetadata(path=path)
        raise RemoteError(f"Unexpected metadata type for {path}: {tag}")
