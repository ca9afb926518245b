"""
Tests for the Dropbox HTTP client.

The requests session is mocked; these tests check request shapes and error mapping.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from backup_uploader.core.dropbox import DropboxClient
from backup_uploader.core.exceptions import (
    AuthenticationError,
    BadRequestError,
    FileTooLargeError,
    InsufficientStorageError,
    NetworkError,
    PathNotFoundError,
    PermanentError,
    RateLimitedError,
    RemoteError,
    SystemicError,
)
from backup_uploader.core.remote import DeletedMetadata, FileMetadata, FolderMetadata
from backup_uploader.core.session import AppendArg, CommitArg


def make_response(status=200, body=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.text = text
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def http():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def client(http):
    return DropboxClient("token", session=http)


class TestRequests:
    """Tests for the requests each operation sends."""

    def test_auth_header(self, client, http):
        assert http.headers["Authorization"] == "Bearer token"

    def test_empty_token_rejected(self, http):
        with pytest.raises(AuthenticationError):
            DropboxClient("", session=http)

    def test_session_start(self, client, http):
        http.post.return_value = make_response(body={"session_id": "sid"})
        assert client.session_start() == "sid"

        url = http.post.call_args.args[0]
        headers = http.post.call_args.kwargs["headers"]
        assert url == "https://content.dropboxapi.com/2/files/upload_session/start"
        assert json.loads(headers["Dropbox-API-Arg"])["session_type"] == "concurrent"
        assert headers["Content-Type"] == "application/octet-stream"

    def test_session_append(self, client, http):
        http.post.return_value = make_response(body=None)
        client.session_append(AppendArg("sid", 8, close=True), b"data")

        url = http.post.call_args.args[0]
        kwargs = http.post.call_args.kwargs
        assert url.endswith("/files/upload_session/append_v2")
        assert json.loads(kwargs["headers"]["Dropbox-API-Arg"]) == {
            "cursor": {"session_id": "sid", "offset": 8},
            "close": True,
        }
        assert kwargs["data"] == b"data"

    def test_session_finish(self, client, http):
        http.post.return_value = make_response(body={"name": "a.bin"})
        result = client.session_finish(CommitArg("sid", 20, "/Backup/a.bin", "2024-01-01T00:00:00Z"))

        assert result == {"name": "a.bin"}
        arg = json.loads(http.post.call_args.kwargs["headers"]["Dropbox-API-Arg"])
        assert arg["cursor"] == {"session_id": "sid", "offset": 20}
        assert arg["commit"] == {
            "path": "/Backup/a.bin",
            "mode": "overwrite",
            "client_modified": "2024-01-01T00:00:00Z",
        }

    def test_get_metadata_variants(self, client, http):
        http.post.return_value = make_response(body={".tag": "file", "size": 42})
        assert client.get_metadata("/a") == FileMetadata("/a", 42)
        assert http.post.call_args.kwargs["json"] == {"path": "/a"}

        http.post.return_value = make_response(body={".tag": "folder"})
        assert client.get_metadata("/a") == FolderMetadata("/a")

        http.post.return_value = make_response(body={".tag": "deleted"})
        assert client.get_metadata("/a") == DeletedMetadata("/a")


class TestErrors:
    """Tests for error classification."""

    def test_not_found(self, client, http):
        http.post.return_value = make_response(409, {"error_summary": "path/not_found/.."})
        with pytest.raises(PathNotFoundError) as exc_info:
            client.get_metadata("/missing")
        assert exc_info.value.path == "/missing"

    def test_rate_limited_header(self, client, http):
        http.post.return_value = make_response(
            429, {"error_summary": "too_many_requests/"}, headers={"Retry-After": "7"}
        )
        with pytest.raises(RateLimitedError) as exc_info:
            client.session_append(AppendArg("sid", 0), b"x")
        assert exc_info.value.retry_after == 7.0

    def test_rate_limited_body(self, client, http):
        http.post.return_value = make_response(
            429,
            {"error_summary": "too_many_write_operations/", "error": {"retry_after": 3}},
        )
        with pytest.raises(RateLimitedError) as exc_info:
            client.session_append(AppendArg("sid", 0), b"x")
        assert exc_info.value.retry_after == 3.0

    def test_insufficient_space_is_systemic(self, client, http):
        http.post.return_value = make_response(409, {"error_summary": "path/insufficient_space/"})
        with pytest.raises(InsufficientStorageError) as exc_info:
            client.session_finish(CommitArg("sid", 20, "/a", "2024-01-01T00:00:00Z"))
        assert isinstance(exc_info.value, SystemicError)

    def test_unauthorized_is_systemic(self, client, http):
        http.post.return_value = make_response(401, text="invalid_access_token")
        with pytest.raises(AuthenticationError):
            client.session_start()

    def test_bad_request(self, client, http):
        http.post.return_value = make_response(400, text="Error in call")
        with pytest.raises(BadRequestError):
            client.session_start()

    def test_file_too_large_is_permanent(self, client, http):
        http.post.return_value = make_response(409, {"error_summary": "too_large/..."})
        with pytest.raises(FileTooLargeError) as exc_info:
            client.session_finish(CommitArg("sid", 10, "/Backup/a.bin", "2024-01-01T00:00:00Z"))
        assert isinstance(exc_info.value, PermanentError)
        assert not isinstance(exc_info.value, SystemicError)

    def test_server_error(self, client, http):
        http.post.return_value = make_response(503, text="unavailable")
        with pytest.raises(RemoteError) as exc_info:
            client.session_start()
        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, SystemicError)

    def test_connection_error(self, client, http):
        http.post.side_effect = requests.exceptions.ConnectionError("reset")
        with pytest.raises(NetworkError):
            client.session_start()
