"""Pytest configuration and fixtures."""

import os
import threading

import pytest

from backup_uploader.core.exceptions import PathNotFoundError
from backup_uploader.core.remote import RemoteStorage


class FakeRemote(RemoteStorage):
    """In-memory upload sessions with hooks for injecting failures."""

    def __init__(self):
        self.lock = threading.Lock()
        self.sessions = {}
        self.closed = set()
        self.commits = []
        self.metadata = {}
        self.metadata_lookups = []
        self.append_calls = []
        self.append_hook = None
        self.finish_hook = None
        self.start_error = None
        self._next_id = 0

    def session_start(self):
        if self.start_error is not None:
            raise self.start_error
        with self.lock:
            self._next_id += 1
            session_id = f"session-{self._next_id}"
            self.sessions[session_id] = {}
        return session_id

    def session_append(self, arg, data):
        with self.lock:
            self.append_calls.append(arg)
        if self.append_hook is not None:
            self.append_hook(arg, data)
        with self.lock:
            self.sessions[arg.session_id][arg.offset] = bytes(data)
            if arg.close:
                self.closed.add(arg.session_id)

    def session_finish(self, arg):
        if self.finish_hook is not None:
            self.finish_hook(arg)
        content = self.assemble(arg.session_id)
        self.commits.append((arg, content))
        return {"path_display": arg.path, "size": len(content)}

    def get_metadata(self, path):
        self.metadata_lookups.append(path)
        if path not in self.metadata:
            raise PathNotFoundError(path)
        return self.metadata[path]

    def assemble(self, session_id):
        """Join a session's appended blocks, checking they leave no gaps."""
        content = b""
        for offset, data in sorted(self.sessions[session_id].items()):
            assert offset == len(content), f"gap or overlap at {offset}"
            content += data
        return content


class SleepRecorder:
    """Stands in for time.sleep and remembers every wait."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def make_file(tmp_path):
    """Create a file of the given size, filled with ``fill`` or a repeating pattern."""

    def _make(name, size, fill=None):
        path = tmp_path / name
        if fill is not None:
            data = fill * size
        else:
            data = bytes(i % 251 for i in range(size))
        path.write_bytes(data)
        return str(path)

    return _make


@pytest.fixture
def file_bytes():
    def _read(path):
        with open(path, "rb") as f:
            return f.read()

    return _read


@pytest.fixture
def settings_file(tmp_path):
    """Path for a config file inside the test's temp dir."""
    return os.path.join(str(tmp_path), "config", "config.json")
