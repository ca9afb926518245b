"""Upload session state shared by the parallel block workers."""

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock

from .tracker import CompletionTracker


@dataclass(frozen=True)
class Resume:
    """Checkpoint needed to continue an interrupted upload session."""

    start_offset: int
    session_id: str

    def __str__(self) -> str:
        return f"{self.session_id},{self.start_offset}"

    @classmethod
    def parse(cls, text: str) -> "Resume":
        """Parse the ``"{session_id},{start_offset}"`` form produced by ``str()``."""
        session_id, sep, offset_str = text.rpartition(",")
        if not sep:
            raise ValueError("missing file offset")
        try:
            start_offset = int(offset_str)
        except ValueError:
            raise ValueError("invalid file offset") from None
        return cls(start_offset=start_offset, session_id=session_id)


@dataclass(frozen=True)
class AppendArg:
    """Request to append data to a session at an absolute offset."""

    session_id: str
    offset: int
    close: bool = False


@dataclass(frozen=True)
class CommitArg:
    """Request to finish a session and commit it to a path."""

    session_id: str
    offset: int
    path: str
    client_modified: str
    mode: str = "overwrite"


def iso8601(mtime: float) -> str:
    """Format a POSIX timestamp the way the remote expects modification times."""
    return datetime.fromtimestamp(int(mtime), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class UploadSession:
    """Keep track of state accessed and updated by the various parts of one upload attempt."""

    def __init__(self, session_id: str, start_offset: int, file_size: int) -> None:
        self.session_id = session_id
        self.start_offset = start_offset
        self.file_size = file_size
        self._lock = Lock()
        self._bytes_transferred = 0
        self._completion = CompletionTracker(start_offset)

    @classmethod
    def start(cls, client, file_size: int) -> "UploadSession":
        """Open a fresh remote session. Any failure propagates; there is nothing to resume."""
        session_id = client.session_start()
        return cls(session_id, 0, file_size)

    @classmethod
    def resume(cls, resume: Resume, file_size: int) -> "UploadSession":
        """Rebuild an interrupted session without talking to the remote."""
        return cls(resume.session_id, resume.start_offset, file_size)

    def append_arg(self, block_offset: int, close: bool = False) -> AppendArg:
        """Build the request to append a block at the given offset from the resume point."""
        return AppendArg(self.session_id, self.start_offset + block_offset, close)

    def commit_arg(self, dest_path: str, mtime: float) -> CommitArg:
        """Build the request that commits the whole file to ``dest_path``."""
        return CommitArg(
            session_id=self.session_id,
            offset=self.file_size,
            path=dest_path,
            client_modified=iso8601(mtime),
        )

    def mark_block_uploaded(self, block_offset: int, block_len: int) -> None:
        with self._lock:
            self._completion.complete_block(self.start_offset + block_offset, block_len)

    def complete_up_to(self) -> int:
        """Offset up to which the file is completely uploaded; safe to resume from."""
        with self._lock:
            return self._completion.complete_up_to

    def add_transferred(self, num_bytes: int) -> int:
        """Add to the bytes-sent counter and return the new total."""
        with self._lock:
            self._bytes_transferred += num_bytes
            return self._bytes_transferred

    @property
    def bytes_transferred(self) -> int:
        with self._lock:
            return self._bytes_transferred

    def checkpoint(self) -> Resume:
        return Resume(start_offset=self.complete_up_to(), session_id=self.session_id)
