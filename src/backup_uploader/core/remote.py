"""The remote storage capability the upload core is written against."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Union

from .session import AppendArg, CommitArg


@dataclass(frozen=True)
class FileMetadata:
    path: str
    size: int


@dataclass(frozen=True)
class FolderMetadata:
    path: str


@dataclass(frozen=True)
class DeletedMetadata:
    path: str


Metadata = Union[FileMetadata, FolderMetadata, DeletedMetadata]


class RemoteStorage(ABC):
    """Append-at-offset upload sessions plus metadata lookup.

    Every method raises a ``RemoteError`` subclass on failure. A lookup of a
    path with nothing at it raises ``PathNotFoundError``.
    """

    @abstractmethod
    def session_start(self) -> str:
        """Open a concurrent upload session and return its id."""

    @abstractmethod
    def session_append(self, arg: AppendArg, data: bytes) -> None:
        """Append ``data`` to the session at ``arg.offset``, closing it if ``arg.close``."""

    @abstractmethod
    def session_finish(self, arg: CommitArg) -> Dict[str, Any]:
        """Commit the session's data to ``arg.path``."""

    @abstractmethod
    def get_metadata(self, path: str) -> Metadata:
        """Look up what exists at ``path``."""
