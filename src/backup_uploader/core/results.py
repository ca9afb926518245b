"""Tagged results passed between the upload stages.

Callers branch on these with ``isinstance``; they are return values, not exceptions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union

from .session import Resume


class UploadOutcome(str, Enum):
    """What happened to one file."""

    SUCCESS = "success"
    FAILURE = "failure"  # skip this file, carry on with the batch
    SYSTEMIC_FAILURE = "systemic_failure"  # the destination is unusable, stop the batch


@dataclass(frozen=True)
class Resumable:
    """The attempt failed but accepted bytes can be kept."""

    resume: Resume


@dataclass(frozen=True)
class Nonresumable:
    """The attempt failed in a way retrying cannot fix."""

    reason: str
    systemic: bool = False


AttemptFailure = Union[Resumable, Nonresumable]


@dataclass(frozen=True)
class NewFile:
    """Nothing exists at the path; upload a new file."""

    path: str


@dataclass(frozen=True)
class Replace:
    """A different file exists at the path; overwrite it."""

    path: str


@dataclass(frozen=True)
class SkipMatching:
    """A matching file already exists; do nothing."""


@dataclass(frozen=True)
class ResolutionError:
    """The destination could not be determined; skip the file for now.

    ``systemic`` marks lookups that failed because the whole destination is unusable.
    """

    reason: str
    systemic: bool = False


PathNormalizationResult = Union[NewFile, Replace, SkipMatching, ResolutionError]


@dataclass
class BatchResult:
    """Summary of uploading a list of files."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    not_attempted: List[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.aborted
