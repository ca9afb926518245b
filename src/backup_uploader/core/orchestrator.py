"""Drive files through resumable upload sessions with retry and backoff."""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .backoff import calculate_backoff_series
from .block_uploader import ParallelBlockUploader
from .destination import get_destination_path
from .exceptions import BlockUploadError, PermanentError, RemoteError, SystemicError
from .remote import RemoteStorage
from .results import (
    AttemptFailure,
    BatchResult,
    NewFile,
    Nonresumable,
    Replace,
    ResolutionError,
    Resumable,
    SkipMatching,
    UploadOutcome,
)
from .session import Resume, UploadSession

logger = logging.getLogger(__name__)

COMMIT_RETRIES = 3


def default_backoff_series() -> List[float]:
    """Waits between session attempts; the trailing zero is the last attempt's."""
    series = calculate_backoff_series(0.5, 1.5, 10, 60.0, 600.0, 0.5)
    series.append(0.0)
    return series


def upload_attempt(
    client: RemoteStorage,
    source_path: Union[str, Path],
    dest_path: str,
    resume: Optional[Resume],
    uploader: ParallelBlockUploader,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[AttemptFailure]:
    """Make one attempt at uploading a file through an upload session.

    Returns:
        None on success, otherwise ``Resumable`` with the checkpoint to carry into
        the next attempt or ``Nonresumable`` when retrying cannot help.
    """
    try:
        source = open(source_path, "rb")
    except OSError as e:
        return Nonresumable(f"Failed to open file: {e}")

    with source:
        try:
            stat = os.fstat(source.fileno())
        except OSError as e:
            return Nonresumable(f"Error getting source file metadata: {e}")
        source_len = stat.st_size
        source_mtime = stat.st_mtime

        if resume is not None:
            try:
                source.seek(resume.start_offset)
            except (OSError, ValueError) as e:
                return Nonresumable(f"Seek error: {e}")
            session = UploadSession.resume(resume, source_len)
        else:
            try:
                session = UploadSession.start(client, source_len)
            except RemoteError as e:
                return Nonresumable(
                    f"Starting upload session failed: {e}", systemic=isinstance(e, SystemicError)
                )

        logger.debug(f"Upload session for {source_path}: {session.session_id} from {session.start_offset}")

        try:
            last_block = uploader.upload(source, session)
        except SystemicError as e:
            return Nonresumable(f"Destination unusable: {e}", systemic=True)
        except PermanentError as e:
            return Nonresumable(f"Upload refused: {e}")
        except (BlockUploadError, OSError) as e:
            logger.warning(f"Upload interrupted: {e}")
            return Resumable(session.checkpoint())

    arg = session.append_arg(last_block.offset, close=True)
    try:
        uploader.upload_block_with_retry(arg, last_block.data, session, time.time())
    except (BlockUploadError, RemoteError) as e:
        # Try committing anyway: we may be resuming a session that was already
        # closed but never committed.
        logger.warning(f"Failed to close session: {e}")

    finish = session.commit_arg(dest_path, source_mtime)
    for attempt in range(1, COMMIT_RETRIES + 1):
        try:
            client.session_finish(finish)
            return None
        except SystemicError as e:
            return Nonresumable(f"Commit refused: {e}", systemic=True)
        except PermanentError as e:
            return Nonresumable(f"Commit refused: {e}")
        except RemoteError as e:
            logger.warning(f"Error finishing upload (attempt {attempt}, retrying): {e}")
            sleep(1)

    return Resumable(session.checkpoint())


class DropboxUploader:
    """Upload local files into a destination folder, resuming across transient failures."""

    def __init__(
        self,
        client: RemoteStorage,
        dest_root: str,
        *,
        block_uploader: Optional[ParallelBlockUploader] = None,
        backoff_factory: Callable[[], Sequence[float]] = default_backoff_series,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.dest_root = dest_root
        self.block_uploader = block_uploader or ParallelBlockUploader(client, sleep=sleep)
        self.backoff_factory = backoff_factory
        self.sleep = sleep

    def destination_for(self, source_path: Union[str, Path]) -> str:
        return f"{self.dest_root.rstrip('/')}/{Path(source_path).name}"

    def upload_one_file(self, source_path: Union[str, Path]) -> UploadOutcome:
        """Upload a single file, retrying until it succeeds or stops making progress."""
        source_path = str(source_path)
        basename = Path(source_path).name
        if not basename:
            logger.error(f"Failed to get filename from path: {source_path}")
            return UploadOutcome.FAILURE

        try:
            source_size = os.path.getsize(source_path)
        except OSError as e:
            logger.error(f"Failed to get metadata of file {source_path}: {e}")
            return UploadOutcome.FAILURE

        resolved = get_destination_path(
            self.client, self.destination_for(source_path), source_path, source_size
        )
        if isinstance(resolved, SkipMatching):
            logger.info(f"File already uploaded, skipping: {basename}")
            return UploadOutcome.SUCCESS
        if isinstance(resolved, ResolutionError):
            if resolved.systemic:
                logger.error(f"Destination unusable while resolving {basename}: {resolved.reason}")
                return UploadOutcome.SYSTEMIC_FAILURE
            logger.error(f"Failed to normalize destination path for {basename}: {resolved.reason}")
            return UploadOutcome.FAILURE
        if isinstance(resolved, (NewFile, Replace)):
            dest_path = resolved.path
        else:
            logger.error(f"Unexpected destination result for {basename}: {resolved!r}")
            return UploadOutcome.FAILURE

        return self._upload_with_retries(source_path, dest_path)

    def _upload_with_retries(self, source_path: str, dest_path: str) -> UploadOutcome:
        backoff = list(self.backoff_factory())
        resume: Optional[Resume] = None
        # Only escalate the wait on repeated failures at the same offset. While
        # progress is being made, keep retrying after the shortest wait.
        retry_count = 0
        while retry_count < len(backoff):
            failure = upload_attempt(
                self.client, source_path, dest_path, resume, self.block_uploader, self.sleep
            )
            if failure is None:
                logger.info(f"Uploaded file: {source_path} -> {dest_path}")
                return UploadOutcome.SUCCESS

            if isinstance(failure, Nonresumable):
                if failure.systemic:
                    logger.error(f"File upload error for {source_path} (systemic): {failure.reason}")
                    return UploadOutcome.SYSTEMIC_FAILURE
                logger.error(f"File upload error for {source_path}: {failure.reason}")
                return UploadOutcome.FAILURE

            checkpoint = failure.resume
            if resume is None or checkpoint.start_offset > resume.start_offset:
                retry_count = 0
            else:
                retry_count += 1
            logger.warning(f"Upload interrupted! Resume data: {checkpoint}")
            resume = checkpoint

            if retry_count >= len(backoff):
                break
            wait = backoff[retry_count]
            logger.info(f"Waiting for {wait:.2f}s before attempt at offset {resume.start_offset}")
            self.sleep(wait)

        logger.error(f"Failed to upload file {source_path}: retries exhausted at offset {resume.start_offset if resume else 0}")
        return UploadOutcome.FAILURE

    def upload_batch(self, paths: Iterable[Union[str, Path]]) -> BatchResult:
        """Upload files in order, stopping everything on a systemic failure."""
        pending = [str(p) for p in paths]
        result = BatchResult()
        for index, path in enumerate(pending):
            outcome = self.upload_one_file(path)
            if outcome is UploadOutcome.SUCCESS:
                result.succeeded.append(path)
            elif outcome is UploadOutcome.FAILURE:
                result.failed.append(path)
            else:
                result.failed.append(path)
                result.not_attempted.extend(pending[index + 1:])
                result.aborted = True
                logger.error(
                    f"Systemic error uploading {path}, stopping; "
                    f"{len(result.not_attempted)} file(s) not attempted"
                )
                break
        return result
