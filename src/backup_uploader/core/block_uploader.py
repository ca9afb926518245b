"""Upload a file's blocks to a remote session in parallel."""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, Optional

from .backoff import calculate_backoff_series
from .exceptions import BlockUploadError, PermanentError, RateLimitedError, RemoteError, SystemicError
from .remote import RemoteStorage
from .session import AppendArg, UploadSession

logger = logging.getLogger(__name__)

# How many blocks to upload in parallel.
PARALLELISM = 20

# The size of a block. This is a Dropbox constant, not adjustable.
BLOCK_SIZE = 4 * 1024 * 1024

# An integer multiple of BLOCK_SIZE can go in a single request, which cuts the
# number of requests and helps stay clear of rate limits.
BLOCKS_PER_REQUEST = 2

# Attempts per block for ordinary errors. Rate limiting does not count.
BLOCK_RETRIES = 3


@dataclass
class LastBlock:
    """The final, possibly short or empty, block that closes the session."""

    offset: int
    data: bytes


def human_number(n: int) -> str:
    """Format a byte count with a decimal SI prefix, e.g. ``12.35 M``."""
    f = float(n)
    prefixes = ["k", "M", "G", "T", "P", "E"]
    mag = 0
    while mag < len(prefixes):
        if f < 1000.0:
            break
        f /= 1000.0
        mag += 1
    if mag == 0:
        return f"{n} "
    return f"{f:.2f} {prefixes[mag - 1]}"


class ParallelBlockUploader:
    """Split a file into blocks and append them to an upload session concurrently."""

    def __init__(
        self,
        client: RemoteStorage,
        *,
        parallelism: int = PARALLELISM,
        block_size: int = BLOCK_SIZE,
        blocks_per_request: int = BLOCKS_PER_REQUEST,
        block_retries: int = BLOCK_RETRIES,
        progress_callback: Optional[Callable[[int, int, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the block uploader.

        Args:
            client: Remote storage to append blocks to
            parallelism: Maximum number of block requests in flight
            block_size: Remote block size; every request but the last is a multiple of it
            blocks_per_request: Blocks sent in one append request
            block_retries: Attempts per block for ordinary errors
            progress_callback: Optional callback for progress updates.
                Called with (bytes_uploaded, total_bytes, bytes_per_second)
            sleep: Function used to wait between retries
        """
        self.client = client
        self.parallelism = max(1, parallelism)
        self.block_size = block_size
        self.blocks_per_request = max(1, blocks_per_request)
        self.block_retries = max(1, block_retries)
        self.progress_callback = progress_callback
        self.sleep = sleep

    @property
    def chunk_size(self) -> int:
        return self.block_size * self.blocks_per_request

    def upload(self, source: BinaryIO, session: UploadSession) -> LastBlock:
        """Read ``source`` from its current position and upload every full chunk.

        The source must already be positioned at ``session.start_offset``. Chunk
        offsets are relative to that position.

        Returns:
            The final short chunk, held back so it can close the session once
            every full chunk has been sent.

        Raises:
            SystemicError: A block hit a destination-wide failure.
            PermanentError: The remote refused a block for good.
            BlockUploadError: A block failed after exhausting its retries.
        """
        start_time = time.time()
        # An empty closing block at end-of-file in case the size is an exact multiple.
        last_block = LastBlock(session.file_size - session.start_offset, b"")
        in_flight: Dict[Future, int] = {}
        failure: Optional[BaseException] = None
        block_offset = 0

        with ThreadPoolExecutor(max_workers=self.parallelism) as executor:
            while True:
                failure = self._reap(in_flight)
                if failure is None and len(in_flight) >= self.parallelism:
                    failure = self._drain(in_flight, FIRST_COMPLETED)
                if failure is not None:
                    break

                data = source.read(self.chunk_size)
                if len(data) != self.chunk_size:
                    # Only the last block may be short, and a session can't take
                    # a short block except as its terminator.
                    last_block = LastBlock(block_offset, data)
                    break

                future = executor.submit(
                    self._upload_block, session, block_offset, data, start_time
                )
                in_flight[future] = block_offset
                block_offset += len(data)

            remaining = self._drain(in_flight, None)
            failure = failure or remaining

        if failure is not None:
            if isinstance(failure, (SystemicError, PermanentError, BlockUploadError)):
                raise failure
            raise BlockUploadError(f"Block upload failed: {failure}", session.complete_up_to()) from failure
        return last_block

    @staticmethod
    def _reap(in_flight: Dict[Future, int]) -> Optional[BaseException]:
        """Collect blocks that already finished without waiting."""
        failure = None
        for future in [f for f in in_flight if f.done()]:
            in_flight.pop(future)
            exc = future.exception()
            if exc is not None and failure is None:
                failure = exc
        return failure

    @staticmethod
    def _drain(in_flight: Dict[Future, int], return_when) -> Optional[BaseException]:
        """Wait for in-flight blocks; return the first failure seen, if any."""
        if not in_flight:
            return None
        if return_when is None:
            done, _ = wait(list(in_flight))
        else:
            done, _ = wait(list(in_flight), return_when=return_when)
        failure = None
        for future in done:
            in_flight.pop(future)
            exc = future.exception()
            if exc is not None and failure is None:
                failure = exc
        return failure

    def _upload_block(self, session: UploadSession, block_offset: int, data: bytes, start_time: float) -> None:
        arg = session.append_arg(block_offset)
        self.upload_block_with_retry(arg, data, session, start_time)
        session.mark_block_uploaded(block_offset, len(data))

    def upload_block_with_retry(
        self,
        arg: AppendArg,
        data: bytes,
        session: UploadSession,
        start_time: float,
    ) -> None:
        """Upload a single block, retrying a few times if an error occurs.

        Rate limiting waits for as long as the server asks and does not use up
        the retry budget. Logs progress and upload speed when done.
        """
        block_start = time.time()
        backoff = calculate_backoff_series(0.5, 2.0, self.block_retries, 5.0, 15.0, 0.5)
        errors = 0
        while True:
            try:
                self.client.session_append(arg, data)
                break
            except RateLimitedError as e:
                logger.warning(f"Block at {arg.offset}: rate-limited ({e}), waiting {e.retry_after} seconds")
                if e.retry_after > 0:
                    self.sleep(e.retry_after)
            except (SystemicError, PermanentError):
                raise
            except RemoteError as e:
                errors += 1
                msg = f"Error calling upload_session_append at {arg.offset}: {e}"
                if errors >= self.block_retries:
                    logger.error(f"{msg}; giving up on block")
                    raise BlockUploadError(msg, arg.offset) from e
                logger.warning(f"{msg}; retrying...")
                self.sleep(backoff[min(errors - 1, len(backoff) - 1)])

        self._report_progress(session, len(data), block_start, start_time)

    def _report_progress(self, session: UploadSession, block_bytes: int, block_start: float, start_time: float) -> None:
        now = time.time()
        block_dur = max(now - block_start, 1e-6)
        overall_dur = max(now - start_time, 1e-6)

        bytes_sofar = session.add_transferred(block_bytes)
        uploaded = session.start_offset + bytes_sofar
        percent = uploaded / session.file_size * 100.0 if session.file_size else 100.0

        # Assumes PARALLELISM uploads are running at roughly the same speed.
        block_rate = block_bytes / block_dur * self.parallelism
        overall_rate = bytes_sofar / overall_dur

        logger.info(
            f"{percent:.1f}%: {human_number(bytes_sofar)}Bytes uploaded, "
            f"{human_number(int(block_rate))}Bytes per second, "
            f"{human_number(int(overall_rate))}Bytes per second average"
        )

        if self.progress_callback:
            try:
                self.progress_callback(uploaded, session.file_size, overall_rate)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")
