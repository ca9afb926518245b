"""
Tests for the parallel block uploader.

Uses tiny blocks against an in-memory remote so every chunk boundary is visible.
"""

import time

import pytest

from backup_uploader.core.block_uploader import LastBlock, ParallelBlockUploader, human_number
from backup_uploader.core.exceptions import (
    BlockUploadError,
    InsufficientStorageError,
    RateLimitedError,
    RemoteError,
    SystemicError,
)
from backup_uploader.core.session import Resume, UploadSession


def make_uploader(remote, sleeps, **kwargs):
    options = dict(parallelism=1, block_size=4, blocks_per_request=2, block_retries=3, sleep=sleeps)
    options.update(kwargs)
    return ParallelBlockUploader(remote, **options)


class TestHumanNumber:
    """Tests for human_number()."""

    def test_small(self):
        assert human_number(999) == "999 "

    def test_kilo(self):
        assert human_number(1000) == "1.00 k"

    def test_mega(self):
        assert human_number(12_345_678) == "12.35 M"

    def test_exa(self):
        assert human_number(2 * 10**18) == "2.00 E"


class TestUpload:
    """Tests for ParallelBlockUploader.upload()."""

    def test_short_last_block_held_back(self, fake_remote, sleeps, make_file):
        """Full chunks are appended; the short tail is returned, not sent."""
        path = make_file("a.bin", 20)
        uploader = make_uploader(fake_remote, sleeps)
        session = UploadSession.start(fake_remote, 20)
        with open(path, "rb") as f:
            last = uploader.upload(f, session)

        assert last.offset == 16
        assert len(last.data) == 4
        assert sorted(a.offset for a in fake_remote.append_calls) == [0, 8]
        assert not any(a.close for a in fake_remote.append_calls)
        assert session.complete_up_to() == 16

    def test_exact_multiple_gives_empty_last_block(self, fake_remote, sleeps, make_file):
        path = make_file("a.bin", 16)
        uploader = make_uploader(fake_remote, sleeps)
        session = UploadSession.start(fake_remote, 16)
        with open(path, "rb") as f:
            last = uploader.upload(f, session)
        assert last == LastBlock(16, b"")

    def test_empty_file(self, fake_remote, sleeps, make_file):
        path = make_file("empty.bin", 0)
        uploader = make_uploader(fake_remote, sleeps)
        session = UploadSession.start(fake_remote, 0)
        with open(path, "rb") as f:
            last = uploader.upload(f, session)
        assert last == LastBlock(0, b"")
        assert fake_remote.append_calls == []

    def test_resumed_session_offsets(self, fake_remote, sleeps, make_file, file_bytes):
        """Appends go to absolute offsets; the last block's offset is relative."""
        path = make_file("a.bin", 20)
        sid = fake_remote.session_start()
        session = UploadSession.resume(Resume(start_offset=8, session_id=sid), 20)
        uploader = make_uploader(fake_remote, sleeps)
        with open(path, "rb") as f:
            f.seek(8)
            last = uploader.upload(f, session)

        assert [a.offset for a in fake_remote.append_calls] == [8]
        assert last.offset == 8
        assert session.append_arg(last.offset, close=True).offset == 16
        assert fake_remote.sessions[sid][8] == file_bytes(path)[8:16]

    def test_parallel_upload_is_complete(self, fake_remote, sleeps, make_file, file_bytes):
        """Many blocks in flight still reassemble into the original file."""
        path = make_file("a.bin", 8 * 50 + 3)
        uploader = make_uploader(fake_remote, sleeps, parallelism=8)
        session = UploadSession.start(fake_remote, 8 * 50 + 3)
        with open(path, "rb") as f:
            last = uploader.upload(f, session)
        fake_remote.session_append(session.append_arg(last.offset, close=True), last.data)
        assert fake_remote.assemble(session.session_id) == file_bytes(path)
        assert session.complete_up_to() == 8 * 50


class TestRetries:
    """Tests for per-block retry behaviour."""

    def test_rate_limit_does_not_use_budget(self, fake_remote, sleeps, make_file):
        """Rate limiting is waited out however many times it happens."""
        path = make_file("a.bin", 8)
        limited = {"count": 0}

        def hook(arg, data):
            if limited["count"] < 5:
                limited["count"] += 1
                raise RateLimitedError("slow down", retry_after=1.5)

        fake_remote.append_hook = hook
        uploader = make_uploader(fake_remote, sleeps, block_retries=3)
        session = UploadSession.start(fake_remote, 8)
        with open(path, "rb") as f:
            uploader.upload(f, session)

        assert sleeps.calls == [1.5] * 5
        assert session.complete_up_to() == 8

    def test_transient_error_retried(self, fake_remote, sleeps, make_file):
        path = make_file("a.bin", 8)
        failures = {"count": 0}

        def hook(arg, data):
            if failures["count"] < 2:
                failures["count"] += 1
                raise RemoteError("server error", 500)

        fake_remote.append_hook = hook
        uploader = make_uploader(fake_remote, sleeps, block_retries=3)
        session = UploadSession.start(fake_remote, 8)
        with open(path, "rb") as f:
            uploader.upload(f, session)
        assert len(sleeps.calls) == 2
        assert session.complete_up_to() == 8

    def test_retries_exhausted(self, fake_remote, sleeps, make_file):
        """A block failing every attempt stops the upload at the checkpoint."""
        path = make_file("a.bin", 40)

        def hook(arg, data):
            if arg.offset == 8:
                raise RemoteError("server error", 500)

        fake_remote.append_hook = hook
        uploader = make_uploader(fake_remote, sleeps, block_retries=3)
        session = UploadSession.start(fake_remote, 40)
        with open(path, "rb") as f:
            with pytest.raises(BlockUploadError) as exc_info:
                uploader.upload(f, session)

        assert exc_info.value.offset == 8
        assert [a.offset for a in fake_remote.append_calls].count(8) == 3
        assert session.checkpoint().start_offset == 8

    def test_systemic_error_not_retried(self, fake_remote, sleeps, make_file):
        path = make_file("a.bin", 8)

        def hook(arg, data):
            raise InsufficientStorageError("full")

        fake_remote.append_hook = hook
        uploader = make_uploader(fake_remote, sleeps)
        session = UploadSession.start(fake_remote, 8)
        with open(path, "rb") as f:
            with pytest.raises(SystemicError):
                uploader.upload(f, session)
        assert len(fake_remote.append_calls) == 1
        assert sleeps.calls == []

    def test_checkpoint_excludes_gap_before_later_success(self, fake_remote, sleeps, make_file):
        """Blocks after a failed one may succeed, but the checkpoint stays before the gap."""
        path = make_file("a.bin", 64)

        def hook(arg, data):
            if arg.offset == 0:
                time.sleep(0.01)
                raise RemoteError("server error", 500)

        fake_remote.append_hook = hook
        uploader = make_uploader(fake_remote, sleeps, parallelism=4, block_retries=2)
        session = UploadSession.start(fake_remote, 64)
        with open(path, "rb") as f:
            with pytest.raises(BlockUploadError):
                uploader.upload(f, session)
        assert session.checkpoint().start_offset == 0


class TestProgress:
    """Tests for progress reporting."""

    def test_callback_receives_progress(self, fake_remote, sleeps, make_file):
        path = make_file("a.bin", 20)
        calls = []
        uploader = make_uploader(
            fake_remote, sleeps, progress_callback=lambda done, total, rate: calls.append((done, total))
        )
        session = UploadSession.start(fake_remote, 20)
        with open(path, "rb") as f:
            uploader.upload(f, session)
        assert calls == [(8, 20), (16, 20)]

    def test_callback_errors_ignored(self, fake_remote, sleeps, make_file):
        path = make_file("a.bin", 20)

        def broken(done, total, rate):
            raise RuntimeError("display went away")

        uploader = make_uploader(fake_remote, sleeps, progress_callback=broken)
        session = UploadSession.start(fake_remote, 20)
        with open(path, "rb") as f:
            last = uploader.upload(f, session)
        assert last.offset == 16
