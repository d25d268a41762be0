import logging

import pytest
import requests

from edgefetch.acquisition import base
from edgefetch.acquisition.base import DownloadState, DownloadTarget
from edgefetch.acquisition.cache import partial_path_for
from edgefetch.acquisition.cancellation import CancellationToken
from edgefetch.acquisition.errors import (
    CommitError,
    DownloadCancelled,
    HashMismatchError,
    NotFoundError,
    SizeMismatchError,
    TransientIOError,
)
from edgefetch.acquisition.streaming import StreamingDownloader, parse_content_range

from fakes import ENDPOINTS, FakeResponse, FakeSession, sha256_hex

BODY = b"abcdef"
MODEL = "owner/repo"
FILE = "m.gguf"


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def downloader(session):
    return StreamingDownloader(session, chunk_size=2, timeout=5)


def _target(tmp_path, size=len(BODY), digest=None):
    destination = tmp_path / "cache" / "owner--repo" / "main" / FILE
    return DownloadTarget(
        source_url=ENDPOINTS.file_url(MODEL, "main", FILE),
        destination_path=destination,
        temporary_path=partial_path_for(destination),
        expected_size=size,
        expected_hash=digest,
    )


def _seed_partial(target, data):
    target.temporary_path.parent.mkdir(parents=True, exist_ok=True)
    target.temporary_path.write_bytes(data)


def test_fresh_download_creates_directories_and_commits(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path)
    seen = []

    assert not target.destination_path.parent.exists()
    path = downloader.fetch(
        target, progress=lambda done, total: seen.append((done, total))
    )

    assert path == target.destination_path
    assert path.read_bytes() == BODY
    assert not target.temporary_path.exists()
    assert target.state is DownloadState.COMMITTED
    assert seen == [(2, 6), (4, 6), (6, 6)]
    assert "Range" not in session.calls[0]["headers"]


def test_resume_appends_from_offset(tmp_path, session, downloader):
    url = session.add_file(MODEL, FILE, BODY, honor_range=True)
    target = _target(tmp_path)
    _seed_partial(target, BODY[:2])
    seen = []

    downloader.fetch(target, progress=lambda done, total: seen.append(done))

    assert target.destination_path.read_bytes() == BODY
    assert session.requests_to(url)[0]["headers"]["Range"] == "bytes=2-"
    assert target.resume_offset_bytes == 2
    assert seen == [4, 6]


def test_ignored_range_restarts_from_zero(tmp_path, session, downloader, caplog):
    caplog.set_level(logging.INFO)
    session.add_file(MODEL, FILE, BODY, honor_range=False)
    target = _target(tmp_path)
    _seed_partial(target, b"XX")

    downloader.fetch(target)

    # No duplicated prefix: exactly the server's full body
    assert target.destination_path.read_bytes() == BODY
    assert target.resume_offset_bytes == 0
    assert "ignored range request" in caplog.text


def test_unsatisfiable_range_restarts_from_zero(tmp_path, session, downloader):
    url = session.add_file(MODEL, FILE, BODY, reject_range=True)
    target = _target(tmp_path)
    # Complete file left behind by a crash before the rename
    _seed_partial(target, BODY)

    path = downloader.fetch(target)

    assert path.read_bytes() == BODY
    assert not target.temporary_path.exists()
    calls = session.requests_to(url)
    assert calls[0]["headers"]["Range"] == "bytes=6-"
    assert "Range" not in calls[1]["headers"]


def test_resume_with_unexpected_content_range_fails(tmp_path, session, downloader):
    target = _target(tmp_path)
    session.add_response(
        target.source_url,
        FakeResponse(206, BODY, headers={"Content-Range": "bytes 0-5/6"}),
    )
    _seed_partial(target, BODY[:2])

    with pytest.raises(TransientIOError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_error_status_leaves_partial_file_untouched(tmp_path, session, downloader):
    target = _target(tmp_path)
    session.add_response(target.source_url, FakeResponse(503, b"try later"))
    _seed_partial(target, b"ab")

    with pytest.raises(TransientIOError) as excinfo:
        downloader.fetch(target)

    assert excinfo.value.status == 503
    assert "try later" in str(excinfo.value)
    assert target.temporary_path.read_bytes() == b"ab"
    assert not target.destination_path.exists()


def test_missing_file_raises_not_found(tmp_path, downloader):
    target = _target(tmp_path)

    with pytest.raises(NotFoundError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()


def test_memory_error_removes_partial_and_is_reraised_unchanged(
    tmp_path, session, downloader
):
    error = MemoryError("simulated pressure")
    session.add_file(MODEL, FILE, BODY, error=error)
    target = _target(tmp_path)

    with pytest.raises(MemoryError) as excinfo:
        downloader.fetch(target)

    assert excinfo.value is error
    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_connection_drop_removes_partial(tmp_path, session, downloader):
    session.add_file(
        MODEL, FILE, BODY, error=requests.exceptions.ChunkedEncodingError("reset")
    )
    target = _target(tmp_path)

    with pytest.raises(TransientIOError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()
    assert target.state is DownloadState.FAILED


def test_failing_progress_callback_removes_partial(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path)

    def broken_progress(done, total):
        raise RuntimeError("display went away")

    with pytest.raises(RuntimeError, match="display went away"):
        downloader.fetch(target, progress=broken_progress)

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()
    assert target.state is DownloadState.FAILED


def test_size_mismatch_deletes_download(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path, size=10)

    with pytest.raises(SizeMismatchError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_hash_mismatch_deletes_download(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path, digest="0" * 64)

    with pytest.raises(HashMismatchError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_matching_hash_is_recorded(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path, digest=sha256_hex(BODY))

    downloader.fetch(target)

    assert target.hash_verified is True


def test_cancellation_at_chunk_boundary(tmp_path, session, downloader):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path)
    cancel_token = CancellationToken()

    with pytest.raises(DownloadCancelled):
        downloader.fetch(
            target,
            progress=lambda done, total: cancel_token.cancel(),
            cancel_token=cancel_token,
        )

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_failed_rename_raises_commit_error(tmp_path, session, downloader, monkeypatch):
    session.add_file(MODEL, FILE, BODY)
    target = _target(tmp_path)

    def broken_replace(src, dst):
        raise PermissionError("read-only")

    monkeypatch.setattr(base.os, "replace", broken_replace)

    with pytest.raises(CommitError):
        downloader.fetch(target)

    assert not target.temporary_path.exists()
    assert not target.destination_path.exists()


def test_token_is_sent_as_bearer(tmp_path, session, downloader):
    url = session.add_file(MODEL, FILE, BODY)

    downloader.fetch(_target(tmp_path), token="secret")

    assert session.requests_to(url)[0]["headers"]["Authorization"] == "Bearer secret"


def test_parse_content_range():
    assert parse_content_range("bytes 2-5/6") == (2, 6)
    assert parse_content_range("bytes 2-5/*") == (2, None)
    assert parse_content_range("garbage") is None
    assert parse_content_range(None) is None
