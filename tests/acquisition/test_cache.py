import hashlib

import pytest

from edgefetch.acquisition.cache import (
    CacheLayout,
    check_cached_file,
    is_valid,
    normalize_expected_hash,
    sanitize_model_id,
    verify_file,
)
from edgefetch.acquisition.errors import (
    HashMismatchError,
    InvalidReferenceError,
    SizeMismatchError,
)
from edgefetch.acquisition.manifest import ContentHash

DATA = b"hello world"
DIGEST = hashlib.sha256(DATA).hexdigest()


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.gguf"
    path.write_bytes(DATA)
    return path


def test_sanitize_removes_path_separators():
    assert sanitize_model_id("owner/repo") == "owner--repo"
    assert sanitize_model_id("a\\b") == "a--b"
    assert sanitize_model_id("owner/repo") != sanitize_model_id("owner-repo")
    with pytest.raises(InvalidReferenceError):
        sanitize_model_id("..")


def test_hash_is_authoritative_over_size(model_file):
    # Right hash, wrong size: accepted
    assert is_valid(model_file, expected_size=999, expected_hash=DIGEST)
    # Right size, wrong hash: rejected
    assert not is_valid(model_file, expected_size=len(DATA), expected_hash="0" * 64)


def test_hash_prefix_and_case_are_normalised(model_file):
    assert is_valid(model_file, expected_hash=f"SHA256:{DIGEST.upper()}")
    assert is_valid(model_file, expected_hash=ContentHash("sha256", DIGEST.upper()))
    assert normalize_expected_hash("  ") is None


def test_size_used_when_no_hash(model_file):
    assert is_valid(model_file, expected_size=len(DATA))
    assert not is_valid(model_file, expected_size=len(DATA) + 1)


def test_exists_and_non_empty_when_nothing_declared(tmp_path, model_file):
    empty = tmp_path / "empty.gguf"
    empty.write_bytes(b"")

    assert is_valid(model_file)
    assert not is_valid(empty)
    assert not is_valid(tmp_path / "missing.gguf")


def test_verify_file_raises_on_mismatch(model_file):
    with pytest.raises(SizeMismatchError) as size_error:
        verify_file(model_file, expected_size=1)
    assert size_error.value.actual == len(DATA)

    with pytest.raises(HashMismatchError) as hash_error:
        verify_file(model_file, expected_hash="f" * 64)
    assert hash_error.value.actual == DIGEST


def test_verify_file_reports_whether_hash_was_checked(model_file):
    assert verify_file(model_file, len(DATA), DIGEST) is True
    assert verify_file(model_file, len(DATA)) is False


def test_verify_file_tolerates_unhashable_algorithm(model_file, caplog):
    assert verify_file(model_file, len(DATA), "no-such-algo:abcd") is False
    assert "Could not verify" in caplog.text


def test_unhashable_algorithm_falls_back_to_size(model_file, caplog):
    assert is_valid(model_file, len(DATA), "no-such-algo:abcd")
    assert not is_valid(model_file, len(DATA) + 1, "no-such-algo:abcd")
    assert "checking size only" in caplog.text


def test_check_cached_file_reports_hash_verification(tmp_path, model_file):
    assert check_cached_file(model_file, len(DATA), DIGEST) == (True, True)
    assert check_cached_file(model_file, len(DATA), "0" * 64) == (False, False)
    assert check_cached_file(model_file, len(DATA), "no-such-algo:ab") == (True, False)
    assert check_cached_file(model_file, len(DATA)) == (True, False)
    assert check_cached_file(tmp_path / "missing.gguf") == (False, False)


def test_layout_destination(tmp_path):
    layout = CacheLayout(tmp_path)

    dest = layout.destination("owner/repo", "main", "sub/dir/m-Q4_K_M.gguf")

    assert dest == tmp_path / "owner--repo" / "main" / "m-Q4_K_M.gguf"
    assert layout.destination("o/r", "refs/pr/1", "a.bin").parent.name == "refs--pr--1"


def test_layout_list_and_clear(tmp_path):
    layout = CacheLayout(tmp_path / "cache")
    assert layout.list_cached_models() == []

    (tmp_path / "cache" / "b--model" / "main").mkdir(parents=True)
    (tmp_path / "cache" / "a--model" / "main").mkdir(parents=True)
    (tmp_path / "cache" / "stray.txt").write_text("x")

    assert [p.name for p in layout.list_cached_models()] == ["a--model", "b--model"]

    layout.clear()
    assert not (tmp_path / "cache").exists()
    layout.clear()
