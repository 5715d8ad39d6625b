"""Tests for ArchiveBuilder — entries, skips, validation and upload failures."""

from __future__ import annotations

import io
import itertools
import logging
import zipfile

import pytest

from src.exceptions import (
    ArchiveTimeoutException,
    ArchiveUploadException,
    CorruptArchiveException,
    EmptyArchiveException,
)
from src.modules.archive.builder import ArchiveBuilder, compute_files_hash, is_plain_file_name
from src.modules.archive.constants import FILES_HASH_METADATA_KEY, ZIP_CONTENT_TYPE
from src.modules.archive.schemas import ArchiveBuildCommand
from src.modules.storage.base import ObjectStoreError
from src.modules.storage.memory import InMemoryObjectStore

ZIP_KEY = "galleries/g1/zips/o1.zip"


def _final(name: str) -> str:
    return f"galleries/g1/final/o1/{name}"


def _command(*keys: str) -> ArchiveBuildCommand:
    return ArchiveBuildCommand(gallery_id="g1", order_id="o1", selected_keys=list(keys))


def _open_archive(store: InMemoryObjectStore) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(store.objects[ZIP_KEY]))


class FlakyStore(InMemoryObjectStore):
    """Raises a store error for chosen reads, or for every upload."""

    def __init__(self, failing_gets=(), fail_put=False):
        super().__init__()
        self.failing_gets = set(failing_gets)
        self.fail_put = fail_put

    def get(self, key):
        if key in self.failing_gets:
            raise ObjectStoreError(f"read of {key} timed out")
        return super().get(key)

    def put(self, key, body, content_type, metadata=None):
        if self.fail_put:
            raise ObjectStoreError("AccessDenied")
        super().put(key, body, content_type, metadata)


class ScribblingBuilder(ArchiveBuilder):
    """Damages the archive after it is written."""

    def _finalize(self, archive):
        archive.seek(0)
        archive.write(b"JUNK")
        return super()._finalize(archive)


@pytest.fixture
def store():
    store = InMemoryObjectStore(chunk_size=1024)
    store.add(_final("a.jpg"), b"A" * 10_000)
    store.add(_final("b.jpg"), b"B" * 20_000)
    return store


# ---------------------------------------------------------------------------
# Successful builds
# ---------------------------------------------------------------------------


class TestBuild:
    def test_all_assets_present(self, store):
        result = ArchiveBuilder(store).build(_command("a.jpg", "b.jpg"))

        assert result.zip_key == ZIP_KEY
        assert result.entries == ["a.jpg", "b.jpg"]
        assert result.skipped == []
        assert result.original_bytes == 30_000
        assert 0 < result.archive_bytes < result.original_bytes
        assert result.compression_ratio > 0.9

        with _open_archive(store) as zf:
            assert zf.namelist() == ["a.jpg", "b.jpg"]
            assert zf.read("a.jpg") == b"A" * 10_000
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())
        assert store.info[ZIP_KEY].content_type == ZIP_CONTENT_TYPE

    def test_missing_asset_is_skipped_with_warning(self, store, caplog):
        with caplog.at_level(logging.WARNING, logger="src.modules.archive.builder"):
            result = ArchiveBuilder(store).build(_command("a.jpg", "missing.jpg", "b.jpg"))

        assert result.entries == ["a.jpg", "b.jpg"]
        assert result.skipped == ["missing.jpg"]
        assert "missing.jpg not found" in caplog.text
        with _open_archive(store) as zf:
            assert zf.namelist() == ["a.jpg", "b.jpg"]

    def test_empty_and_unreadable_assets_are_skipped(self, store):
        flaky = FlakyStore(failing_gets={_final("b.jpg")})
        flaky.add(_final("a.jpg"), store.objects[_final("a.jpg")])
        flaky.add(_final("b.jpg"), b"B")
        flaky.add(_final("empty.jpg"), b"")

        result = ArchiveBuilder(flaky).build(_command("empty.jpg", "b.jpg", "a.jpg"))

        assert result.entries == ["a.jpg"]
        assert result.skipped == ["empty.jpg", "b.jpg"]
        assert result.failed == ["b.jpg"]

    def test_path_like_keys_are_never_archived(self, store):
        store.add("galleries/g1/final/secret.jpg", b"S" * 10)

        result = ArchiveBuilder(store).build(_command("../secret.jpg", "a.jpg"))

        assert result.entries == ["a.jpg"]
        assert result.skipped == ["../secret.jpg"]

    def test_files_hash_is_written_as_metadata(self, store):
        ArchiveBuilder(store).build(_command("a.jpg"), files_hash="abc123")

        assert store.info[ZIP_KEY].metadata == {FILES_HASH_METADATA_KEY: "abc123"}

    def test_unreadable_asset_leaves_archive_without_files_hash(self, store):
        flaky = FlakyStore(failing_gets={_final("b.jpg")})
        flaky.add(_final("a.jpg"), store.objects[_final("a.jpg")])
        flaky.add(_final("b.jpg"), b"B" * 100)

        result = ArchiveBuilder(flaky).build(_command("a.jpg", "b.jpg"), files_hash="abc123")

        assert result.failed == ["b.jpg"]
        assert result.files_hash is None
        assert flaky.info[ZIP_KEY].metadata == {}

    def test_large_asset_is_streamed_through_spool(self, store):
        store.add(_final("big.tif"), bytes(range(256)) * 8192)

        result = ArchiveBuilder(store, spool_max_bytes=4096, chunk_size=1024).build(
            _command("big.tif")
        )

        assert result.entries == ["big.tif"]
        with _open_archive(store) as zf:
            assert zf.read("big.tif") == bytes(range(256)) * 8192


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestBuildFailures:
    def test_no_usable_assets_raises_empty_archive_and_uploads_nothing(self, store):
        with pytest.raises(EmptyArchiveException):
            ArchiveBuilder(store).build(_command("x.jpg", "y.jpg"))

        assert ZIP_KEY not in store.objects

    def test_empty_selection_raises_empty_archive(self, store):
        with pytest.raises(EmptyArchiveException):
            ArchiveBuilder(store).build(_command())

    def test_damaged_archive_is_rejected_before_upload(self, store):
        with pytest.raises(CorruptArchiveException):
            ScribblingBuilder(store).build(_command("a.jpg"))

        assert ZIP_KEY not in store.objects

    def test_upload_failure_raises_upload_error(self, store):
        flaky = FlakyStore(fail_put=True)
        flaky.add(_final("a.jpg"), b"A" * 100)

        with pytest.raises(ArchiveUploadException, match="AccessDenied"):
            ArchiveBuilder(flaky).build(_command("a.jpg"))

    def test_deadline_exceeded_between_assets(self, store):
        ticks = itertools.chain([0.0, 1.0], itertools.repeat(100.0))

        with pytest.raises(ArchiveTimeoutException):
            ArchiveBuilder(store, timeout_seconds=10, clock=lambda: next(ticks)).build(
                _command("a.jpg", "b.jpg")
            )

        assert ZIP_KEY not in store.objects


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("a.jpg", True),
            ("IMG 0001.CR2", True),
            ("", False),
            ("..", False),
            ("nested/a.jpg", False),
            ("..\\a.jpg", False),
        ],
    )
    def test_is_plain_file_name(self, key, expected):
        assert is_plain_file_name(key) is expected

    def test_files_hash_ignores_selection_order(self, store):
        objects = store.list("galleries/g1/final/o1/")

        assert compute_files_hash(["a.jpg", "b.jpg"], objects) == compute_files_hash(
            ["b.jpg", "a.jpg"], objects
        )

    def test_files_hash_changes_when_an_asset_changes(self, store):
        before = compute_files_hash(["a.jpg"], store.list("galleries/g1/final/o1/"))
        store.add(_final("a.jpg"), b"edited")
        after = compute_files_hash(["a.jpg"], store.list("galleries/g1/final/o1/"))

        assert before != after
        assert len(after) == 16
