"""ArchiveBuilder — turns an order's selected finals into one private zip object.

Stages run in order: fetch → append (per asset) → finalize → validate → upload.
Per-asset failures are tolerated and logged; anything after the last asset is
fatal. Assets and the archive are spooled to temporary files past
``spool_max_bytes`` so memory stays bounded regardless of order size.
"""

from __future__ import annotations

import hashlib
import io
import logging
import shutil
import tempfile
import time
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import IO

from src.config import settings
from src.exceptions import (
    ArchiveTimeoutException,
    ArchiveUploadException,
    CorruptArchiveException,
    EmptyArchiveException,
)
from src.modules.archive.constants import (
    ARCHIVE_KEY,
    FILES_HASH_LENGTH,
    FILES_HASH_METADATA_KEY,
    FINAL_ASSET_KEY,
    ZIP_COMPRESS_LEVEL,
    ZIP_COMPRESSION,
    ZIP_CONTENT_TYPE,
    ZIP_SIGNATURE,
)
from src.modules.archive.schemas import ArchiveBuildCommand
from src.modules.storage.base import ObjectInfo, ObjectNotFoundError, ObjectStoreBase, ObjectStoreError

logger = logging.getLogger(__name__)


@dataclass
class ArchiveResult:
    zip_key: str
    entries: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    # Skipped because the read failed, not because the asset is absent or unusable
    failed: list[str] = field(default_factory=list)
    original_bytes: int = 0
    archive_bytes: int = 0
    files_hash: str | None = None

    @property
    def compression_ratio(self) -> float:
        if self.original_bytes <= 0:
            return 0.0
        return (self.original_bytes - self.archive_bytes) / self.original_bytes


def archive_key(gallery_id: str, order_id: str) -> str:
    return ARCHIVE_KEY.format(gallery_id=gallery_id, order_id=order_id)


def is_plain_file_name(key: str) -> bool:
    """Only bare file names are archived; anything path-like is rejected."""
    return bool(key) and "/" not in key and "\\" not in key and key not in (".", "..")


def compute_files_hash(selected_keys: list[str], objects: list[ObjectInfo]) -> str:
    """Hash the identity (name, etag, size) of the selected finals.

    A rebuild with the same hash would produce the same archive contents.
    """
    by_name = {obj.key.rsplit("/", 1)[-1]: obj for obj in objects}
    digest = hashlib.sha256()
    for name in sorted(selected_keys):
        obj = by_name.get(name)
        etag = (obj.etag or "") if obj else ""
        size = obj.size if obj else -1
        digest.update(f"{name}\0{etag}\0{size}\n".encode())
    return digest.hexdigest()[:FILES_HASH_LENGTH]


class ArchiveBuilder:
    def __init__(
        self,
        store: ObjectStoreBase,
        *,
        timeout_seconds: float | None = None,
        spool_max_bytes: int | None = None,
        chunk_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.archive_build_timeout_seconds
        )
        self.spool_max_bytes = spool_max_bytes or settings.archive_spool_max_bytes
        self.chunk_size = chunk_size or settings.archive_chunk_size_bytes
        self.clock = clock

    def build(self, command: ArchiveBuildCommand, files_hash: str | None = None) -> ArchiveResult:
        """Build and upload the archive for ``command``.

        Raises EmptyArchiveException, CorruptArchiveException,
        ArchiveUploadException or ArchiveTimeoutException.
        """
        deadline = self.clock() + self.timeout_seconds
        result = ArchiveResult(
            zip_key=archive_key(command.gallery_id, command.order_id),
            files_hash=files_hash,
        )

        with tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes) as archive:
            self._write_entries(command, archive, result, deadline)
            if not result.entries:
                raise EmptyArchiveException(
                    f"No files could be added to the archive for order "
                    f"{command.gallery_id}/{command.order_id}"
                )

            if result.failed and result.files_hash:
                logger.warning(
                    "Archive %s is missing %d unreadable assets, not marking it current",
                    result.zip_key, len(result.failed),
                )
                result.files_hash = None

            result.archive_bytes = self._finalize(archive)
            self._validate(archive, result)
            self._check_deadline(deadline, "upload")
            self._upload(archive, result)

        logger.info(
            "Built archive %s: %d files, %d skipped, %d -> %d bytes (%.1f%% saved)",
            result.zip_key,
            len(result.entries),
            len(result.skipped),
            result.original_bytes,
            result.archive_bytes,
            result.compression_ratio * 100,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _write_entries(
        self,
        command: ArchiveBuildCommand,
        archive: IO[bytes],
        result: ArchiveResult,
        deadline: float,
    ) -> None:
        with zipfile.ZipFile(
            archive, "w", compression=ZIP_COMPRESSION, compresslevel=ZIP_COMPRESS_LEVEL
        ) as zf:
            for key in command.selected_keys:
                self._check_deadline(deadline, f"asset {key}")
                if not is_plain_file_name(key):
                    logger.warning("Skipping invalid asset key %r", key)
                    result.skipped.append(key)
                    continue

                fetched = self._fetch(command, key, result)
                if fetched is None:
                    result.skipped.append(key)
                    continue

                asset, size = fetched
                with asset:
                    self._append(zf, key, asset, size)
                result.entries.append(key)
                result.original_bytes += size

    def _fetch(
        self, command: ArchiveBuildCommand, key: str, result: ArchiveResult
    ) -> tuple[IO[bytes], int] | None:
        object_key = FINAL_ASSET_KEY.format(
            gallery_id=command.gallery_id, order_id=command.order_id, key=key
        )
        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes)
        size = 0
        try:
            for chunk in self.store.get(object_key):
                spool.write(chunk)
                size += len(chunk)
        except ObjectNotFoundError:
            spool.close()
            logger.warning("Asset %s not found, skipping", object_key)
            return None
        except ObjectStoreError as exc:
            spool.close()
            logger.warning("Asset %s could not be fetched, skipping: %s", object_key, exc)
            result.failed.append(key)
            return None

        if size == 0:
            spool.close()
            logger.warning("Asset %s is empty, skipping", object_key)
            return None

        spool.seek(0)
        return spool, size

    def _append(self, zf: zipfile.ZipFile, name: str, asset: IO[bytes], size: int) -> None:
        with zf.open(name, "w", force_zip64=size >= zipfile.ZIP64_LIMIT) as entry:
            shutil.copyfileobj(asset, entry, self.chunk_size)

    def _finalize(self, archive: IO[bytes]) -> int:
        archive.seek(0, io.SEEK_END)
        return archive.tell()

    def _validate(self, archive: IO[bytes], result: ArchiveResult) -> None:
        if result.archive_bytes == 0:
            raise CorruptArchiveException(f"Archive {result.zip_key} has zero length")

        archive.seek(0)
        head = archive.read(len(ZIP_SIGNATURE))
        if head != ZIP_SIGNATURE:
            raise CorruptArchiveException(
                f"Archive {result.zip_key} does not start with a zip signature"
            )

        archive.seek(0)
        try:
            with zipfile.ZipFile(archive) as zf:
                names = zf.namelist()
        except zipfile.BadZipFile as exc:
            raise CorruptArchiveException(
                f"Archive {result.zip_key} central directory is unreadable"
            ) from exc
        if names != result.entries:
            raise CorruptArchiveException(
                f"Archive {result.zip_key} lists {len(names)} entries, "
                f"expected {len(result.entries)}"
            )
        archive.seek(0)

    def _upload(self, archive: IO[bytes], result: ArchiveResult) -> None:
        metadata = {FILES_HASH_METADATA_KEY: result.files_hash} if result.files_hash else None
        try:
            self.store.put(result.zip_key, archive, ZIP_CONTENT_TYPE, metadata)
        except ObjectStoreError as exc:
            raise ArchiveUploadException(
                f"Failed to upload archive {result.zip_key}: {exc}"
            ) from exc

    def _check_deadline(self, deadline: float, stage: str) -> None:
        if self.clock() > deadline:
            raise ArchiveTimeoutException(
                f"Archive build exceeded {self.timeout_seconds}s before {stage}"
            )
