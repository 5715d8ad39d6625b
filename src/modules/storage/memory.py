"""In-process object store for local development and tests."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from typing import BinaryIO, Iterator

from src.modules.storage.base import ObjectInfo, ObjectNotFoundError, ObjectStoreBase


class InMemoryObjectStore(ObjectStoreBase):
    def __init__(self, chunk_size: int = 64 * 1024) -> None:
        self.chunk_size = chunk_size
        self.objects: dict[str, bytes] = {}
        self.info: dict[str, ObjectInfo] = {}

    def add(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.objects[key] = data
        self.info[key] = ObjectInfo(
            key=key,
            size=len(data),
            etag=f'"{hashlib.md5(data).hexdigest()}"',
            last_modified=datetime.now(UTC),
            content_type=content_type,
        )

    def get(self, key: str) -> Iterator[bytes]:
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        data = self.objects[key]
        return (data[i:i + self.chunk_size] for i in range(0, len(data), self.chunk_size))

    def head(self, key: str) -> ObjectInfo | None:
        return self.info.get(key)

    def put(
        self,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        self.add(key, body.read(), content_type)
        self.info[key].metadata = dict(metadata or {})

    def list(self, prefix: str) -> list[ObjectInfo]:
        return [info for key, info in sorted(self.info.items()) if key.startswith(prefix)]
