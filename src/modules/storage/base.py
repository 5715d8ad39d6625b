"""Abstract object store consumed by the archive pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Iterator


class ObjectStoreError(Exception):
    """Storage backend failed (network, permissions, throttling)."""


class ObjectNotFoundError(ObjectStoreError):
    """The requested object does not exist."""


@dataclass
class ObjectInfo:
    key: str
    size: int
    etag: str | None = None
    last_modified: datetime | None = None
    content_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class ObjectStoreBase(ABC):
    @abstractmethod
    def get(self, key: str) -> Iterator[bytes]:
        """Yield the object's bytes in chunks.

        Raises ObjectNotFoundError if missing, ObjectStoreError otherwise.
        """

    @abstractmethod
    def head(self, key: str) -> ObjectInfo | None:
        """Return object info, or None if the object does not exist."""

    @abstractmethod
    def put(
        self,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Upload ``body`` privately under ``key``, replacing any existing object."""

    @abstractmethod
    def list(self, prefix: str) -> list[ObjectInfo]:
        """Return every object under ``prefix``."""

