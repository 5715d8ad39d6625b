"""S3ObjectStore — object store adapter over a boto3 S3 client."""

from __future__ import annotations

import logging
from typing import BinaryIO, Iterator

from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from src.config import settings
from src.modules.storage.base import (
    ObjectInfo,
    ObjectNotFoundError,
    ObjectStoreBase,
    ObjectStoreError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(ObjectStoreBase):
    """Objects in one bucket. Uploads carry no ACL, so they inherit the bucket's private policy."""

    def __init__(
        self,
        client: BaseClient,
        bucket: str,
        chunk_size: int | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.chunk_size = chunk_size or settings.archive_chunk_size_bytes
        self.transfer_config = TransferConfig(
            multipart_threshold=8 * 1024 * 1024,
            multipart_chunksize=8 * 1024 * 1024,
        )

    def get(self, key: str) -> Iterator[bytes]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from exc
            raise ObjectStoreError(f"get {key} failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"get {key} failed: {exc}") from exc

        return self._iter_body(key, response["Body"])

    def _iter_body(self, key: str, body) -> Iterator[bytes]:
        try:
            for chunk in body.iter_chunks(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except (BotoCoreError, OSError) as exc:
            raise ObjectStoreError(f"read {key} failed: {exc}") from exc
        finally:
            body.close()

    def head(self, key: str) -> ObjectInfo | None:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise ObjectStoreError(f"head {key} failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"head {key} failed: {exc}") from exc

        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def put(
        self,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        extra_args: dict = {"ContentType": content_type}
        if metadata:
            extra_args["Metadata"] = metadata
        try:
            self.client.upload_fileobj(
                body,
                self.bucket,
                key,
                ExtraArgs=extra_args,
                Config=self.transfer_config,
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as exc:
            raise ObjectStoreError(f"put {key} failed: {exc}") from exc
        logger.debug("Uploaded s3://%s/%s", self.bucket, key)

    def list(self, prefix: str) -> list[ObjectInfo]:
        objects: list[ObjectInfo] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=item["Key"],
                            size=int(item.get("Size", 0)),
                            etag=item.get("ETag"),
                            last_modified=item.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError(f"list {prefix} failed: {exc}") from exc
        return objects

