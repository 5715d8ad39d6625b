"""Helpers for creating storage clients."""

from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.client import BaseClient
from botocore.config import Config

from src.config import settings


def _normalize_endpoint(endpoint_url: str | None) -> str | None:
    if endpoint_url:
        return endpoint_url.rstrip("/")
    return None


def _build_s3_config() -> Config:
    return Config(
        retries={"max_attempts": settings.s3_max_attempts, "mode": "standard"},
        connect_timeout=settings.s3_connect_timeout_seconds,
        read_timeout=settings.s3_read_timeout_seconds,
    )


def get_s3_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
) -> BaseClient:
    """Return a configured S3 client (supports S3-compatible endpoints)."""
    return boto3.client(
        "s3",
        region_name=region or settings.s3_region or None,
        aws_access_key_id=settings.aws_access_key_id or None,
        aws_secret_access_key=settings.aws_secret_access_key or None,
        endpoint_url=_normalize_endpoint(endpoint_url or settings.s3_endpoint_url),
        config=_build_s3_config(),
    )


@lru_cache(maxsize=1)
def get_galleries_store():
    """Return the shared object store for the galleries bucket, or None if unconfigured."""
    if not settings.galleries_bucket:
        return None
    from src.modules.storage.s3 import S3ObjectStore

    return S3ObjectStore(get_s3_client(), settings.galleries_bucket)
