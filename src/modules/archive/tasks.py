"""Celery tasks for final archive generation."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from src.config import settings
from src.database.session import task_session
from src.modules.archive.constants import (
    FINALIZE_TASK_NAME,
    RELEASE_STALE_FLAGS_TASK_NAME,
    TASK_TIME_LIMIT_HEADROOM_SECONDS,
)

logger = logging.getLogger(__name__)


async def _finalize_order_delivery_async(gallery_id: str, order_id: str) -> dict:
    from src.modules.archive.service import ArchiveJobHandler
    from src.modules.delivery.order_store import SqlOrderStore
    from src.modules.storage.client import get_galleries_store

    async with task_session() as session:
        handler = ArchiveJobHandler(SqlOrderStore(session), get_galleries_store())
        response = await handler.finalize_order(gallery_id, order_id)
    return response.model_dump()


async def _release_stale_final_zip_flags_async() -> dict:
    from src.modules.archive.dispatcher import FinalizeJobDispatcher
    from src.modules.delivery.order_store import SqlOrderStore
    from src.modules.delivery.service import DeliveryService

    async with task_session() as session:
        svc = DeliveryService(SqlOrderStore(session), FinalizeJobDispatcher(celery))
        stats = await svc.release_stale_final_zip_flags()
    return stats


@celery.task(
    name=FINALIZE_TASK_NAME,
    bind=True,
    max_retries=2,
    soft_time_limit=settings.archive_build_timeout_seconds + TASK_TIME_LIMIT_HEADROOM_SECONDS,
    time_limit=settings.archive_build_timeout_seconds + 2 * TASK_TIME_LIMIT_HEADROOM_SECONDS,
)
def finalize_order_delivery(self, gallery_id: str, order_id: str) -> dict:
    """Build the final archive of a delivered order and release its guard flag.

    Build failures come back as an error envelope; only infrastructure errors
    (database unreachable) raise and are retried.
    """
    try:
        result = asyncio.run(_finalize_order_delivery_async(gallery_id, order_id))
    except Exception as exc:
        logger.exception("finalize_order_delivery failed for order %s/%s", gallery_id, order_id)
        raise self.retry(exc=exc, countdown=60)
    logger.info(
        "finalize_order_delivery %s/%s complete: %s", gallery_id, order_id, result["status_code"]
    )
    return result


@celery.task(name=RELEASE_STALE_FLAGS_TASK_NAME, bind=True, max_retries=1)
def release_stale_final_zip_flags(self) -> dict:
    """Clear guard flags left behind by finalize jobs that never reported."""
    try:
        stats = asyncio.run(_release_stale_final_zip_flags_async())
    except Exception as exc:
        logger.exception("release_stale_final_zip_flags failed")
        raise self.retry(exc=exc, countdown=60)
    logger.info("release_stale_final_zip_flags complete: %s", stats)
    return stats
