"""Archive build entrypoint — synchronous invocation of the archive job handler."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.exceptions import InvalidPayloadException
from src.modules.archive.service import ArchiveJobHandler
from src.modules.delivery.order_store import SqlOrderStore
from src.modules.storage.client import get_galleries_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/archives", tags=["archives"])


def get_archive_job_handler(db: AsyncSession = Depends(get_db)) -> ArchiveJobHandler:
    return ArchiveJobHandler(SqlOrderStore(db), get_galleries_store())


@router.post("")
async def build_archive(
    request: Request,
    handler: ArchiveJobHandler = Depends(get_archive_job_handler),
) -> JSONResponse:
    """Build the archive for ``{galleryId, orderId, keys}`` and return the job envelope."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Archive build request body is not valid JSON")
        return JSONResponse(
            status_code=400,
            content={"error": InvalidPayloadException.code, "message": "Request body must be JSON"},
        )

    response = await handler.handle(payload)
    return JSONResponse(status_code=response.status_code, content=response.body)
