"""FinalizeJobDispatcher — fire-and-forget dispatch of the finalize job."""

from __future__ import annotations

import logging

from celery import Celery

from src.config import settings
from src.exceptions import JobDispatchError
from src.modules.archive.constants import FINALIZE_TASK_NAME

logger = logging.getLogger(__name__)


class FinalizeJobDispatcher:
    """Publishes ``{gallery_id, order_id}`` to the archive-build queue.

    Dispatch only enqueues; it never waits for the job to run.
    """

    def __init__(self, app: Celery | None = None, queue: str | None = None) -> None:
        if app is None:
            from celery_app import celery as app
        self.app = app
        self.queue = queue or settings.finalize_job_queue

    def dispatch(self, gallery_id: str, order_id: str) -> str:
        """Enqueue the finalize job and return its task id.

        Raises JobDispatchError if the broker rejects the message.
        """
        try:
            result = self.app.send_task(
                FINALIZE_TASK_NAME,
                kwargs={"gallery_id": gallery_id, "order_id": order_id},
                queue=self.queue,
            )
        except Exception as exc:
            raise JobDispatchError(
                f"Failed to dispatch finalize job for order {gallery_id}/{order_id}: {exc}"
            ) from exc

        logger.info(
            "Dispatched finalize job %s for order %s/%s", result.id, gallery_id, order_id
        )
        return result.id
