"""Archive job handler — the finalize job's boundary around ArchiveBuilder.

Turns any outcome into an HTTP-style envelope and, once the payload has been
validated, always releases the order's guard flag.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from src.config import settings
from src.exceptions import AppException, ConfigurationException, InvalidPayloadException
from src.models.enums import DeliveryStatus
from src.models.order import Order
from src.modules.archive.builder import ArchiveBuilder, archive_key, compute_files_hash
from src.modules.archive.constants import FILES_HASH_METADATA_KEY, FINAL_ASSET_PREFIX
from src.modules.archive.schemas import ArchiveBuildCommand, JobResponse
from src.modules.delivery.constants import CLEAR_FLAG_FIELDS
from src.modules.delivery.order_store import OrderStoreBase
from src.modules.storage.base import ObjectStoreBase, ObjectStoreError

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 1000


def _error_response(status_code: int, code: str, message: str) -> JobResponse:
    return JobResponse(status_code=status_code, body={"error": code, "message": message})


def _parse_command(payload: object) -> ArchiveBuildCommand:
    if not isinstance(payload, dict):
        raise InvalidPayloadException("Payload must be a JSON object")
    try:
        return ArchiveBuildCommand.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(loc) for loc in err["loc"]) for err in exc.errors()})
        raise InvalidPayloadException(
            f"Missing or invalid fields: {', '.join(fields)}",
            details=[{"field": field, "message": "missing or invalid"} for field in fields],
        ) from exc


class ArchiveJobHandler:
    def __init__(
        self,
        orders: OrderStoreBase,
        objects: ObjectStoreBase | None,
        *,
        bucket: str | None = None,
        builder: ArchiveBuilder | None = None,
    ) -> None:
        self.orders = orders
        self.objects = objects
        self.bucket = settings.galleries_bucket if bucket is None else bucket
        self.builder = builder or (ArchiveBuilder(objects) if objects is not None else None)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle(self, payload: object) -> JobResponse:
        """Validate a raw ``{galleryId, orderId, keys}`` payload and build."""
        try:
            self._check_configuration()
        except ConfigurationException as exc:
            logger.error("Archive job rejected: %s", exc.message)
            return _error_response(exc.status_code, exc.code, exc.message)

        try:
            command = _parse_command(payload)
        except InvalidPayloadException as exc:
            logger.warning("Archive job rejected: %s", exc.message)
            return _error_response(exc.status_code, exc.code, exc.message)

        return await self.build(command)

    async def finalize_order(self, gallery_id: str, order_id: str) -> JobResponse:
        """Finalize job: build the archive from the order's stored selection."""
        try:
            self._check_configuration()
        except ConfigurationException as exc:
            logger.error("Finalize job rejected: %s", exc.message)
            return _error_response(exc.status_code, exc.code, exc.message)

        order = await self.orders.get(gallery_id, order_id)
        if order is None:
            return _error_response(404, "NOT_FOUND", f"Order {gallery_id}/{order_id} not found")
        if order.delivery_status != DeliveryStatus.DELIVERED:
            logger.info(
                "Order %s/%s is %s, skipping finalize",
                gallery_id, order_id, order.delivery_status.value,
            )
            return JobResponse(
                status_code=200,
                body={
                    "galleryId": gallery_id,
                    "orderId": order_id,
                    "message": "Order is not delivered, skipping",
                },
            )

        command = ArchiveBuildCommand(
            gallery_id=gallery_id,
            order_id=order_id,
            selected_keys=list(order.selected_keys or []),
        )
        return await self.build(command)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def build(self, command: ArchiveBuildCommand) -> JobResponse:
        zip_key = archive_key(command.gallery_id, command.order_id)
        files_hash: str | None = None
        error: BaseException | None = None
        try:
            files_hash = await asyncio.to_thread(self._current_files_hash, command)
            if files_hash is not None and await asyncio.to_thread(
                self._archive_is_current, zip_key, files_hash
            ):
                logger.info("Archive %s is up to date, skipping rebuild", zip_key)
                message = "ZIP already exists"
            else:
                result = await asyncio.to_thread(self.builder.build, command, files_hash)
                files_hash = result.files_hash
                message = f"ZIP generated with {len(result.entries)} files"

            return JobResponse(
                status_code=200,
                body={
                    "zipKey": zip_key,
                    "galleryId": command.gallery_id,
                    "orderId": command.order_id,
                    "message": message,
                },
            )
        except AppException as exc:
            error = exc
            logger.error(
                "Archive build failed for order %s/%s: [%s] %s",
                command.gallery_id, command.order_id, exc.code, exc.message,
            )
            return _error_response(500, exc.code, exc.message)
        except Exception as exc:
            error = exc
            logger.exception(
                "Archive build crashed for order %s/%s", command.gallery_id, command.order_id
            )
            return _error_response(500, "ARCHIVE_FAILED", str(exc))
        except BaseException as exc:
            # Cancellation (a worker time limit or shutdown) is a failed build too
            error = exc
            logger.error(
                "Archive build interrupted for order %s/%s: %s",
                command.gallery_id, command.order_id, type(exc).__name__,
            )
            raise
        finally:
            await self._release_flag(command, files_hash, error)

    def _check_configuration(self) -> None:
        if not self.bucket or self.objects is None or self.builder is None:
            raise ConfigurationException("Missing required configuration: GALLERIES_BUCKET")

    def _current_files_hash(self, command: ArchiveBuildCommand) -> str | None:
        prefix = FINAL_ASSET_PREFIX.format(
            gallery_id=command.gallery_id, order_id=command.order_id
        )
        try:
            objects = self.objects.list(prefix)
        except ObjectStoreError as exc:
            logger.warning("Could not list %s, building without idempotency check: %s", prefix, exc)
            return None
        unselected = sorted(
            {obj.key.rsplit("/", 1)[-1] for obj in objects} - set(command.selected_keys)
        )
        if unselected:
            logger.warning(
                "%d finals under %s are not in the selection and are left out: %s",
                len(unselected), prefix, ", ".join(unselected),
            )
        return compute_files_hash(command.selected_keys, objects)

    def _archive_is_current(self, zip_key: str, files_hash: str) -> bool:
        try:
            existing = self.objects.head(zip_key)
        except ObjectStoreError as exc:
            logger.warning("Could not inspect %s, rebuilding: %s", zip_key, exc)
            return False
        return existing is not None and existing.metadata.get(FILES_HASH_METADATA_KEY) == files_hash

    async def _release_flag(
        self,
        command: ArchiveBuildCommand,
        files_hash: str | None,
        error: BaseException | None,
    ) -> None:
        """Clear the guard flag unconditionally; a failure here is only logged."""
        fields = dict(CLEAR_FLAG_FIELDS)
        if error is None:
            fields.update(
                final_zip_files_hash=files_hash,
                final_zip_error_attempts=0,
                final_zip_last_error=None,
            )
        else:
            if isinstance(error, asyncio.CancelledError):
                message = "Archive build was interrupted before it finished"
            else:
                message = getattr(error, "message", None) or str(error) or type(error).__name__
            fields.update(
                final_zip_error_attempts=Order.final_zip_error_attempts + 1,
                final_zip_last_error=message[:_MAX_ERROR_LENGTH],
            )

        try:
            await self.orders.update(command.gallery_id, command.order_id, fields)
            await self.orders.commit()
        except Exception:
            logger.exception(
                "Failed to clear final zip flag for order %s/%s",
                command.gallery_id, command.order_id,
            )
