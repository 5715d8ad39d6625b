"""Order delivery API router — client and photographer actions, final zip."""

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.models.enums import DeliveryStatus
from src.modules.archive.dispatcher import FinalizeJobDispatcher
from src.modules.delivery.coordinator import DeliveryCompletion
from src.modules.delivery.order_store import SqlOrderStore
from src.modules.delivery.schemas import (
    ApproveSelectionRequest,
    DeliveryCompletionResponse,
    FinalZipStatusResponse,
    OrderListResponse,
    OrderResponse,
)
from src.modules.delivery.service import DeliveryService
from src.modules.storage.client import get_galleries_store

router = APIRouter(prefix="/galleries/{gallery_id}", tags=["delivery"])

limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------------
# Dependencies & helpers
# ---------------------------------------------------------------------------


def get_finalize_dispatcher() -> FinalizeJobDispatcher:
    return FinalizeJobDispatcher()


def get_delivery_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: FinalizeJobDispatcher = Depends(get_finalize_dispatcher),
) -> DeliveryService:
    return DeliveryService(SqlOrderStore(db), dispatcher, get_galleries_store())


def _build_completion_response(completion: DeliveryCompletion) -> DeliveryCompletionResponse:
    return DeliveryCompletionResponse(
        order=OrderResponse.model_validate(completion.order),
        job_id=completion.job_id,
        dispatched=completion.dispatched,
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    gallery_id: str,
    status: DeliveryStatus | None = Query(None),
    svc: DeliveryService = Depends(get_delivery_service),
):
    """List a gallery's orders, optionally filtered by delivery status."""
    orders = await svc.list_orders(gallery_id, status=status)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=len(orders),
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    order = await svc.get_order(gallery_id, order_id)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Client actions
# ---------------------------------------------------------------------------


@router.post("/orders/{order_id}/approve-selection", response_model=OrderResponse)
async def approve_selection(
    gallery_id: str,
    order_id: str,
    body: ApproveSelectionRequest | None = None,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Client approves the selection (CLIENT_SELECTING -> CLIENT_APPROVED)."""
    order = await svc.approve_selection(
        gallery_id, order_id, selected_keys=body.selected_keys if body else None
    )
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/request-changes", response_model=OrderResponse)
async def request_changes(
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Client asks to change an approved selection."""
    order = await svc.request_changes(gallery_id, order_id)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Photographer actions
# ---------------------------------------------------------------------------


@router.post("/orders/{order_id}/approve-change-request", response_model=OrderResponse)
async def approve_change_request(
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Reopen selection for an order awaiting changes."""
    order = await svc.approve_change_request(gallery_id, order_id)
    return OrderResponse.model_validate(order)


@router.post("/change-requests/approve", response_model=OrderResponse)
async def approve_pending_change_request(
    gallery_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Approve the gallery's pending change request, whichever order holds it."""
    order = await svc.approve_change_request(gallery_id)
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/start-delivery", response_model=OrderResponse)
async def start_delivery_preparation(
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    order = await svc.start_delivery_preparation(gallery_id, order_id)
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/send-final-link", response_model=DeliveryCompletionResponse)
@limiter.limit("20/minute")
async def send_final_link(
    request: Request,
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Mark the order delivered and start building the final archive."""
    completion = await svc.send_final_link(gallery_id, order_id)
    return _build_completion_response(completion)


# ---------------------------------------------------------------------------
# Final zip
# ---------------------------------------------------------------------------


@router.get("/orders/{order_id}/final-zip", response_model=FinalZipStatusResponse)
async def get_final_zip_status(
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    result = await svc.get_final_zip_status(gallery_id, order_id)
    return FinalZipStatusResponse(**result)


@router.post(
    "/orders/{order_id}/final-zip/retry",
    response_model=DeliveryCompletionResponse,
    status_code=202,
)
@limiter.limit("5/minute")
async def retry_final_zip(
    request: Request,
    gallery_id: str,
    order_id: str,
    svc: DeliveryService = Depends(get_delivery_service),
):
    """Re-run a failed final zip build."""
    completion = await svc.retry_final_zip(gallery_id, order_id)
    return _build_completion_response(completion)
