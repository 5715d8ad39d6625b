"""Unit tests for DeliveryStateMachine — transition table, guards, conditional writes."""

from __future__ import annotations

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.exceptions import (
    BusinessRuleException,
    ConditionFailedException,
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
)
from src.models.enums import DeliveryStatus
from src.modules.delivery.constants import VALID_TRANSITIONS
from src.modules.delivery.order_store import OrderStoreBase
from src.modules.delivery.state_machine import DeliveryStateMachine, validate_transition

LEGAL_EDGES = {
    (DeliveryStatus.CLIENT_SELECTING, DeliveryStatus.CLIENT_APPROVED),
    (DeliveryStatus.CLIENT_APPROVED, DeliveryStatus.CHANGES_REQUESTED),
    (DeliveryStatus.PREPARING_DELIVERY, DeliveryStatus.CHANGES_REQUESTED),
    (DeliveryStatus.CHANGES_REQUESTED, DeliveryStatus.CLIENT_SELECTING),
    (DeliveryStatus.CLIENT_APPROVED, DeliveryStatus.PREPARING_DELIVERY),
    (DeliveryStatus.PREPARING_DELIVERY, DeliveryStatus.DELIVERED),
}

ILLEGAL_EDGES = sorted(
    (pair for pair in itertools.product(DeliveryStatus, repeat=2) if pair not in LEGAL_EDGES),
    key=lambda pair: (pair[0].value, pair[1].value),
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_store():
    store = AsyncMock(spec=OrderStoreBase)
    store.query.return_value = []
    return store


@pytest.fixture
def state_machine(mock_store):
    return DeliveryStateMachine(mock_store)


def _make_order(
    status=DeliveryStatus.CLIENT_SELECTING,
    gallery_id="gal-1",
    order_id="ord-1",
    selected_keys=None,
    change_requests_blocked=False,
):
    order = MagicMock()
    order.gallery_id = gallery_id
    order.order_id = order_id
    order.delivery_status = status
    order.selected_keys = ["a.jpg"] if selected_keys is None else selected_keys
    order.change_requests_blocked = change_requests_blocked
    return order


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitionTable:
    def test_table_matches_legal_edges(self):
        edges = {
            (current, target)
            for current, targets in VALID_TRANSITIONS.items()
            for target in targets
        }
        assert edges == LEGAL_EDGES

    def test_delivered_is_terminal(self):
        assert VALID_TRANSITIONS[DeliveryStatus.DELIVERED] == set()

    @pytest.mark.parametrize(("current", "requested"), sorted(LEGAL_EDGES))
    def test_legal_edges_validate(self, current, requested):
        validate_transition(current, requested)

    @pytest.mark.parametrize(("current", "requested"), ILLEGAL_EDGES)
    @pytest.mark.asyncio
    async def test_illegal_edges_rejected_without_writes(
        self, state_machine, mock_store, current, requested
    ):
        mock_store.get.return_value = _make_order(status=current)

        with pytest.raises(InvalidTransitionException) as exc_info:
            await state_machine.transition("gal-1", "ord-1", requested)

        assert exc_info.value.current == current.value
        assert exc_info.value.requested == requested.value
        assert exc_info.value.status_code == 409
        mock_store.conditional_update.assert_not_called()
        mock_store.update.assert_not_called()


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransition:
    @pytest.mark.asyncio
    async def test_missing_order_raises_not_found(self, state_machine, mock_store):
        mock_store.get.return_value = None

        with pytest.raises(NotFoundException):
            await state_machine.transition("gal-1", "ord-1", DeliveryStatus.CLIENT_APPROVED)

    @pytest.mark.asyncio
    async def test_write_is_conditional_on_status_just_read(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(status=DeliveryStatus.CLIENT_APPROVED)

        await state_machine.transition(
            "gal-1", "ord-1", DeliveryStatus.PREPARING_DELIVERY, {"note": "x"}
        )

        mock_store.conditional_update.assert_awaited_once_with(
            "gal-1",
            "ord-1",
            {"delivery_status": DeliveryStatus.PREPARING_DELIVERY, "note": "x"},
            expected_status=DeliveryStatus.CLIENT_APPROVED,
        )

    @pytest.mark.asyncio
    async def test_concurrent_change_surfaces_condition_failure(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(status=DeliveryStatus.CLIENT_APPROVED)
        mock_store.conditional_update.side_effect = ConditionFailedException("changed")

        with pytest.raises(ConditionFailedException):
            await state_machine.transition("gal-1", "ord-1", DeliveryStatus.PREPARING_DELIVERY)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:
    @pytest.mark.asyncio
    async def test_change_request_rejected_when_blocked(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(
            status=DeliveryStatus.CLIENT_APPROVED, change_requests_blocked=True
        )

        with pytest.raises(BusinessRuleException, match="blocked"):
            await state_machine.transition("gal-1", "ord-1", DeliveryStatus.CHANGES_REQUESTED)
        mock_store.conditional_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_change_request_rejected_when_gallery_has_one_pending(
        self, state_machine, mock_store
    ):
        mock_store.get.return_value = _make_order(status=DeliveryStatus.PREPARING_DELIVERY)
        mock_store.query.return_value = [
            _make_order(status=DeliveryStatus.CHANGES_REQUESTED, order_id="ord-2")
        ]

        with pytest.raises(ConflictException, match="already has a change request"):
            await state_machine.transition("gal-1", "ord-1", DeliveryStatus.CHANGES_REQUESTED)
        mock_store.query.assert_awaited_once_with(
            "gal-1", status=DeliveryStatus.CHANGES_REQUESTED
        )

    @pytest.mark.asyncio
    async def test_change_request_allowed_from_preparing_delivery(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(status=DeliveryStatus.PREPARING_DELIVERY)

        await state_machine.transition("gal-1", "ord-1", DeliveryStatus.CHANGES_REQUESTED)

        mock_store.conditional_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_approval_rejected_for_empty_selection(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(selected_keys=[])

        with pytest.raises(BusinessRuleException, match="empty selection"):
            await state_machine.transition("gal-1", "ord-1", DeliveryStatus.CLIENT_APPROVED)

    @pytest.mark.asyncio
    async def test_approval_accepts_replacement_selection(self, state_machine, mock_store):
        mock_store.get.return_value = _make_order(selected_keys=[])

        await state_machine.transition(
            "gal-1", "ord-1", DeliveryStatus.CLIENT_APPROVED, {"selected_keys": ["c.jpg"]}
        )

        mock_store.conditional_update.assert_awaited_once()
