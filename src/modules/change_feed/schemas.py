"""Change record handed to change-feed handlers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from src.models.enums import ChangeEventName
from src.models.order_change_event import OrderChangeEvent


@dataclass(frozen=True)
class ChangeRecord:
    event_id: uuid.UUID
    event_name: ChangeEventName
    gallery_id: str
    order_id: str
    old_image: dict | None = None
    new_image: dict | None = None
    sequence_number: int | None = None

    @classmethod
    def from_event(cls, event: OrderChangeEvent) -> ChangeRecord:
        return cls(
            event_id=event.event_id,
            event_name=ChangeEventName(event.event_name),
            gallery_id=event.gallery_id,
            order_id=event.order_id,
            old_image=event.old_image,
            new_image=event.new_image,
            sequence_number=event.sequence_number,
        )
