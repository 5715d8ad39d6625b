# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.enums import ChangeEventName, DeliveryStatus, EventStatus, FinalZipStatus
from src.models.order import Order
from src.models.order_change_event import OrderChangeEvent
from src.models.processed_event import ProcessedEvent

__all__ = [
    "ChangeEventName",
    "DeliveryStatus",
    "EventStatus",
    "FinalZipStatus",
    "Order",
    "OrderChangeEvent",
    "ProcessedEvent",
]
