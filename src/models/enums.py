import enum


class DeliveryStatus(str, enum.Enum):
    CLIENT_SELECTING = "CLIENT_SELECTING"
    CLIENT_APPROVED = "CLIENT_APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    PREPARING_DELIVERY = "PREPARING_DELIVERY"
    DELIVERED = "DELIVERED"


class FinalZipStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


# ── Order change feed ───────────────────────────────────────────────────


class ChangeEventName(str, enum.Enum):
    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
