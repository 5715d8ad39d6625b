"""ChangeHandlerRegistry — central registry for change-feed handlers."""

import logging
from collections import defaultdict
from collections.abc import Callable

from src.modules.change_feed.schemas import ChangeRecord

logger = logging.getLogger(__name__)

ORDERS_STREAM = "orders"


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", type(handler).__name__)


class ChangeHandlerRegistry:
    """Singleton-style registry for change-feed handlers.

    Handlers are callables that accept a ChangeRecord.
    Multiple handlers can be registered for the same stream.
    """

    _handlers: dict[str, list[Callable[[ChangeRecord], object]]] = defaultdict(list)

    @classmethod
    def register(cls, stream: str, handler: Callable[[ChangeRecord], object]) -> None:
        """Register a handler for a stream, once."""
        if handler in cls._handlers[stream]:
            return
        cls._handlers[stream].append(handler)
        logger.info("Registered handler %s for stream %s", _handler_name(handler), stream)

    @classmethod
    def get_handlers(cls, stream: str) -> list[Callable[[ChangeRecord], object]]:
        """Return all handlers registered for the given stream."""
        return cls._handlers.get(stream, [])

    @classmethod
    def dispatch(cls, stream: str, record: ChangeRecord) -> list[dict]:
        """Dispatch a change record to all registered handlers.

        Returns a list of result dicts with handler name and status.
        Errors are logged and captured but do not stop other handlers.
        """
        results = []
        for handler in cls.get_handlers(stream):
            name = _handler_name(handler)
            try:
                handler(record)
                results.append({"handler": name, "status": "ok"})
            except Exception as exc:
                logger.exception(
                    "Handler %s failed for change %s on %s", name, record.event_id, stream
                )
                results.append({"handler": name, "status": "error", "error": str(exc)})
        return results

    @classmethod
    def clear(cls) -> None:
        """Remove all registered handlers. Useful for testing."""
        cls._handlers.clear()
