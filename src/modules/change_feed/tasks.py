"""Celery tasks for order change feed processing."""

from celery_app import celery
from src.modules.change_feed.handlers import ORDERS_STREAM, ChangeHandlerRegistry
from src.modules.change_feed.observer import DeliveredOrderObserver
from src.modules.change_feed.processor import ChangeFeedProcessor

ChangeHandlerRegistry.register(ORDERS_STREAM, DeliveredOrderObserver())


@celery.task(name="src.modules.change_feed.tasks.process_change_feed")
def process_change_feed():
    """Process a batch of pending order change records."""
    processor = ChangeFeedProcessor()
    return processor.process_batch()


@celery.task(name="src.modules.change_feed.tasks.cleanup_processed_events")
def cleanup_processed_events():
    """Delete expired processed_events and old completed change records."""
    processor = ChangeFeedProcessor()
    return processor.cleanup_expired()
