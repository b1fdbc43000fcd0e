"""
Celery worker: drains claimable crossing events and sweeps stale deliveries.
"""
import logging

from celery import Celery

from .config import settings
from .database import build_database
from .services.audit import AuditRecorder
from .use_cases.dispatch import Dispatcher

logger = logging.getLogger(__name__)

celery_app = Celery(
    "fleetwatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

_dispatcher: Dispatcher | None = None


def get_dispatcher() -> Dispatcher:
    """One store handle and worker pool per worker process, built on first use."""
    global _dispatcher
    if _dispatcher is None:
        database = build_database(config=settings)
        _dispatcher = Dispatcher.from_settings(database, AuditRecorder(database.SessionLocal), settings)
    return _dispatcher


@celery_app.task(name="process_geofence_events")
def process_geofence_events(batch_size: int | None = None):
    """
    Claim unprocessed events one at a time and fan them out to recipients.

    Each claim commits together with its pending deliveries, so concurrent
    workers never process the same event twice.
    """
    dispatcher = get_dispatcher()
    try:
        summaries = dispatcher.drain(batch_size or settings.PROCESS_EVENTS_BATCH_SIZE)
    except Exception as e:
        logger.error("Error processing geofence events: %s", e, exc_info=True)
        raise

    deliveries = sum(len(summary.delivery_ids) for summary in summaries)
    logger.info("Processed %s events, %s deliveries queued", len(summaries), deliveries)
    return {"events": len(summaries), "deliveries": deliveries}


@celery_app.task(name="retry_stale_deliveries")
def retry_stale_deliveries():
    """Resubmit deliveries left pending by a crashed or saturated worker."""
    submitted = get_dispatcher().retry_stale_deliveries()
    return {"resubmitted": submitted}


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-geofence-events-every-10s': {
        'task': 'process_geofence_events',
        'schedule': 10.0,
    },
    'retry-stale-deliveries-every-5m': {
        'task': 'retry_stale_deliveries',
        'schedule': 300.0,
    },
}
