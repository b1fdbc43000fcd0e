"""Event-to-notification fan-out and delivery tracking."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth import SYSTEM_CALLER
from ..config import Settings, settings as default_settings
from ..database import Database
from ..models import DeliveryStatus, Geofence, GeofenceEvent, NotificationDelivery, NotificationRecipient
from ..services.audit import AuditAction, AuditRecorder
from ..services.delivery_state import is_terminal, now_utc, terminal_updates
from ..services.senders import HttpGatewaySender, SendResult, Sender, render_message
from ..services.worker_pool import DeliveryWorkerPool
from .events import claim_next_event
from .matching import match_event

logger = logging.getLogger(__name__)


@dataclass
class DispatchSummary:
    event_id: UUID
    matched: int
    delivery_ids: list[UUID] = field(default_factory=list)
    submitted: int = 0


def create_pending_deliveries(
    db: Session,
    event: GeofenceEvent,
    matches: list[tuple[NotificationRecipient, str]],
    geofence: Geofence | None = None,
) -> list[NotificationDelivery]:
    """One delivery per (event, recipient, channel); existing rows are reused.

    Does not commit. The claimed event is held by a single worker, so the
    unique constraint only has to back up this existence check.
    """
    if not matches:
        return []
    geofence = geofence or db.get(Geofence, event.geofence_id)
    subject, message = render_message(geofence=geofence, event=event)

    existing = {
        (row.recipient_id, row.channel): row
        for row in db.query(NotificationDelivery).filter(NotificationDelivery.event_id == event.id).all()
    }
    deliveries: list[NotificationDelivery] = []
    for recipient, channel in matches:
        delivery = existing.get((recipient.id, channel))
        if delivery is None:
            delivery = NotificationDelivery(
                event_id=event.id,
                recipient_id=recipient.id,
                channel=channel,
                destination=recipient.destination_for(channel),
                subject=subject,
                message=message,
                status=DeliveryStatus.PENDING.value,
                attempts=0,
            )
            db.add(delivery)
            existing[(recipient.id, channel)] = delivery
        deliveries.append(delivery)
    db.flush()
    return deliveries


class Dispatcher:
    """Claims events, creates pending deliveries and hands sends to the worker pool."""

    def __init__(
        self,
        *,
        database: Database,
        sender: Sender,
        pool: DeliveryWorkerPool,
        audit: AuditRecorder,
        config: Settings | None = None,
    ):
        cfg = config or default_settings
        self.database = database
        self.sender = sender
        self.pool = pool
        self.audit = audit
        self.disabled_channels = cfg.disabled_channels
        self.pending_timeout = timedelta(seconds=cfg.DELIVERY_PENDING_TIMEOUT_SECONDS)
        self.batch_size = cfg.PROCESS_EVENTS_BATCH_SIZE

    @classmethod
    def from_settings(cls, database: Database, audit: AuditRecorder, config: Settings | None = None) -> "Dispatcher":
        cfg = config or default_settings
        return cls(
            database=database,
            sender=HttpGatewaySender(cfg),
            pool=DeliveryWorkerPool.from_settings(cfg),
            audit=audit,
            config=cfg,
        )

    def submit(self, delivery_id: UUID) -> bool:
        return self.pool.submit(self.deliver, delivery_id) is not None

    def process_next_event(self) -> DispatchSummary | None:
        """Claim one event, persist its pending deliveries, then schedule the sends."""
        db = self.database.session()
        try:
            event = claim_next_event(db)
            if event is None:
                db.rollback()
                return None
            geofence = db.get(Geofence, event.geofence_id)
            matches = match_event(db, event, geofence)
            deliveries = create_pending_deliveries(db, event, matches, geofence)
            db.commit()
            summary = DispatchSummary(
                event_id=event.id,
                matched=len(matches),
                delivery_ids=[
                    delivery.id
                    for delivery in deliveries
                    if delivery.status == DeliveryStatus.PENDING.value
                ],
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self.audit.record(
            SYSTEM_CALLER,
            AuditAction.DISPATCH_NOTIFICATIONS,
            "geofence_event",
            summary.event_id,
            {"matched": summary.matched, "deliveries": len(summary.delivery_ids)},
        )
        for delivery_id in summary.delivery_ids:
            if self.submit(delivery_id):
                summary.submitted += 1
        logger.info(
            "Event %s dispatched: %s matches, %s submitted",
            summary.event_id,
            summary.matched,
            summary.submitted,
        )
        return summary

    def drain(self, batch_size: int | None = None) -> list[DispatchSummary]:
        """Process claimable events until none are left or the batch is full."""
        limit = batch_size or self.batch_size
        summaries: list[DispatchSummary] = []
        while len(summaries) < limit:
            summary = self.process_next_event()
            if summary is None:
                break
            summaries.append(summary)
        return summaries

    def _outcome(self, channel: str, destination: str, subject: str | None, message: str) -> tuple[str, str | None]:
        if channel in self.disabled_channels:
            return DeliveryStatus.SKIPPED.value, f"CHANNEL_DISABLED: {channel}"
        if not self.sender.supports(channel):
            return DeliveryStatus.SKIPPED.value, f"CHANNEL_NOT_SUPPORTED: {channel}"
        try:
            result = self.sender.send(channel, destination, subject, message)
        except Exception as exc:
            logger.exception("Sender raised for channel %s", channel)
            result = SendResult(ok=False, error=f"EXCEPTION: {exc}")
        if result.ok:
            return DeliveryStatus.SENT.value, None
        return DeliveryStatus.FAILED.value, result.error or "UNKNOWN_ERROR"

    def deliver(self, delivery_id: UUID) -> str | None:
        """Send one pending delivery and record its terminal status. Returns the final status."""
        db = self.database.session()
        try:
            delivery = db.get(NotificationDelivery, delivery_id)
            if delivery is None:
                logger.warning("Delivery %s not found", delivery_id)
                return None
            if is_terminal(delivery.status):
                return delivery.status

            channel = delivery.channel
            destination = delivery.destination
            subject = delivery.subject
            message = delivery.message
            event_id = delivery.event_id

            db.execute(
                update(NotificationDelivery)
                .where(
                    NotificationDelivery.id == delivery_id,
                    NotificationDelivery.status == DeliveryStatus.PENDING.value,
                )
                .values(attempts=NotificationDelivery.attempts + 1, updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            db.commit()

            next_status, error = self._outcome(channel, destination, subject, message)

            result = db.execute(
                update(NotificationDelivery)
                .where(
                    NotificationDelivery.id == delivery_id,
                    NotificationDelivery.status == DeliveryStatus.PENDING.value,
                )
                .values(**terminal_updates(next_status=next_status, error=error))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 0:
                db.expire(delivery)
                logger.info("Delivery %s already finalized as %s", delivery_id, delivery.status)
                return delivery.status
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if next_status == DeliveryStatus.FAILED.value:
            logger.warning("Delivery %s via %s failed: %s", delivery_id, channel, error)
        else:
            logger.info("Delivery %s via %s %s", delivery_id, channel, next_status)
        self.audit.record(
            SYSTEM_CALLER,
            AuditAction.DELIVER_NOTIFICATION,
            "notification_delivery",
            delivery_id,
            {"event_id": event_id, "channel": channel, "status": next_status, "error": error},
        )
        return next_status

    def retry_stale_deliveries(self, older_than: timedelta | None = None) -> int:
        """Resubmit deliveries stuck in pending (crashed worker, rejected submission)."""
        cutoff = now_utc() - (older_than if older_than is not None else self.pending_timeout)
        db = self.database.session()
        try:
            stale_ids = [
                delivery_id
                for (delivery_id,) in db.query(NotificationDelivery.id)
                .filter(
                    NotificationDelivery.status == DeliveryStatus.PENDING.value,
                    NotificationDelivery.updated_at < cutoff,
                )
                .order_by(NotificationDelivery.updated_at)
                .all()
            ]
        finally:
            db.close()

        submitted = sum(1 for delivery_id in stale_ids if self.submit(delivery_id))
        if stale_ids:
            logger.info("Resubmitted %s of %s stale deliveries", submitted, len(stale_ids))
        return submitted

    def shutdown(self, wait: bool = True) -> None:
        self.pool.shutdown(wait=wait)
