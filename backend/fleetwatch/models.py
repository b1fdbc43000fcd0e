"""SQLAlchemy models for tenants, geofences, crossing events, recipients, deliveries and audit."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .database import Base

# Typed JSON arrays/objects; JSONB on PostgreSQL, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OwnerKind(str, enum.Enum):
    PLATFORM = "platform"
    TENANT = "tenant"


class GeofenceState(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class AlertMode(str, enum.Enum):
    ENTRY_ONLY = "entry_only"
    EXIT_ONLY = "exit_only"
    ENTRY_AND_EXIT = "entry_and_exit"
    NONE = "none"


class AssignmentScope(str, enum.Enum):
    GLOBAL = "global"
    CLIENT = "client"


class Direction(str, enum.Enum):
    ENTRY = "entry"
    EXIT = "exit"


class Channel(str, enum.Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


def _values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Client(Base):
    """Tenant organization."""
    __tablename__ = "clients"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="client")
    recipients = relationship("NotificationRecipient", back_populates="client")


class User(Base):
    """Platform user resolved from the bearer token subject."""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint(role.in_(["operator", "tenant_user"]), name="chk_user_role"),
        CheckConstraint(
            "(role = 'tenant_user' AND client_id IS NOT NULL) OR role = 'operator'",
            name="chk_user_tenant_client",
        ),
    )

    client = relationship("Client", back_populates="users")


class Geofence(Base):
    """Named geographic zone with entry/exit alerting rules."""
    __tablename__ = "geofences"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False, default="zona-permitida")
    color = Column(String(20), nullable=False, default="#1fb6aa")
    # Tagged shape: {"type": "circle", ...} or {"type": "polygon", ...}
    geometry = Column(JSONType, nullable=False)
    owner_kind = Column(String(20), nullable=False, index=True)
    owner_client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    alert_mode = Column(String(20), nullable=False, default=AlertMode.ENTRY_AND_EXIT.value)
    entry_labels = Column(JSONType, nullable=False, default=list)
    exit_labels = Column(JSONType, nullable=False, default=list)
    state = Column(String(20), nullable=False, default=GeofenceState.ACTIVE.value, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(owner_kind.in_(_values(OwnerKind)), name="chk_geofence_owner_kind"),
        CheckConstraint(
            "(owner_kind = 'platform' AND owner_client_id IS NULL)"
            " OR (owner_kind = 'tenant' AND owner_client_id IS NOT NULL)",
            name="chk_geofence_owner_client",
        ),
        CheckConstraint(alert_mode.in_(_values(AlertMode)), name="chk_geofence_alert_mode"),
        CheckConstraint(state.in_(_values(GeofenceState)), name="chk_geofence_state"),
        Index("idx_geofences_owner", "owner_kind", "owner_client_id"),
    )

    assignments = relationship(
        "GeofenceAssignment",
        back_populates="geofence",
        cascade="all, delete-orphan",
    )

    @property
    def is_deleted(self) -> bool:
        return self.state == GeofenceState.DELETED.value

    @property
    def is_platform_owned(self) -> bool:
        return self.owner_kind == OwnerKind.PLATFORM.value


class GeofenceAssignment(Base):
    """Sharing grant from a platform geofence to all clients or one client."""
    __tablename__ = "geofence_assignments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    geofence_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("geofences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scope = Column(String(20), nullable=False)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint(scope.in_(_values(AssignmentScope)), name="chk_assignment_scope"),
        CheckConstraint(
            "(scope = 'global' AND client_id IS NULL) OR (scope = 'client' AND client_id IS NOT NULL)",
            name="chk_assignment_scope_client",
        ),
        UniqueConstraint("geofence_id", "client_id", name="uq_assignment_geofence_client"),
        # One global grant per geofence (client_id is NULL there, so the pair above does not cover it).
        Index(
            "uq_assignment_geofence_global",
            "geofence_id",
            unique=True,
            sqlite_where=(scope == "global"),
            postgresql_where=(scope == "global"),
        ),
    )

    geofence = relationship("Geofence", back_populates="assignments")


class GeofenceEvent(Base):
    """Deduplicated vehicle crossing fact produced by the upstream detector."""
    __tablename__ = "geofence_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(String(100), nullable=False, index=True)
    geofence_id = Column(Uuid(as_uuid=True), ForeignKey("geofences.id"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)
    dedupe_key = Column(String(64), unique=True, nullable=False)
    processed = Column(Boolean, default=False, nullable=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint(direction.in_(_values(Direction)), name="chk_event_direction"),
    )

    geofence = relationship("Geofence")
    deliveries = relationship("NotificationDelivery", back_populates="event")


class NotificationRecipient(Base):
    """Client-scoped notification preference."""
    __tablename__ = "notification_recipients"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    email = Column(String(255), nullable=True)
    whatsapp = Column(String(50), nullable=True)
    channels = Column(JSONType, nullable=False, default=list)
    alert_types = Column(JSONType, nullable=False, default=list)
    geofence_ids = Column(JSONType, nullable=True)  # NULL = every geofence of the client
    vehicle_ids = Column(JSONType, nullable=True)  # NULL = every vehicle
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client = relationship("Client", back_populates="recipients")

    def destination_for(self, channel: str) -> str | None:
        if channel == Channel.EMAIL.value:
            return self.email or None
        if channel == Channel.WHATSAPP.value:
            return self.whatsapp or None
        return None


class NotificationDelivery(Base):
    """One tracked attempt to notify one recipient on one channel for one event."""
    __tablename__ = "notification_deliveries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("geofence_events.id"), nullable=False, index=True)
    recipient_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("notification_recipients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    channel = Column(String(20), nullable=False)
    destination = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(channel.in_(_values(Channel)), name="chk_delivery_channel"),
        CheckConstraint(status.in_(_values(DeliveryStatus)), name="chk_delivery_status"),
        UniqueConstraint("event_id", "recipient_id", "channel", name="uq_delivery_event_recipient_channel"),
        Index("idx_deliveries_pending", "status", "updated_at"),
    )

    event = relationship("GeofenceEvent", back_populates="deliveries")


class AuditLog(Base):
    """Append-only record of a mutating action."""
    __tablename__ = "audit_log"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    actor_name = Column(String(255), nullable=True)
    actor_role = Column(String(20), nullable=True)
    action = Column(String(50), nullable=False, index=True)
    resource_type = Column(String(30), nullable=False, index=True)
    resource_id = Column(String(64), nullable=True)
    details = Column(JSONType, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
