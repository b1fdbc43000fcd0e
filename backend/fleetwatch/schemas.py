"""Pydantic schemas for API."""
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .models import AlertMode, AssignmentScope, Channel, DeliveryStatus, Direction


# Geometry
class CircleGeometry(BaseModel):
    type: Literal["circle"]
    center: tuple[float, float]  # [lng, lat]
    radius_m: float = Field(gt=0)


class PolygonGeometry(BaseModel):
    type: Literal["polygon"]
    coordinates: list[tuple[float, float]] = Field(min_length=3)


Geometry = Annotated[Union[CircleGeometry, PolygonGeometry], Field(discriminator="type")]


# Geofence schemas
class GeofenceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = "zona-permitida"
    color: str = "#1fb6aa"
    geometry: Geometry
    alert_mode: AlertMode = AlertMode.ENTRY_AND_EXIT
    entry_labels: list[str] = Field(default_factory=list)
    exit_labels: list[str] = Field(default_factory=list)
    # Operators only: share with one client instead of every client.
    client_id: Optional[UUID] = None
    is_global: bool = False


class GeofenceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = None
    color: Optional[str] = None
    geometry: Optional[Geometry] = None
    alert_mode: Optional[AlertMode] = None
    entry_labels: Optional[list[str]] = None
    exit_labels: Optional[list[str]] = None
    client_id: Optional[UUID] = None
    is_global: Optional[bool] = None


class AssignmentCreate(BaseModel):
    scope: AssignmentScope
    client_id: Optional[UUID] = None


class AssignmentResponse(BaseModel):
    id: UUID
    scope: str
    client_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class GeofenceResponse(BaseModel):
    id: UUID
    name: str
    category: str
    color: str
    geometry: dict[str, Any]
    owner_kind: str
    owner_client_id: Optional[UUID] = None
    alert_mode: str
    entry_labels: list[str]
    exit_labels: list[str]
    state: str
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assignments: list[AssignmentResponse] = Field(default_factory=list)
    permission: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# Recipient schemas
class RecipientCreate(BaseModel):
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    channels: list[Channel]
    alert_types: list[Direction]
    geofence_ids: Optional[list[UUID]] = None
    vehicle_ids: Optional[list[str]] = None
    user_id: Optional[UUID] = None
    is_active: bool = True


class RecipientUpdate(BaseModel):
    """Partial update; explicitly sending null clears an allow-list."""

    email: Optional[str] = None
    whatsapp: Optional[str] = None
    channels: Optional[list[Channel]] = None
    alert_types: Optional[list[Direction]] = None
    geofence_ids: Optional[list[UUID]] = None
    vehicle_ids: Optional[list[str]] = None
    user_id: Optional[UUID] = None
    is_active: Optional[bool] = None


class RecipientResponse(BaseModel):
    id: UUID
    client_id: UUID
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    channels: list[str]
    alert_types: list[str]
    geofence_ids: Optional[list[str]] = None
    vehicle_ids: Optional[list[str]] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ChannelTestResult(BaseModel):
    channel: str
    destination: Optional[str] = None
    status: str
    error: Optional[str] = None


class RecipientTestResponse(BaseModel):
    recipient_id: UUID
    results: list[ChannelTestResult]


# Event schemas
class GeofenceEventIn(BaseModel):
    """Crossing fact posted by the upstream detector."""

    vehicle_id: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("vehicle_id", "vehicleId"),
    )
    geofence_id: UUID = Field(validation_alias=AliasChoices("geofence_id", "geofenceId"))
    direction: Direction
    latitude: float = Field(ge=-90, le=90, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(ge=-180, le=180, validation_alias=AliasChoices("longitude", "lng"))
    occurred_at: datetime = Field(validation_alias=AliasChoices("occurred_at", "occurredAt"))


class IngestResultOut(BaseModel):
    status: Literal["accepted", "duplicate"]
    event_id: Optional[UUID] = None
    dedupe_key: str


class IngestBatchResponse(BaseModel):
    accepted: int
    duplicates: int
    results: list[IngestResultOut]


class DeliveryResponse(BaseModel):
    id: UUID
    event_id: UUID
    recipient_id: Optional[UUID] = None
    channel: str
    destination: str
    subject: Optional[str] = None
    message: str
    status: DeliveryStatus
    error_message: Optional[str] = None
    attempts: int
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Audit schemas
class AuditEntryResponse(BaseModel):
    id: UUID
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AuditRecentItem(BaseModel):
    id: UUID
    action: str
    actor_name: Optional[str] = None
    resource_type: str
    created_at: Optional[datetime] = None


class AuditStatsResponse(BaseModel):
    total: int
    by_action: dict[str, int]
    by_actor: dict[str, int]
    by_resource_type: dict[str, int]
    recent_activity: list[AuditRecentItem]
