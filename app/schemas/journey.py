"""Journey, location and checkpoint schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.alert import SafetyAlertOut
from app.schemas.geo import LocationIn, PlannedRoute, UTCDateTime


class _CamelIn(BaseModel):
    """Request bodies accept camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JourneyCreate(_CamelIn):
    start_location: LocationIn | None = None
    destination: LocationIn | None = None
    planned_route: PlannedRoute | None = None
    transport_mode: str = Field(default="walking", max_length=30)
    scheduled_time: datetime | None = None
    shared_with_parents: list[int] | None = None


class JourneyStartRequest(_CamelIn):
    current_location: LocationIn | None = None


class JourneyCompleteRequest(_CamelIn):
    status: Literal["completed", "cancelled", "emergency"] = "completed"
    current_location: LocationIn | None = None


class CheckpointCreate(_CamelIn):
    status: Literal["safe", "unsafe", "no_response"]
    location: LocationIn


class LocationSampleIn(_CamelIn):
    """One live location sample. Speed in km/h, accuracy in metres."""

    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "longitude"))
    speed: float = Field(default=0.0, ge=0)
    heading: float = Field(default=0.0, ge=0, le=360)
    accuracy: float = Field(default=0.0, ge=0)
    battery_level: float = Field(default=100.0, ge=0, le=100)
    address: str | None = Field(default=None, max_length=255)
    timestamp: datetime | None = None

    def to_point(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [self.lng, self.lat]}


class JourneyOut(BaseModel):
    id: int
    user_id: int
    status: str
    start_location: dict[str, Any]
    destination: dict[str, Any]
    start_address: str | None
    destination_address: str | None
    planned_route: dict[str, Any] | None
    transport_mode: str
    scheduled_time: UTCDateTime
    start_time: UTCDateTime | None
    end_time: UTCDateTime | None
    actual_duration: int | None
    progress: float
    last_known_location: dict[str, Any] | None
    last_known_at: UTCDateTime | None
    metrics: dict[str, Any]
    checkpoints: list[dict[str, Any]]
    shared_with_parents: list[int] = Field(
        default_factory=list, validation_alias=AliasChoices("shared_with_parents", "shared_with_ids")
    )
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class LocationSampleOut(BaseModel):
    id: int
    journey_id: int
    user_id: int
    location: dict[str, Any]
    speed: float
    heading: float
    accuracy: float
    battery_level: float
    is_moving: bool
    address: str | None
    timestamp: UTCDateTime

    model_config = {"from_attributes": True}


class LocationAck(BaseModel):
    """Response to a journey location sample."""

    progress: float
    journey_status: str
    alerts: list[SafetyAlertOut] = []


class ActiveJourneyOut(BaseModel):
    """A journey as seen by a watching parent."""

    journey: JourneyOut
    latest_location: LocationSampleOut | None
    progress: float


class JourneyHistoryOut(BaseModel):
    items: list[JourneyOut]
    total: int
    limit: int
    offset: int
