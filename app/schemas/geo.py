"""Canonical location and timestamp types shared by HTTP and WebSocket payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, model_validator


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are UTC (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class LocationIn(BaseModel):
    """A position as sent by clients.

    Accepts ``{lat, lng}``, ``{latitude, longitude}`` or a GeoJSON point and is
    stored as a GeoJSON point.
    """

    model_config = ConfigDict(populate_by_name=True)

    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "longitude"))
    address: str | None = Field(default=None, max_length=255)

    @model_validator(mode="before")
    @classmethod
    def from_geojson(cls, value: Any) -> Any:
        if isinstance(value, dict) and "coordinates" in value:
            coords = value.get("coordinates") or []
            if len(coords) != 2:
                raise ValueError("GeoJSON point needs [lng, lat]")
            return {"lng": coords[0], "lat": coords[1], "address": value.get("address")}
        return value

    def to_point(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [self.lng, self.lat]}


class PlannedRoute(BaseModel):
    """Opaque planned route: waypoints plus totals from whatever planner produced it."""

    waypoints: list[LocationIn] = Field(default_factory=list)
    distance: float | None = Field(default=None, ge=0, description="Total route distance in metres")
    duration: float | None = Field(default=None, ge=0, description="Estimated duration in seconds")

    def to_document(self) -> dict[str, Any]:
        return {
            "waypoints": [[w.lng, w.lat] for w in self.waypoints],
            "distance": self.distance,
            "duration": self.duration,
        }
