"""Safety alert schemas."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from app.schemas.geo import UTCDateTime


class AlertNotificationOut(BaseModel):
    parent_id: int
    notified_at: UTCDateTime
    delivered: bool
    channels: list[str]
    error: str | None
    acknowledged: bool
    acknowledged_at: UTCDateTime | None

    model_config = {"from_attributes": True}


class SafetyAlertOut(BaseModel):
    id: int
    journey_id: int
    user_id: int
    alert_type: str
    severity: str
    message: str
    location: dict[str, Any] | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("details", "metadata"))
    resolved: bool
    resolved_at: UTCDateTime | None
    resolved_by: int | None
    created_at: UTCDateTime
    notifications: list[AlertNotificationOut] = []

    model_config = {"from_attributes": True}
