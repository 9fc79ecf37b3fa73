"""Emergency / SOS schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.geo import LocationIn, UTCDateTime


class EmergencyCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: int | None = None
    journey_id: int
    action: str = Field(..., description="sos_call | voice_recording | no_response")
    location: LocationIn
    audio_url: str | None = Field(default=None, max_length=1024)
    message: str | None = Field(default=None, max_length=500)


class SosCreate(BaseModel):
    """SOS raised outside of a journey."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    location: LocationIn
    message: str | None = Field(default=None, max_length=500)
    audio_url: str | None = Field(default=None, max_length=1024)
    action: Literal["sos_call", "voice_recording"] = "sos_call"


class EmergencyActionOut(BaseModel):
    id: int
    user_id: int
    journey_id: int | None
    action: str
    location: dict[str, Any]
    message: str
    audio_url: str
    notified_parents: list[dict[str, Any]]
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class EmergencyResult(BaseModel):
    message: str
    emergency: EmergencyActionOut
    journey_status: str | None = None
