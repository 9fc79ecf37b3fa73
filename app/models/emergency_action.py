"""Emergency action (SOS) audit record."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.db.base import Base


class EmergencyKind(str, enum.Enum):
    sos_call = "sos_call"
    voice_recording = "voice_recording"
    no_response = "no_response"


class EmergencyAction(Base):
    """Immutable record of one SOS / emergency trigger."""

    __tablename__ = "emergency_actions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    journey_id: Mapped[int | None] = mapped_column(
        ForeignKey("journeys.id", ondelete="SET NULL"), index=True, nullable=True
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # sos_call | voice_recording | no_response
    location: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)  # GeoJSON point
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    audio_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    # [{parentId, delivered, channels, error, notifiedAt}]
    notified_parents: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
