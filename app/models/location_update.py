"""Location sample model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.db.base import Base


class LocationUpdate(Base):
    """Append-only location sample for a journey. Expires after the retention window."""

    __tablename__ = "location_updates"
    __table_args__ = (
        Index("ix_location_updates_journey_ts", "journey_id", "timestamp"),
        Index("ix_location_updates_user_ts", "user_id", "timestamp"),
        Index("ix_location_updates_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    journey_id: Mapped[int] = mapped_column(ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    location: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)  # GeoJSON point
    speed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # km/h
    heading: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # degrees
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # metres
    battery_level: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)  # percent
    is_moving: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
