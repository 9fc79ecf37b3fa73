"""Journey model."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Table, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.db.base import Base
from app.models.user import User


class JourneyStatus(str, enum.Enum):
    planned = "planned"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
    emergency = "emergency"


# Statuses that count as "the user's current journey" until end_time is set
IN_PROGRESS_STATUSES = (JourneyStatus.active.value, JourneyStatus.emergency.value)

_IN_PROGRESS_SQL = text("status IN ('active', 'emergency') AND end_time IS NULL")

journey_shares = Table(
    "journey_shares",
    Base.metadata,
    Column("journey_id", Integer, ForeignKey("journeys.id", ondelete="CASCADE"), primary_key=True),
    Column("parent_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Journey(Base):
    """A tracked trip owned by one user."""

    __tablename__ = "journeys"
    __table_args__ = (
        # At most one in-progress journey per user
        Index(
            "uq_journeys_user_in_progress",
            "user_id",
            unique=True,
            postgresql_where=_IN_PROGRESS_SQL,
            sqlite_where=_IN_PROGRESS_SQL,
        ),
        Index("ix_journeys_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # GeoJSON points
    start_location: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    destination: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    start_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # {"waypoints": [[lng, lat], ...], "distance": metres, "duration": seconds}
    planned_route: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    transport_mode: Mapped[str] = mapped_column(String(30), nullable=False, default="walking")
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JourneyStatus.planned.value
    )  # planned | active | completed | cancelled | emergency
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds

    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_known_location: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_known_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # avgSpeed, maxSpeed, alertCount, safetyScore, distanceTravelled
    metrics: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # [{timestamp, status, location}]
    checkpoints: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    # Delivery audit trail for journey-level events
    notification_log: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    user: Mapped[User] = relationship(User, foreign_keys=[user_id])
    shared_with: Mapped[list[User]] = relationship(User, secondary=journey_shares)

    @property
    def shared_with_ids(self) -> list[int]:
        return sorted(p.id for p in self.shared_with)

    @property
    def in_progress(self) -> bool:
        """Active or flagged, and not yet ended."""
        return self.status in IN_PROGRESS_STATUSES and self.end_time is None
