"""Safety alert model and its per-parent notification ledger."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, false, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.db.base import Base


class AlertType(str, enum.Enum):
    route_deviation = "route_deviation"
    unexpected_stop = "unexpected_stop"
    high_risk_area = "high_risk_area"
    low_battery = "low_battery"
    communication_loss = "communication_loss"
    emergency = "emergency"
    speed_alert = "speed_alert"
    late_arrival = "late_arrival"
    safe_arrival = "safe_arrival"


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


_OPEN_SQL = text("resolved = false")


class SafetyAlert(Base):
    """Warning derived from a journey's location stream or lifecycle."""

    __tablename__ = "safety_alerts"
    __table_args__ = (
        # At most one unresolved alert of each type per journey
        Index(
            "uq_safety_alerts_open_type",
            "journey_id",
            "alert_type",
            unique=True,
            postgresql_where=_OPEN_SQL,
            sqlite_where=_OPEN_SQL,
        ),
        Index("ix_safety_alerts_journey_created", "journey_id", "created_at"),
        Index("ix_safety_alerts_user_type", "user_id", "alert_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    journey_id: Mapped[int] = mapped_column(ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=Severity.medium.value)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)  # GeoJSON point
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    notifications: Mapped[list["AlertNotification"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        order_by="AlertNotification.id",
    )


class AlertNotification(Base):
    """One parent's delivery and acknowledgement record for an alert."""

    __tablename__ = "alert_notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    alert_id: Mapped[int] = mapped_column(ForeignKey("safety_alerts.id", ondelete="CASCADE"), index=True, nullable=False)
    parent_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    alert: Mapped[SafetyAlert] = relationship(back_populates="notifications")
