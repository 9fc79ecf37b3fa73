"""SQLAlchemy models."""

from __future__ import annotations

from app.models.emergency_action import EmergencyAction
from app.models.journey import Journey
from app.models.location_update import LocationUpdate
from app.models.safety_alert import AlertNotification, SafetyAlert
from app.models.user import User

__all__ = [
    "User",
    "Journey",
    "LocationUpdate",
    "SafetyAlert",
    "AlertNotification",
    "EmergencyAction",
]
