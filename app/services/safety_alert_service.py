"""Safety alert evaluation, de-duplication and alert lifecycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import AuthorizationError, ConflictError, NotFoundError
from app.core.journey_policies import (
    CRITICAL_BATTERY_PERCENT,
    DEFAULT_SPEED_LIMIT_KMH,
    LOW_BATTERY_PERCENT,
    ROUTE_DEVIATION_M,
    SPEED_LIMITS_KMH,
    STOP_MIN_SAMPLES,
    STOP_WINDOW_SECONDS,
)
from app.models.journey import Journey
from app.models.location_update import LocationUpdate
from app.models.safety_alert import AlertNotification, AlertType, SafetyAlert, Severity
from app.models.user import User
from app.schemas.alert import SafetyAlertOut
from app.services.fanout_service import AlertFanoutDispatcher, DeliveryOutcome, FanoutEvent
from app.services.geo_service import nearest_waypoint_m

logger = logging.getLogger(__name__)


@dataclass
class AlertDraft:
    """An alert the evaluator wants raised, before it passes the de-duplication gate."""

    alert_type: AlertType
    severity: Severity
    message: str
    details: dict[str, Any] = field(default_factory=dict)


def open_alert(db: Session, journey_id: int, alert_type: AlertType | str) -> SafetyAlert | None:
    """The unresolved alert of this type for the journey, if any."""
    kind = AlertType(alert_type).value
    stmt = (
        select(SafetyAlert)
        .where(
            SafetyAlert.journey_id == journey_id,
            SafetyAlert.alert_type == kind,
            SafetyAlert.resolved.is_(False),
        )
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def open_alert_types(db: Session, journey_id: int) -> set[str]:
    stmt = select(SafetyAlert.alert_type).where(
        SafetyAlert.journey_id == journey_id,
        SafetyAlert.resolved.is_(False),
    )
    return set(db.execute(stmt).scalars().all())


def recent_history(db: Session, journey_id: int, until: datetime) -> list[LocationUpdate]:
    """Samples of a journey inside the trailing stop window ending at ``until``."""
    since = until - timedelta(seconds=STOP_WINDOW_SECONDS)
    stmt = (
        select(LocationUpdate)
        .where(
            LocationUpdate.journey_id == journey_id,
            LocationUpdate.timestamp >= since,
            LocationUpdate.timestamp <= until,
        )
        .order_by(LocationUpdate.timestamp.asc(), LocationUpdate.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def evaluate(
    journey: Journey,
    sample: LocationUpdate,
    history: Sequence[LocationUpdate],
    open_types: set[str] | None = None,
) -> list[AlertDraft]:
    """Alerts a new sample should raise.

    ``history`` is the trailing window of samples and includes ``sample``.
    Types already open on the journey are skipped.
    """
    skip = open_types or set()
    drafts: list[AlertDraft] = []

    battery = sample.battery_level
    if battery is not None and battery < LOW_BATTERY_PERCENT and AlertType.low_battery.value not in skip:
        severity = Severity.high if battery < CRITICAL_BATTERY_PERCENT else Severity.medium
        drafts.append(
            AlertDraft(
                AlertType.low_battery,
                severity,
                f"Battery is low ({battery:.0f}%). The device may stop sharing its location soon.",
                {"batteryLevel": battery},
            )
        )

    if not sample.is_moving and AlertType.unexpected_stop.value not in skip:
        if len(history) >= STOP_MIN_SAMPLES and all(not h.is_moving for h in history):
            drafts.append(
                AlertDraft(
                    AlertType.unexpected_stop,
                    Severity.medium,
                    "No movement detected for the last 10 minutes.",
                    {"stopDuration": STOP_WINDOW_SECONDS},
                )
            )

    limit = SPEED_LIMITS_KMH.get(journey.transport_mode, DEFAULT_SPEED_LIMIT_KMH)
    if sample.speed > limit and AlertType.speed_alert.value not in skip:
        drafts.append(
            AlertDraft(
                AlertType.speed_alert,
                Severity.high,
                f"Travelling at {sample.speed:.0f} km/h, above the {limit:.0f} km/h expected for {journey.transport_mode}.",
                {"speed": sample.speed},
            )
        )

    waypoints = (journey.planned_route or {}).get("waypoints") or []
    if waypoints and AlertType.route_deviation.value not in skip:
        off_route = nearest_waypoint_m(sample.location, waypoints)
        if off_route is not None and off_route > ROUTE_DEVIATION_M:
            drafts.append(
                AlertDraft(
                    AlertType.route_deviation,
                    Severity.medium,
                    f"About {off_route:.0f} m away from the planned route.",
                    {"deviationDistance": round(off_route, 1)},
                )
            )

    return drafts


def persist_alert(
    db: Session,
    journey: Journey,
    draft: AlertDraft,
    location: dict[str, Any] | None,
) -> SafetyAlert | None:
    """Insert an alert unless one of its type is still open. Flushes, does not commit."""
    if open_alert(db, journey.id, draft.alert_type) is not None:
        logger.debug("alert_deduplicated journey_id=%s type=%s", journey.id, draft.alert_type.value)
        return None
    alert = SafetyAlert(
        journey_id=journey.id,
        user_id=journey.user_id,
        alert_type=draft.alert_type.value,
        severity=draft.severity.value,
        message=draft.message,
        location=location,
        details=draft.details,
        resolved=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(alert)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"An unresolved {draft.alert_type.value} alert already exists for this journey") from exc
    return alert


def record_outcomes(alert: SafetyAlert, outcomes: Sequence[DeliveryOutcome]) -> None:
    """Append delivery outcomes to the alert's parent ledger."""
    for o in outcomes:
        alert.notifications.append(
            AlertNotification(
                parent_id=o.parent_id,
                notified_at=o.notified_at,
                delivered=o.delivered,
                channels=list(o.channels),
                error=o.error,
            )
        )


def alert_event(alert: SafetyAlert, journey_data: dict[str, Any]) -> FanoutEvent:
    data = SafetyAlertOut.model_validate(alert).model_dump(mode="json")
    return FanoutEvent(
        live_event="safety:alert",
        type=alert.alert_type,
        title=f"Safety alert: {alert.alert_type.replace('_', ' ')}",
        message=alert.message,
        severity=alert.severity,
        data={"alert": data, "journey": journey_data, "journeyId": alert.journey_id, "alertId": alert.id},
    )


def _persist_with_event(
    db: Session,
    journey: Journey,
    draft: AlertDraft,
    location: dict[str, Any] | None,
    journey_data: dict[str, Any],
) -> tuple[SafetyAlert | None, FanoutEvent | None]:
    alert = persist_alert(db, journey, draft, location)
    if alert is None:
        return None, None
    return alert, alert_event(alert, journey_data)


async def raise_alerts(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey: Journey,
    drafts: Sequence[AlertDraft],
    location: dict[str, Any] | None,
    journey_data: dict[str, Any],
) -> list[SafetyAlert]:
    """Persist each draft that passes the gate, fan it out, and record the ledger."""
    raised: list[SafetyAlert] = []
    for draft in drafts:
        alert, event = await asyncio.to_thread(_persist_with_event, db, journey, draft, location, journey_data)
        if alert is None:
            continue
        outcomes = await dispatcher.dispatch(event, user=journey.user, journey=journey)
        await asyncio.to_thread(record_outcomes, alert, outcomes)
        raised.append(alert)
    return raised


def count_alerts(db: Session, journey_id: int) -> int:
    stmt = select(func.count()).select_from(SafetyAlert).where(SafetyAlert.journey_id == journey_id)
    return int(db.execute(stmt).scalar_one())


def list_alerts(db: Session, journey_id: int) -> list[SafetyAlert]:
    stmt = (
        select(SafetyAlert)
        .where(SafetyAlert.journey_id == journey_id)
        .order_by(SafetyAlert.created_at.desc(), SafetyAlert.id.desc())
    )
    return list(db.execute(stmt).scalars().all())


def _get_alert(db: Session, alert_id: int) -> SafetyAlert:
    alert = db.get(SafetyAlert, alert_id)
    if not alert:
        raise NotFoundError("Alert not found")
    return alert


def resolve_alert(db: Session, alert_id: int, actor: User) -> SafetyAlert:
    """Owner or a linked parent resolves an alert, reopening the gate for its type."""
    alert = _get_alert(db, alert_id)
    linked = {p.id for p in actor.children} if actor.is_parent else set()
    if alert.user_id != actor.id and alert.user_id not in linked:
        raise AuthorizationError("Not allowed to resolve this alert")
    if alert.resolved:
        raise ConflictError("Alert is already resolved")
    alert.resolved = True
    alert.resolved_at = datetime.now(timezone.utc)
    alert.resolved_by = actor.id
    db.commit()
    db.refresh(alert)
    logger.info("alert_resolved alert_id=%s by=%s", alert.id, actor.id)
    return alert


def acknowledge_alert(db: Session, alert_id: int, parent: User) -> SafetyAlert:
    """A notified parent acknowledges an alert. Idempotent."""
    alert = _get_alert(db, alert_id)
    entries = [n for n in alert.notifications if n.parent_id == parent.id]
    if not entries:
        raise AuthorizationError("You were not notified about this alert")
    now = datetime.now(timezone.utc)
    for entry in entries:
        if not entry.acknowledged:
            entry.acknowledged = True
            entry.acknowledged_at = now
    db.commit()
    db.refresh(alert)
    return alert

