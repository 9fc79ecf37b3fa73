"""Journey lifecycle: the state machine, location ingestion and emergencies.

Every status change goes through ``transition`` and the table below. Database
work runs in worker threads: records touched by an operation are flushed first
(so the de-duplication and one-in-progress-journey gates see them), then fanned
out on the event loop, then committed with the delivery outcomes attached.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.core.journey_policies import MOVING_SPEED_KMH, SAFETY_SCORE_MAX, SAFETY_SCORE_PENALTY
from app.models.emergency_action import EmergencyAction, EmergencyKind
from app.models.journey import IN_PROGRESS_STATUSES, Journey, JourneyStatus
from app.models.location_update import LocationUpdate
from app.models.safety_alert import AlertType, SafetyAlert, Severity
from app.models.user import User
from app.schemas.emergency import EmergencyActionOut
from app.schemas.geo import as_utc
from app.schemas.journey import JourneyCreate, JourneyOut, LocationSampleIn
from app.services import safety_alert_service as alerts
from app.services.fanout_service import AlertFanoutDispatcher, DeliveryOutcome, FanoutEvent
from app.services.geo_service import journey_progress, path_length_km, point_lat_lng

logger = logging.getLogger(__name__)

S = JourneyStatus

ALLOWED_TRANSITIONS: dict[JourneyStatus, frozenset[JourneyStatus]] = {
    S.planned: frozenset({S.active, S.cancelled}),
    S.active: frozenset({S.completed, S.cancelled, S.emergency}),
    # Emergency flags the journey without stopping tracking
    S.emergency: frozenset({S.emergency, S.active, S.completed, S.cancelled}),
    S.completed: frozenset(),
    S.cancelled: frozenset(),
}

CHECKPOINT_SEVERITY = {
    "safe": Severity.low,
    "unsafe": Severity.high,
    "no_response": Severity.critical,
}

EMERGENCY_ACTIONS = {k.value for k in EmergencyKind}
# Actions the tracked user performs themselves; these need a journey in progress
USER_INITIATED_ACTIONS = {EmergencyKind.sos_call.value, EmergencyKind.voice_recording.value}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: JourneyStatus | str, target: JourneyStatus | str) -> bool:
    return JourneyStatus(target) in ALLOWED_TRANSITIONS[JourneyStatus(current)]


def transition(journey: Journey, target: JourneyStatus) -> None:
    """Move a journey to ``target`` or raise ConflictError."""
    current = JourneyStatus(journey.status)
    if not can_transition(current, target):
        raise ConflictError(f"Cannot move journey from {current.value} to {JourneyStatus(target).value}")
    journey.status = JourneyStatus(target).value


def _state_label(journey: Journey) -> str:
    if journey.end_time is not None:
        return f"{journey.status} (ended)"
    return journey.status


def journey_data(journey: Journey) -> dict[str, Any]:
    return JourneyOut.model_validate(journey).model_dump(mode="json")


def _append_log(journey: Journey, event_type: str, outcomes: list[DeliveryOutcome]) -> None:
    if not outcomes:
        return
    # Reassign so the JSON column is marked dirty
    journey.notification_log = [
        *(journey.notification_log or []),
        *({"event": event_type, **o.as_record()} for o in outcomes),
    ]


async def _announce(
    dispatcher: AlertFanoutDispatcher,
    journey: Journey,
    data: dict[str, Any],
    event_type: str,
    title: str,
    message: str,
    severity: Severity = Severity.low,
) -> None:
    """Fan out a journey update. ``data`` is the journey snapshot taken inside the worker thread."""
    event = FanoutEvent(
        live_event="journey:update",
        type=event_type,
        title=title,
        message=message,
        severity=severity.value,
        data={"journey": data, "journeyId": journey.id},
    )
    outcomes = await dispatcher.dispatch(event, user=journey.user, journey=journey)
    _append_log(journey, event_type, outcomes)


def _flush_guarded(db: Session) -> None:
    """Flush; a violated in-progress uniqueness index becomes a ConflictError."""
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("There is already an active journey for this user") from exc


# ---------- Lookup + access ----------


def get_journey(db: Session, journey_id: int) -> Journey:
    journey = db.get(Journey, journey_id)
    if not journey:
        raise NotFoundError("Journey not found")
    return journey


def ensure_owner(journey: Journey, user: User) -> None:
    if journey.user_id != user.id:
        raise AuthorizationError("Only the journey owner can do this")


def is_recipient(journey: Journey, user: User) -> bool:
    """Parent who receives this journey's events."""
    if not user.is_parent or journey.user_id not in {c.id for c in user.children}:
        return False
    if journey.shared_with:
        return user.id in {p.id for p in journey.shared_with}
    return True


def ensure_can_view(journey: Journey, user: User) -> None:
    if journey.user_id != user.id and not is_recipient(journey, user):
        raise AuthorizationError("Not allowed to view this journey")


def find_in_progress(db: Session, user_id: int) -> Journey | None:
    stmt = (
        select(Journey)
        .where(
            Journey.user_id == user_id,
            Journey.status.in_(IN_PROGRESS_STATUSES),
            Journey.end_time.is_(None),
        )
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


# ---------- Lifecycle ----------


def create_journey(db: Session, user: User, data: JourneyCreate) -> Journey:
    """Create a journey in ``planned``."""
    if data.start_location is None or data.destination is None:
        raise ValidationError("startLocation and destination are required")
    if data.scheduled_time is None:
        raise ValidationError("scheduledTime is required")

    shared: list[User] = []
    if data.shared_with_parents:
        linked = {p.id: p for p in user.parents}
        unknown = sorted(set(data.shared_with_parents) - set(linked))
        if unknown:
            raise ValidationError(f"Not linked parents: {unknown}")
        shared = [linked[pid] for pid in dict.fromkeys(data.shared_with_parents)]

    journey = Journey(
        user_id=user.id,
        start_location=data.start_location.to_point(),
        start_address=data.start_location.address,
        destination=data.destination.to_point(),
        destination_address=data.destination.address,
        planned_route=data.planned_route.to_document() if data.planned_route else None,
        transport_mode=data.transport_mode,
        scheduled_time=as_utc(data.scheduled_time),
        status=S.planned.value,
        progress=0.0,
        metrics={},
        checkpoints=[],
        notification_log=[],
    )
    journey.shared_with = shared
    db.add(journey)
    db.commit()
    db.refresh(journey)
    logger.info("journey_created journey_id=%s user_id=%s", journey.id, user.id)
    return journey


def _new_sample(
    journey: Journey,
    point: dict[str, Any],
    *,
    speed: float = 0.0,
    heading: float = 0.0,
    accuracy: float = 0.0,
    battery_level: float = 100.0,
    address: str | None = None,
    timestamp: datetime | None = None,
) -> LocationUpdate:
    ts = as_utc(timestamp) if timestamp else _now()
    return LocationUpdate(
        journey_id=journey.id,
        user_id=journey.user_id,
        location=point,
        speed=speed,
        heading=heading,
        accuracy=accuracy,
        battery_level=battery_level,
        is_moving=speed > MOVING_SPEED_KMH,
        address=address,
        timestamp=ts,
        expires_at=_now() + timedelta(days=settings.location_ttl_days),
    )


def _touch_location(journey: Journey, point: dict[str, Any], at: datetime) -> None:
    journey.last_known_location = point
    journey.last_known_at = at
    journey.user.last_location = point
    journey.user.last_location_at = at


def _finish(db: Session, journey: Journey | None, *records: Any) -> None:
    """Commit and reload what the response serializes."""
    db.commit()
    for record in records:
        db.refresh(record)
        if isinstance(record, SafetyAlert):
            db.refresh(record, ["notifications"])
    if journey is not None:
        db.refresh(journey)
        db.refresh(journey, ["shared_with"])


def _start(db: Session, journey_id: int, user: User, position: dict[str, Any] | None) -> tuple[Journey, dict]:
    journey = get_journey(db, journey_id)
    ensure_owner(journey, user)
    if journey.status != S.planned.value:
        raise ConflictError(f"Journey is {journey.status}; only a planned journey can be started")
    existing = find_in_progress(db, user.id)
    if existing is not None:
        raise ConflictError("There is already an active journey for this user")

    transition(journey, S.active)
    now = _now()
    journey.start_time = now
    if position is not None:
        journey.start_location = position
        _touch_location(journey, position, now)
        journey.progress = journey_progress(journey, position)
    _flush_guarded(db)

    if position is not None:
        db.add(_new_sample(journey, position, timestamp=now))
        db.flush()
    return journey, journey_data(journey)


async def activate_journey(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey_id: int,
    user: User,
    position: dict[str, Any] | None = None,
) -> Journey:
    """planned -> active. Enforces one in-progress journey per user."""
    journey, data = await asyncio.to_thread(_start, db, journey_id, user, position)
    await _announce(
        dispatcher,
        journey,
        data,
        "journey_started",
        "Journey started",
        f"{user.full_name} started a journey"
        + (f" to {journey.destination_address}" if journey.destination_address else "")
        + ".",
    )
    await asyncio.to_thread(_finish, db, journey)
    logger.info("journey_started journey_id=%s user_id=%s", journey.id, user.id)
    return journey


def _cancel(db: Session, journey_id: int, user: User) -> tuple[Journey, dict]:
    journey = get_journey(db, journey_id)
    ensure_owner(journey, user)
    if journey.status != S.planned.value:
        raise ConflictError("Only a planned journey can be cancelled here; end an active journey instead")
    transition(journey, S.cancelled)
    journey.end_time = _now()
    db.flush()
    return journey, journey_data(journey)


async def cancel_journey(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey_id: int,
    user: User,
) -> Journey:
    """Cancel a journey that never started."""
    journey, data = await asyncio.to_thread(_cancel, db, journey_id, user)
    await _announce(dispatcher, journey, data, "journey_cancelled", "Journey cancelled", "A planned journey was cancelled.")
    await asyncio.to_thread(_finish, db, journey)
    return journey


def _ingest(db: Session, journey_id: int, user: User, data: LocationSampleIn):
    journey = get_journey(db, journey_id)
    ensure_owner(journey, user)
    if not journey.in_progress:
        raise ConflictError(f"Journey is {_state_label(journey)}; location updates need an active journey")

    point = data.to_point()
    sample = _new_sample(
        journey,
        point,
        speed=data.speed,
        heading=data.heading,
        accuracy=data.accuracy,
        battery_level=data.battery_level,
        address=data.address,
        timestamp=data.timestamp,
    )
    db.add(sample)
    progress = journey_progress(journey, point)
    journey.progress = progress
    _touch_location(journey, point, sample.timestamp)
    db.flush()

    history = alerts.recent_history(db, journey.id, sample.timestamp)
    drafts = alerts.evaluate(journey, sample, history, alerts.open_alert_types(db, journey.id))
    return journey, sample, point, progress, drafts, journey_data(journey)


async def record_location(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey_id: int,
    user: User,
    data: LocationSampleIn,
) -> tuple[Journey, float, list[SafetyAlert]]:
    """Ingest one sample: store it, update progress, evaluate and fan out alerts.

    Callers serialize this per journey so alerts follow submission order.
    """
    journey, sample, point, progress, drafts, snapshot = await asyncio.to_thread(_ingest, db, journey_id, user, data)

    lat, lng = point_lat_lng(point)
    await dispatcher.broadcast(
        "location:update",
        {
            "userId": user.id,
            "journeyId": journey.id,
            "lat": lat,
            "lng": lng,
            "speed": sample.speed,
            "heading": sample.heading,
            "accuracy": sample.accuracy,
            "batteryLevel": sample.battery_level,
            "isMoving": sample.is_moving,
            "address": sample.address,
            "progress": progress,
            "timestamp": sample.timestamp.isoformat(),
        },
        user_id=user.id,
        journey_id=journey.id,
    )

    raised = await alerts.raise_alerts(db, dispatcher, journey, drafts, point, snapshot)
    await asyncio.to_thread(_finish, db, journey, *raised)
    return journey, progress, raised


def _checkpoint(
    db: Session,
    journey_id: int,
    actor: User,
    status: str,
    location: dict[str, Any],
) -> tuple[Journey, dict, str]:
    if status not in CHECKPOINT_SEVERITY:
        raise ValidationError("status must be one of safe, unsafe, no_response")
    journey = get_journey(db, journey_id)
    if status == "no_response":
        ensure_can_view(journey, actor)
    else:
        ensure_owner(journey, actor)
    if not journey.in_progress:
        raise ConflictError(f"Journey is {_state_label(journey)}; checkpoints need an active journey")

    now = _now()
    journey.checkpoints = [
        *(journey.checkpoints or []),
        {"timestamp": now.isoformat(), "status": status, "location": location, "recordedBy": actor.id},
    ]
    if status == "safe":
        if journey.status == S.emergency.value:
            transition(journey, S.active)
    else:
        transition(journey, S.emergency)
    if actor.id == journey.user_id:
        _touch_location(journey, location, now)
    db.flush()
    return journey, journey_data(journey), journey.user.full_name


async def record_checkpoint(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey_id: int,
    actor: User,
    status: str,
    location: dict[str, Any],
) -> Journey:
    """Append a checkpoint; unsafe / no_response flag the journey as an emergency."""
    journey, data, owner_name = await asyncio.to_thread(_checkpoint, db, journey_id, actor, status, location)

    severity = CHECKPOINT_SEVERITY[status]
    label = status.replace("_", " ")
    await _announce(
        dispatcher,
        journey,
        data,
        "checkpoint",
        "Journey check-in" if status == "safe" else "Journey safety warning",
        f"{owner_name} checked in: {label}.",
        severity,
    )
    if status != "safe":
        draft = alerts.AlertDraft(
            AlertType.emergency,
            severity,
            f"Checkpoint reported {label}.",
            {"checkpointStatus": status},
        )
        await alerts.raise_alerts(db, dispatcher, journey, [draft], location, data)

    await asyncio.to_thread(_finish, db, journey)
    return journey


def compute_metrics(db: Session, journey: Journey) -> dict[str, Any]:
    """Speed stats, distance, alert count and safety score from the stored samples."""
    samples = list(
        db.execute(
            select(LocationUpdate)
            .where(LocationUpdate.journey_id == journey.id)
            .order_by(LocationUpdate.timestamp.asc(), LocationUpdate.id.asc())
        ).scalars()
    )
    speeds = [s.speed for s in samples]
    alert_count = alerts.count_alerts(db, journey.id)
    return {
        "avgSpeed": round(sum(speeds) / len(speeds), 2) if speeds else 0.0,
        "maxSpeed": round(max(speeds), 2) if speeds else 0.0,
        "distanceTravelled": round(path_length_km(s.location for s in samples), 3),
        "sampleCount": len(samples),
        "alertCount": alert_count,
        "safetyScore": max(0, SAFETY_SCORE_MAX - SAFETY_SCORE_PENALTY * alert_count),
    }


def _end(
    db: Session,
    journey_id: int,
    user: User,
    final_status: str,
    position: dict[str, Any] | None,
) -> tuple[Journey, dict]:
    if final_status not in (S.completed.value, S.cancelled.value, S.emergency.value):
        raise ValidationError("status must be one of completed, cancelled, emergency")
    journey = get_journey(db, journey_id)
    ensure_owner(journey, user)
    if not journey.in_progress:
        raise ConflictError(f"Journey is {_state_label(journey)}; only an active journey can be completed")

    transition(journey, S(final_status))
    start = as_utc(journey.start_time) if journey.start_time else _now()
    end = max(_now(), start)
    journey.start_time = start
    # Setting end_time takes the journey out of the in-progress set, even when it ends flagged
    journey.end_time = end
    journey.actual_duration = int((end - start).total_seconds())

    if position is not None:
        db.add(_new_sample(journey, position, timestamp=end))
        _touch_location(journey, position, end)
    if final_status == S.completed.value:
        journey.progress = 1.0
    db.flush()
    journey.metrics = compute_metrics(db, journey)
    db.flush()
    return journey, journey_data(journey)


async def complete_journey(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    journey_id: int,
    user: User,
    final_status: str = "completed",
    position: dict[str, Any] | None = None,
) -> Journey:
    """End an in-progress journey, compute metrics, and announce it.

    A normal completion also raises a ``safe_arrival`` alert.
    """
    journey, data = await asyncio.to_thread(_end, db, journey_id, user, final_status, position)

    if final_status == S.completed.value:
        draft = alerts.AlertDraft(
            AlertType.safe_arrival,
            Severity.low,
            f"{user.full_name} arrived safely"
            + (f" at {journey.destination_address}" if journey.destination_address else "")
            + ".",
            {"actualArrival": journey.end_time.isoformat()},
        )
        await alerts.raise_alerts(db, dispatcher, journey, [draft], position or journey.destination, data)

    minutes = journey.actual_duration // 60
    await _announce(
        dispatcher,
        journey,
        data,
        f"journey_{final_status}",
        "Journey ended",
        f"Journey ended ({final_status}) after {minutes} min, "
        f"{journey.metrics['distanceTravelled']:.2f} km travelled.",
        Severity.high if final_status == S.emergency.value else Severity.low,
    )
    await asyncio.to_thread(_finish, db, journey)
    logger.info("journey_ended journey_id=%s status=%s duration=%ss", journey.id, final_status, journey.actual_duration)
    return journey


def _record_emergency(
    db: Session,
    actor: User,
    action: str,
    location: dict[str, Any],
    journey_id: int | None,
    audio_url: str | None,
    message: str | None,
    user_id: int | None,
):
    if action not in EMERGENCY_ACTIONS:
        raise ValidationError("Invalid action value")

    journey: Journey | None = None
    owner = actor
    if journey_id is not None:
        journey = get_journey(db, journey_id)
        if user_id is not None and journey.user_id != user_id:
            raise ValidationError("Journey does not belong to this user")
        if action in USER_INITIATED_ACTIONS:
            ensure_owner(journey, actor)
            if not journey.in_progress:
                raise ConflictError("Active journey not found")
        else:
            ensure_can_view(journey, actor)
        owner = journey.user
    elif action not in USER_INITIATED_ACTIONS:
        raise ValidationError("no_response needs a journey")

    now = _now()
    label = action.replace("_", " ")
    lat, lng = point_lat_lng(location)
    text = message or f"Emergency {label} triggered at ({lat:.5f}, {lng:.5f})"
    emergency = EmergencyAction(
        user_id=owner.id,
        journey_id=journey.id if journey else None,
        action=action,
        location=location,
        message=text,
        audio_url=audio_url or "",
        notified_parents=[],
        created_at=now,
    )
    db.add(emergency)
    if actor.id == owner.id:
        owner.last_location = location
        owner.last_location_at = now

    flagged: SafetyAlert | None = None
    if journey is not None:
        if journey.in_progress and can_transition(journey.status, S.emergency):
            transition(journey, S.emergency)
        else:
            logger.warning("emergency_on_%s_journey journey_id=%s action=%s", _state_label(journey), journey.id, action)
        if actor.id == owner.id:
            journey.last_known_location = location
            journey.last_known_at = now
        flagged = alerts.persist_alert(
            db,
            journey,
            alerts.AlertDraft(AlertType.emergency, Severity.critical, text, {"action": action}),
            location,
        )
    db.flush()

    event = FanoutEvent(
        live_event="sos:alert",
        type=action,
        title="Emergency Alert",
        message=f"{owner.full_name}: {text}. Location: https://www.google.com/maps?q={lat},{lng}",
        severity=Severity.critical.value,
        call=action == EmergencyKind.sos_call.value,
        data={
            "emergency": EmergencyActionOut.model_validate(emergency).model_dump(mode="json"),
            "journey": journey_data(journey) if journey else None,
            "userId": owner.id,
            "journeyId": journey.id if journey else None,
            "emergencyId": emergency.id,
            "lat": lat,
            "lng": lng,
            "audioUrl": emergency.audio_url,
        },
    )
    return emergency, journey, owner, flagged, event


def _record_emergency_outcomes(
    db: Session,
    emergency: EmergencyAction,
    journey: Journey | None,
    flagged: SafetyAlert | None,
    outcomes: list[DeliveryOutcome],
) -> None:
    emergency.notified_parents = [o.as_record() for o in outcomes]
    if flagged is not None:
        alerts.record_outcomes(flagged, outcomes)
    if journey is not None:
        _append_log(journey, f"emergency_{emergency.action}", outcomes)
    _finish(db, journey, emergency)


async def trigger_emergency(
    db: Session,
    dispatcher: AlertFanoutDispatcher,
    actor: User,
    action: str,
    location: dict[str, Any],
    journey_id: int | None = None,
    audio_url: str | None = None,
    message: str | None = None,
    user_id: int | None = None,
) -> tuple[EmergencyAction, Journey | None]:
    """Record an SOS / emergency and fan it out. Never de-duplicated."""
    emergency, journey, owner, flagged, event = await asyncio.to_thread(
        _record_emergency, db, actor, action, location, journey_id, audio_url, message, user_id
    )
    outcomes = await dispatcher.dispatch(event, user=owner, journey=journey)
    await asyncio.to_thread(_record_emergency_outcomes, db, emergency, journey, flagged, outcomes)
    logger.info(
        "emergency_recorded emergency_id=%s user_id=%s journey_id=%s action=%s notified=%s",
        emergency.id,
        owner.id,
        emergency.journey_id,
        action,
        sum(1 for o in outcomes if o.delivered),
    )
    return emergency, journey


# ---------- Reads ----------


def latest_sample(db: Session, journey_id: int) -> LocationUpdate | None:
    stmt = (
        select(LocationUpdate)
        .where(LocationUpdate.journey_id == journey_id)
        .order_by(LocationUpdate.timestamp.desc(), LocationUpdate.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def list_locations(db: Session, journey_id: int, limit: int = 100) -> list[LocationUpdate]:
    stmt = (
        select(LocationUpdate)
        .where(LocationUpdate.journey_id == journey_id)
        .order_by(LocationUpdate.timestamp.desc(), LocationUpdate.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def active_for_parent(db: Session, parent: User) -> list[tuple[Journey, LocationUpdate | None, float]]:
    """In-progress journeys whose events reach this parent, with latest sample and progress."""
    child_ids = [c.id for c in parent.children]
    if not child_ids:
        return []
    stmt = (
        select(Journey)
        .where(
            Journey.user_id.in_(child_ids),
            Journey.status.in_(IN_PROGRESS_STATUSES),
            Journey.end_time.is_(None),
        )
        .order_by(Journey.start_time.desc(), Journey.id.desc())
    )
    out: list[tuple[Journey, LocationUpdate | None, float]] = []
    for journey in db.execute(stmt).scalars().all():
        if not is_recipient(journey, parent):
            continue
        latest = latest_sample(db, journey.id)
        progress = journey_progress(journey, latest.location) if latest else journey.progress
        out.append((journey, latest, progress))
    return out


def journey_history(
    db: Session,
    actor: User,
    child_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Journey], int]:
    """Journeys of the actor, or of a linked child when the actor is a parent."""
    if actor.is_parent:
        if child_id is None:
            raise ValidationError("childId is required")
        if child_id not in {c.id for c in actor.children}:
            raise AuthorizationError("Not linked to this user")
        owner_id = child_id
    else:
        if child_id is not None and child_id != actor.id:
            raise AuthorizationError("Users can only read their own history")
        owner_id = actor.id

    total = int(db.execute(select(func.count()).select_from(Journey).where(Journey.user_id == owner_id)).scalar_one())
    stmt = (
        select(Journey)
        .where(Journey.user_id == owner_id)
        .order_by(Journey.created_at.desc(), Journey.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars().all()), total


def emergency_history(db: Session, actor: User, user_id: int | None = None, limit: int = 100) -> list[EmergencyAction]:
    owner_id = user_id or actor.id
    if owner_id != actor.id and owner_id not in {c.id for c in actor.children}:
        raise AuthorizationError("Not linked to this user")
    stmt = (
        select(EmergencyAction)
        .where(EmergencyAction.user_id == owner_id)
        .order_by(EmergencyAction.created_at.desc(), EmergencyAction.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def purge_expired_locations(db: Session, now: datetime | None = None) -> int:
    """Delete samples past their retention window."""
    cutoff = now or _now()
    result = db.execute(delete(LocationUpdate).where(LocationUpdate.expires_at < cutoff))
    db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info("location_purge deleted=%s", deleted)
    return deleted
