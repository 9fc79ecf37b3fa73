"""Journey API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, get_dispatcher, get_journey_locks, require_parent, require_user
from app.core.ordering import KeyedLocks
from app.db.session import get_db
from app.models.user import User
from app.schemas.alert import SafetyAlertOut
from app.schemas.emergency import EmergencyActionOut, EmergencyCreate, EmergencyResult
from app.schemas.journey import (
    ActiveJourneyOut,
    CheckpointCreate,
    JourneyCompleteRequest,
    JourneyCreate,
    JourneyHistoryOut,
    JourneyOut,
    JourneyStartRequest,
    LocationAck,
    LocationSampleIn,
    LocationSampleOut,
)
from app.services import journey_service
from app.services import safety_alert_service as alert_service
from app.services.fanout_service import AlertFanoutDispatcher

router = APIRouter(prefix="/journeys", tags=["journeys"])


@router.post("", response_model=JourneyOut, status_code=status.HTTP_201_CREATED)
def create_journey(
    data: JourneyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
):
    """Plan a journey. It starts in ``planned``."""
    return journey_service.create_journey(db, current_user, data)


# Fixed paths before /{journey_id}


@router.get("/active", response_model=list[ActiveJourneyOut])
def list_active(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_parent),
):
    """In-progress journeys shared with the current parent, with latest location and progress."""
    return [
        ActiveJourneyOut(
            journey=JourneyOut.model_validate(journey),
            latest_location=LocationSampleOut.model_validate(latest) if latest else None,
            progress=progress,
        )
        for journey, latest, progress in journey_service.active_for_parent(db, current_user)
    ]


@router.get("/history", response_model=JourneyHistoryOut)
def history(
    child_id: int | None = Query(default=None, alias="childId"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Paginated journeys, newest first. Parents pass the childId of a linked user."""
    items, total = journey_service.journey_history(db, current_user, child_id, limit, offset)
    return JourneyHistoryOut(
        items=[JourneyOut.model_validate(j) for j in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/emergency", response_model=EmergencyResult)
async def trigger_emergency(
    data: EmergencyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    """Record an SOS or emergency on a journey and alert every recipient parent."""
    async with locks.hold(data.journey_id):
        emergency, journey = await journey_service.trigger_emergency(
            db,
            dispatcher,
            current_user,
            data.action,
            data.location.to_point(),
            journey_id=data.journey_id,
            audio_url=data.audio_url,
            message=data.message,
            user_id=data.user_id,
        )
    return EmergencyResult(
        message="Emergency alert sent",
        emergency=EmergencyActionOut.model_validate(emergency),
        journey_status=journey.status if journey else None,
    )


@router.get("/{journey_id}", response_model=JourneyOut)
def get_journey(
    journey_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    journey = journey_service.get_journey(db, journey_id)
    journey_service.ensure_can_view(journey, current_user)
    return journey


@router.post("/{journey_id}/start", response_model=JourneyOut)
async def start_journey(
    journey_id: int,
    data: JourneyStartRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    """planned -> active. Rejected while the user has another journey in progress."""
    position = data.current_location.to_point() if data and data.current_location else None
    async with locks.hold(journey_id):
        return await journey_service.activate_journey(db, dispatcher, journey_id, current_user, position)


@router.post("/{journey_id}/cancel", response_model=JourneyOut)
async def cancel_journey(
    journey_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    async with locks.hold(journey_id):
        return await journey_service.cancel_journey(db, dispatcher, journey_id, current_user)


@router.post("/{journey_id}/location", response_model=LocationAck)
async def post_location(
    journey_id: int,
    data: LocationSampleIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    """Ingest a live location sample; returns progress and any alerts it raised."""
    async with locks.hold(journey_id):
        journey, progress, raised = await journey_service.record_location(
            db, dispatcher, journey_id, current_user, data
        )
    return LocationAck(
        progress=progress,
        journey_status=journey.status,
        alerts=[SafetyAlertOut.model_validate(a) for a in raised],
    )


@router.post("/{journey_id}/checkpoints", response_model=JourneyOut)
async def add_checkpoint(
    journey_id: int,
    data: CheckpointCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    async with locks.hold(journey_id):
        return await journey_service.record_checkpoint(
            db, dispatcher, journey_id, current_user, data.status, data.location.to_point()
        )


@router.post("/{journey_id}/complete", response_model=JourneyOut)
async def complete_journey(
    journey_id: int,
    data: JourneyCompleteRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    """End an in-progress journey and compute its metrics."""
    body = data or JourneyCompleteRequest()
    position = body.current_location.to_point() if body.current_location else None
    async with locks.hold(journey_id):
        return await journey_service.complete_journey(
            db, dispatcher, journey_id, current_user, body.status, position
        )


@router.get("/{journey_id}/locations", response_model=list[LocationSampleOut])
def list_locations(
    journey_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Samples of a journey, newest first."""
    journey = journey_service.get_journey(db, journey_id)
    journey_service.ensure_can_view(journey, current_user)
    return journey_service.list_locations(db, journey_id, limit)


@router.get("/{journey_id}/alerts", response_model=list[SafetyAlertOut])
def list_alerts(
    journey_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    journey = journey_service.get_journey(db, journey_id)
    journey_service.ensure_can_view(journey, current_user)
    return alert_service.list_alerts(db, journey_id)
