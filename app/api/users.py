"""Device tokens and standalone location pings."""

import asyncio

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, get_dispatcher, require_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import DeviceTokenRequest, LastLocationOut, UserMe
from app.schemas.journey import LocationSampleIn
from app.services import link_service
from app.services.fanout_service import AlertFanoutDispatcher

router = APIRouter(tags=["users"])


@router.post("/users/me/device-tokens", response_model=UserMe)
def add_device_token(
    data: DeviceTokenRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Register a push notification target for this account."""
    return link_service.add_device_token(db, current_user, data.token)


@router.delete("/users/me/device-tokens/{token}", response_model=UserMe)
def remove_device_token(
    token: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return link_service.remove_device_token(db, current_user, token)


@router.post("/location", response_model=LastLocationOut)
async def ping_location(
    data: LocationSampleIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
):
    """Update the last known location outside a journey and tell watching parents."""
    user = await asyncio.to_thread(
        link_service.update_last_location, db, current_user, data.to_point(), data.timestamp
    )
    await dispatcher.broadcast(
        "location:update",
        {
            "userId": user.id,
            "journeyId": None,
            "lat": data.lat,
            "lng": data.lng,
            "speed": data.speed,
            "accuracy": data.accuracy,
            "batteryLevel": data.battery_level,
            "timestamp": user.last_location_at.isoformat(),
        },
        user_id=user.id,
    )
    return LastLocationOut(user_id=user.id, location=user.last_location, updated_at=user.last_location_at)


@router.get("/users/{user_id}/location", response_model=LastLocationOut)
def get_last_location(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Last known location of yourself or a linked user."""
    user = link_service.last_location(db, current_user, user_id)
    return LastLocationOut(user_id=user.id, location=user.last_location, updated_at=user.last_location_at)
