"""SOS outside of a journey."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, get_dispatcher, require_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.emergency import EmergencyActionOut, EmergencyResult, SosCreate
from app.services import journey_service
from app.services.fanout_service import AlertFanoutDispatcher

router = APIRouter(prefix="/sos", tags=["sos"])


@router.post("", response_model=EmergencyResult)
async def send_sos(
    data: SosCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
):
    """Alert every linked parent. Never de-duplicated."""
    emergency, _ = await journey_service.trigger_emergency(
        db,
        dispatcher,
        current_user,
        data.action,
        data.location.to_point(),
        audio_url=data.audio_url,
        message=data.message,
    )
    return EmergencyResult(message="SOS sent", emergency=EmergencyActionOut.model_validate(emergency))


@router.get("/history", response_model=list[EmergencyActionOut])
def sos_history(
    user_id: int | None = Query(default=None, alias="userId"),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """SOS and emergency records of yourself or a linked user, newest first."""
    return journey_service.emergency_history(db, current_user, user_id, limit)
