"""Safety alert acknowledgement and resolution."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, require_parent
from app.db.session import get_db
from app.models.user import User
from app.schemas.alert import SafetyAlertOut
from app.services import safety_alert_service as alert_service

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.post("/{alert_id}/acknowledge", response_model=SafetyAlertOut)
def acknowledge(
    alert_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_parent),
):
    """Mark the current parent's ledger entry as acknowledged."""
    return alert_service.acknowledge_alert(db, alert_id, current_user)


@router.post("/{alert_id}/resolve", response_model=SafetyAlertOut)
def resolve(
    alert_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Resolve an alert. A new alert of the same type can then be raised."""
    return alert_service.resolve_alert(db, alert_id, current_user)
