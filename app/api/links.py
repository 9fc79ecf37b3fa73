"""User <-> parent linking API."""

import asyncio

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, get_session_registry, require_parent, require_user
from app.core.session_registry import ChannelKind, SessionRegistry, channel_name
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import CounterpartOut, LinkingCodeOut, RedeemCodeRequest
from app.services import link_service

router = APIRouter(prefix="/links", tags=["links"])


@router.post("/code", response_model=LinkingCodeOut)
def create_code(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
):
    """Generate a single-use linking code for a parent to redeem."""
    user = link_service.issue_linking_code(db, current_user)
    return LinkingCodeOut(code=user.linking_code, expires_at=user.linking_code_expires_at)


@router.post("/redeem", response_model=CounterpartOut)
def redeem_code(
    data: RedeemCodeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_parent),
):
    """Parent redeems a code and becomes linked to the user who issued it."""
    return link_service.redeem_linking_code(db, current_user, data.code)


@router.get("", response_model=list[CounterpartOut])
def list_links(current_user: User = Depends(get_current_user)):
    """Linked parents (for a user) or linked users (for a parent)."""
    return current_user.counterparts()


@router.delete("/{counterpart_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_link(
    counterpart_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    parent, child, journey_ids = await asyncio.to_thread(link_service.unlink, db, current_user, counterpart_id)
    registry.revoke(
        parent.id,
        [channel_name(ChannelKind.WATCHERS, child.id)]
        + [channel_name(ChannelKind.JOURNEY, jid) for jid in journey_ids],
    )
