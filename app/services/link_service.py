"""User <-> parent linking, device tokens and standalone location."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.core.security import generate_linking_code
from app.models.journey import Journey, journey_shares
from app.models.user import User
from app.schemas.geo import as_utc

logger = logging.getLogger(__name__)


def issue_linking_code(db: Session, user: User) -> User:
    """Give a tracked user a fresh single-use code. Replaces any earlier one."""
    if user.is_parent:
        raise ValidationError("Only users can generate linking codes")
    user.linking_code = generate_linking_code()
    user.linking_code_expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.linking_code_ttl_minutes)
    db.commit()
    db.refresh(user)
    return user


def redeem_linking_code(db: Session, parent: User, code: str) -> User:
    """Parent redeems a code; the relation is written once and read from both sides."""
    if not parent.is_parent:
        raise AuthorizationError("Only parents can redeem linking codes")
    child = db.execute(select(User).where(User.linking_code == code.strip())).scalar_one_or_none()
    if not child:
        raise NotFoundError("Invalid linking code")
    expires = child.linking_code_expires_at
    if expires is None or as_utc(expires) < datetime.now(timezone.utc):
        child.linking_code = None
        child.linking_code_expires_at = None
        db.commit()
        raise ValidationError("Linking code has expired")
    if parent in child.parents:
        raise ConflictError("Already linked to this user")

    child.parents.append(parent)
    child.linking_code = None
    child.linking_code_expires_at = None
    db.commit()
    db.refresh(child)
    logger.info("link_created user_id=%s parent_id=%s", child.id, parent.id)
    return child


def unlink(db: Session, actor: User, counterpart_id: int) -> tuple[User, User, list[int]]:
    """Remove the relation on both sides and the parent's shares of the child's journeys.

    Returns ``(parent, child, journey_ids)`` so callers can drop live subscriptions.
    """
    counterpart = next((u for u in actor.counterparts() if u.id == counterpart_id), None)
    if counterpart is None:
        raise NotFoundError("Not linked to this account")
    parent, child = (actor, counterpart) if actor.is_parent else (counterpart, actor)
    child.parents.remove(parent)

    journey_ids = list(db.execute(select(Journey.id).where(Journey.user_id == child.id)).scalars())
    if journey_ids:
        db.execute(
            delete(journey_shares).where(
                journey_shares.c.parent_id == parent.id,
                journey_shares.c.journey_id.in_(journey_ids),
            )
        )
    db.commit()
    logger.info("link_removed parent_id=%s user_id=%s", parent.id, child.id)
    return parent, child, journey_ids


def add_device_token(db: Session, user: User, token: str) -> User:
    tokens = list(user.device_tokens or [])
    if token not in tokens:
        user.device_tokens = [*tokens, token]
        db.commit()
        db.refresh(user)
    return user


def remove_device_token(db: Session, user: User, token: str) -> User:
    tokens = list(user.device_tokens or [])
    if token in tokens:
        user.device_tokens = [t for t in tokens if t != token]
        db.commit()
        db.refresh(user)
    return user


def update_last_location(db: Session, user: User, point: dict[str, Any], at: datetime | None = None) -> User:
    user.last_location = point
    user.last_location_at = as_utc(at) if at else datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    return user


def can_view_user(actor: User, user_id: int) -> bool:
    return actor.id == user_id or (actor.is_parent and user_id in {c.id for c in actor.children})


def last_location(db: Session, actor: User, user_id: int) -> User:
    """Last known location of the actor or a linked child."""
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    if not can_view_user(actor, user_id):
        raise AuthorizationError("Not linked to this user")
    return user
