"""User model and the user<->parent relation table."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.db.base import Base

# One row per (tracked user, parent) pair. Both User.parents and User.children
# read the same row, so the relation is always mirrored on both sides.
user_relations = Table(
    "user_relations",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("parent_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


class User(Base):
    """A tracked user or a parent."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")  # user | parent
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # GeoJSON point
    last_location: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_location_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    device_tokens: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    linking_code: Mapped[str | None] = mapped_column(String(12), index=True, nullable=True)
    linking_code_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    parents: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_relations,
        primaryjoin=lambda: User.id == user_relations.c.user_id,
        secondaryjoin=lambda: User.id == user_relations.c.parent_id,
        back_populates="children",
    )
    children: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_relations,
        primaryjoin=lambda: User.id == user_relations.c.parent_id,
        secondaryjoin=lambda: User.id == user_relations.c.user_id,
        back_populates="parents",
    )

    @property
    def is_parent(self) -> bool:
        return self.role == "parent"

    def counterparts(self) -> list["User"]:
        """Linked accounts on the other side of the relation."""
        return list(self.children if self.is_parent else self.parents)
