"""Create users, journeys, location, alert and emergency tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

IN_PROGRESS = sa.text("status IN ('active', 'emergency') AND end_time IS NULL")
OPEN_ALERT = sa.text("resolved = false")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_location", sa.JSON(), nullable=True),
        sa.Column("last_location_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("device_tokens", sa.JSON(), nullable=False),
        sa.Column("linking_code", sa.String(12), nullable=True),
        sa.Column("linking_code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_linking_code", "users", ["linking_code"], unique=False)

    op.create_table(
        "user_relations",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "parent_id", name="pk_user_relations"),
    )

    op.create_table(
        "journeys",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("start_location", sa.JSON(), nullable=False),
        sa.Column("destination", sa.JSON(), nullable=False),
        sa.Column("start_address", sa.String(255), nullable=True),
        sa.Column("destination_address", sa.String(255), nullable=True),
        sa.Column("planned_route", sa.JSON(), nullable=True),
        sa.Column("transport_mode", sa.String(30), nullable=False),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_duration", sa.Integer(), nullable=True),
        sa.Column("progress", sa.Float(), nullable=False),
        sa.Column("last_known_location", sa.JSON(), nullable=True),
        sa.Column("last_known_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("checkpoints", sa.JSON(), nullable=False),
        sa.Column("notification_log", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_journeys"),
    )
    op.create_index(
        "uq_journeys_user_in_progress",
        "journeys",
        ["user_id"],
        unique=True,
        postgresql_where=IN_PROGRESS,
        sqlite_where=IN_PROGRESS,
    )
    op.create_index("ix_journeys_user_created", "journeys", ["user_id", "created_at"], unique=False)

    op.create_table(
        "journey_shares",
        sa.Column("journey_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("journey_id", "parent_id", name="pk_journey_shares"),
    )

    op.create_table(
        "location_updates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("journey_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("location", sa.JSON(), nullable=False),
        sa.Column("speed", sa.Float(), nullable=False),
        sa.Column("heading", sa.Float(), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=False),
        sa.Column("battery_level", sa.Float(), nullable=False),
        sa.Column("is_moving", sa.Boolean(), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_location_updates"),
    )
    op.create_index("ix_location_updates_journey_ts", "location_updates", ["journey_id", "timestamp"], unique=False)
    op.create_index("ix_location_updates_user_ts", "location_updates", ["user_id", "timestamp"], unique=False)
    op.create_index("ix_location_updates_expires_at", "location_updates", ["expires_at"], unique=False)

    op.create_table(
        "safety_alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("journey_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("alert_type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("location", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("resolved", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resolved_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name="pk_safety_alerts"),
    )
    op.create_index(
        "uq_safety_alerts_open_type",
        "safety_alerts",
        ["journey_id", "alert_type"],
        unique=True,
        postgresql_where=OPEN_ALERT,
        sqlite_where=OPEN_ALERT,
    )
    op.create_index("ix_safety_alerts_journey_created", "safety_alerts", ["journey_id", "created_at"], unique=False)
    op.create_index("ix_safety_alerts_user_type", "safety_alerts", ["user_id", "alert_type"], unique=False)

    op.create_table(
        "alert_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("alert_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("acknowledged", sa.Boolean(), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["alert_id"], ["safety_alerts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_alert_notifications"),
    )
    op.create_index("ix_alert_notifications_alert_id", "alert_notifications", ["alert_id"], unique=False)

    op.create_table(
        "emergency_actions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("journey_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("location", sa.JSON(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("audio_url", sa.String(1024), nullable=False),
        sa.Column("notified_parents", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name="pk_emergency_actions"),
    )
    op.create_index("ix_emergency_actions_user_id", "emergency_actions", ["user_id"], unique=False)
    op.create_index("ix_emergency_actions_journey_id", "emergency_actions", ["journey_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_emergency_actions_journey_id", table_name="emergency_actions")
    op.drop_index("ix_emergency_actions_user_id", table_name="emergency_actions")
    op.drop_table("emergency_actions")
    op.drop_index("ix_alert_notifications_alert_id", table_name="alert_notifications")
    op.drop_table("alert_notifications")
    op.drop_index("ix_safety_alerts_user_type", table_name="safety_alerts")
    op.drop_index("ix_safety_alerts_journey_created", table_name="safety_alerts")
    op.drop_index("uq_safety_alerts_open_type", table_name="safety_alerts")
    op.drop_table("safety_alerts")
    op.drop_index("ix_location_updates_expires_at", table_name="location_updates")
    op.drop_index("ix_location_updates_user_ts", table_name="location_updates")
    op.drop_index("ix_location_updates_journey_ts", table_name="location_updates")
    op.drop_table("location_updates")
    op.drop_table("journey_shares")
    op.drop_index("ix_journeys_user_created", table_name="journeys")
    op.drop_index("uq_journeys_user_in_progress", table_name="journeys")
    op.drop_table("journeys")
    op.drop_table("user_relations")
    op.drop_index("ix_users_linking_code", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
