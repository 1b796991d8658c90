"""scheduler baseline: conditions, schedule entries, delivery log, sent ledger

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("share_location", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("location_latitude", sa.Float(), nullable=True),
        sa.Column("location_longitude", sa.Float(), nullable=True),
        sa.Column("location_name", sa.String(length=256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_messages_user_id", "messages", ["user_id"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("last_name", sa.String(length=128), nullable=True),
        sa.Column("whatsapp_number", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_profiles_whatsapp_number", "profiles", ["whatsapp_number"])

    op.create_table(
        "conditions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("message_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("condition_type", sa.String(length=32), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hours_threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minutes_threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("trigger_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recurring_pattern", JSON_TYPE, nullable=True),
        sa.Column("reminder_minutes", JSON_TYPE, nullable=True),
        sa.Column("recipients_json", JSON_TYPE, nullable=True),
        sa.Column("panic_config_json", JSON_TYPE, nullable=True),
        sa.Column("confirmations_required", sa.Integer(), nullable=True),
        sa.Column("pin_code", sa.String(length=32), nullable=True),
        sa.Column("unlock_delay_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expiry_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_conditions_message_id", "conditions", ["message_id"])
    op.create_index("ix_conditions_user_id", "conditions", ["user_id"])
    op.create_index("ix_conditions_type_active", "conditions", ["condition_type", "active"])
    op.create_index(
        "uq_conditions_message_active",
        "conditions",
        ["message_id"],
        unique=True,
        postgresql_where=sa.text("active"),
        sqlite_where=sa.text("active"),
    )

    op.create_table(
        "schedule_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("message_id", sa.String(length=36), nullable=False),
        sa.Column("condition_id", sa.String(length=36), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("entry_kind", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("delivery_priority", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_schedule_entries_message_id", "schedule_entries", ["message_id"])
    op.create_index("ix_schedule_entries_condition_id", "schedule_entries", ["condition_id"])
    op.create_index("ix_schedule_entries_status_scheduled", "schedule_entries", ["status", "scheduled_at"])
    op.create_index(
        "uq_schedule_entries_dedup",
        "schedule_entries",
        ["message_id", "condition_id", "scheduled_at", "entry_kind"],
        unique=True,
        postgresql_where=sa.text("status <> 'obsolete'"),
        sqlite_where=sa.text("status <> 'obsolete'"),
    )

    op.create_table(
        "delivery_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("entry_id", sa.String(length=36), nullable=True),
        sa.Column("message_id", sa.String(length=36), nullable=False),
        sa.Column("condition_id", sa.String(length=36), nullable=True),
        sa.Column("recipient", sa.String(length=256), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("response_json", JSON_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_delivery_log_entry_id", "delivery_log", ["entry_id"])
    op.create_index("ix_delivery_log_message_id", "delivery_log", ["message_id"])
    op.create_index("ix_delivery_log_entry_recipient_channel", "delivery_log", ["entry_id", "recipient", "channel"])
    op.create_index("ix_delivery_log_status_created", "delivery_log", ["status", "created_at"])

    op.create_table(
        "sent_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("message_id", sa.String(length=36), nullable=False),
        sa.Column("condition_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sent_records_message_condition", "sent_records", ["message_id", "condition_id"])

    op.create_table(
        "check_ins",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False, server_default="app"),
        sa.Column("device_info", sa.String(length=256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_check_ins_user_id", "check_ins", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_check_ins_user_id", table_name="check_ins")
    op.drop_table("check_ins")
    op.drop_index("ix_sent_records_message_condition", table_name="sent_records")
    op.drop_table("sent_records")
    op.drop_index("ix_delivery_log_status_created", table_name="delivery_log")
    op.drop_index("ix_delivery_log_entry_recipient_channel", table_name="delivery_log")
    op.drop_index("ix_delivery_log_message_id", table_name="delivery_log")
    op.drop_index("ix_delivery_log_entry_id", table_name="delivery_log")
    op.drop_table("delivery_log")
    op.drop_index("uq_schedule_entries_dedup", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_status_scheduled", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_condition_id", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_message_id", table_name="schedule_entries")
    op.drop_table("schedule_entries")
    op.drop_index("uq_conditions_message_active", table_name="conditions")
    op.drop_index("ix_conditions_type_active", table_name="conditions")
    op.drop_index("ix_conditions_user_id", table_name="conditions")
    op.drop_index("ix_conditions_message_id", table_name="conditions")
    op.drop_table("conditions")
    op.drop_index("ix_profiles_whatsapp_number", table_name="profiles")
    op.drop_table("profiles")
    op.drop_index("ix_messages_user_id", table_name="messages")
    op.drop_table("messages")
