"""
booking engine

Revision ID: 0001_booking_engine
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_booking_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("customer_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("location_lng", sa.Float(), nullable=True),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_address", sa.String(length=500), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "providers",
        sa.Column("provider_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skills", sa.JSON(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_identity_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_profile_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("application_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("service_area_lng", sa.Float(), nullable=True),
        sa.Column("service_area_lat", sa.Float(), nullable=True),
        sa.Column("service_radius_km", sa.Float(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("experience_years", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_providers_online_status", "providers", ["is_online", "application_status"])

    op.create_table(
        "service_offerings",
        sa.Column("service_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "provider_id",
            sa.String(length=36),
            sa.ForeignKey("providers.provider_id"),
            nullable=False,
            index=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("base_duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("admin_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("booking_id", sa.String(length=36), primary_key=True),
        sa.Column("reference", sa.String(length=32), nullable=False, unique=True),
        sa.Column(
            "customer_id",
            sa.String(length=36),
            sa.ForeignKey("customers.customer_id"),
            nullable=False,
            index=True,
        ),
        sa.Column("service_id", sa.String(length=36), sa.ForeignKey("service_offerings.service_id"), nullable=False),
        sa.Column(
            "provider_id",
            sa.String(length=36),
            sa.ForeignKey("providers.provider_id"),
            nullable=False,
            index=True,
        ),
        sa.Column("phase", sa.String(length=32), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("job_size", sa.String(length=16), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("job_size_multiplier", sa.Float(), nullable=False),
        sa.Column("location_multiplier", sa.Float(), nullable=False),
        sa.Column("calculated_price_cents", sa.Integer(), nullable=False),
        sa.Column("job_site_lng", sa.Float(), nullable=False),
        sa.Column("job_site_lat", sa.Float(), nullable=False),
        sa.Column("job_site_address", sa.String(length=500), nullable=True),
        sa.Column("customer_lng", sa.Float(), nullable=True),
        sa.Column("customer_lat", sa.Float(), nullable=True),
        sa.Column("customer_location_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_lng", sa.Float(), nullable=True),
        sa.Column("provider_lat", sa.Float(), nullable=True),
        sa.Column("provider_location_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proximity_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("can_start_job", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decline_reason", sa.String(length=500), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("cancelled_by", sa.String(length=16), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("sla_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sla_penalty_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("provider_payout_cents", sa.Integer(), nullable=True),
        sa.Column("customer_rating_of_provider", sa.Integer(), nullable=True),
        sa.Column("customer_review", sa.Text(), nullable=True),
        sa.Column("provider_rating_of_customer", sa.Integer(), nullable=True),
        sa.Column("provider_review", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_bookings_provider_phase", "bookings", ["provider_id", "phase"])
    op.create_index("ix_bookings_phase", "bookings", ["phase"])

    op.create_table(
        "booking_events",
        sa.Column("event_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.booking_id"), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("from_phase", sa.String(length=32), nullable=True),
        sa.Column("to_phase", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("actor_role", sa.String(length=16), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_booking_events_booking_created", "booking_events", ["booking_id", "created_at"])

    op.create_table(
        "escrow_records",
        sa.Column("escrow_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(length=36),
            sa.ForeignKey("bookings.booking_id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("tip_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_rate", sa.Float(), nullable=False),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("net_payout_cents", sa.Integer(), nullable=False),
        sa.Column("penalty_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payout_cents", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("transaction_id", sa.String(length=255), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_escrow_records_status", "escrow_records", ["status"])


def downgrade() -> None:
    op.drop_index("ix_escrow_records_status", table_name="escrow_records")
    op.drop_table("escrow_records")
    op.drop_index("ix_booking_events_booking_created", table_name="booking_events")
    op.drop_table("booking_events")
    op.drop_index("ix_bookings_phase", table_name="bookings")
    op.drop_index("ix_bookings_provider_phase", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("service_offerings")
    op.drop_index("ix_providers_online_status", table_name="providers")
    op.drop_table("providers")
    op.drop_table("customers")
