import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from homedispatch.domain.bookings.statuses import BookingPhase, StatusTriad, triad_for
from homedispatch.domain.catalog.db_models import ServiceOffering
from homedispatch.domain.customers.db_models import Customer
from homedispatch.infra.db import Base


def generate_booking_reference(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(tz=timezone.utc)).strftime("%Y%m%d")
    return f"BK-{stamp}-{secrets.token_hex(3).upper()}"


class Booking(Base):
    __tablename__ = "bookings"

    booking_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    reference: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        default=generate_booking_reference,
    )
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.customer_id"), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(ForeignKey("service_offerings.service_id"), nullable=False)
    provider_id: Mapped[str] = mapped_column(ForeignKey("providers.provider_id"), nullable=False, index=True)
    phase: Mapped[str] = mapped_column(String(32), nullable=False, default=BookingPhase.REQUESTED.value)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    estimated_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    job_size: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    notes: Mapped[str | None] = mapped_column(Text)

    base_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    job_size_multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    location_multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    calculated_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    job_site_lng: Mapped[float] = mapped_column(Float, nullable=False)
    job_site_lat: Mapped[float] = mapped_column(Float, nullable=False)
    job_site_address: Mapped[str | None] = mapped_column(String(500))

    customer_lng: Mapped[float | None] = mapped_column(Float)
    customer_lat: Mapped[float | None] = mapped_column(Float)
    customer_location_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    provider_lng: Mapped[float | None] = mapped_column(Float)
    provider_lat: Mapped[float | None] = mapped_column(Float)
    provider_location_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    proximity_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    can_start_job: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    provider_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    provider_declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    decline_reason: Mapped[str | None] = mapped_column(String(500))
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    cancelled_by: Mapped[str | None] = mapped_column(String(16))
    actual_duration_minutes: Mapped[int | None] = mapped_column(Integer)
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sla_penalty_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider_payout_cents: Mapped[int | None] = mapped_column(Integer)
    customer_rating_of_provider: Mapped[int | None] = mapped_column(Integer)
    customer_review: Mapped[str | None] = mapped_column(Text)
    provider_rating_of_customer: Mapped[int | None] = mapped_column(Integer)
    provider_review: Mapped[str | None] = mapped_column(Text)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    customer: Mapped[Customer] = relationship("Customer")
    service: Mapped[ServiceOffering] = relationship("ServiceOffering")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_bookings_provider_phase", "provider_id", "phase"),
        Index("ix_bookings_phase", "phase"),
    )

    @property
    def current_phase(self) -> BookingPhase:
        return BookingPhase(self.phase)

    @property
    def triad(self) -> StatusTriad:
        return triad_for(self.phase)

    @property
    def status(self) -> str:
        return self.triad.status.value

    @property
    def request_status(self) -> str:
        return self.triad.request_status.value

    @property
    def payment_status(self) -> str:
        return self.triad.payment_status.value


class BookingEvent(Base):
    __tablename__ = "booking_events"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.booking_id"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    from_phase: Mapped[str | None] = mapped_column(String(32))
    to_phase: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(16), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_booking_events_booking_created", "booking_id", "created_at"),)
