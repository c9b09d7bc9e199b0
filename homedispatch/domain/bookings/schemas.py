from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from homedispatch.domain.geo.service import Coordinates, coordinates_from_list


class LocationPayload(BaseModel):
    coordinates: list[float] = Field(min_length=2, max_length=2, description="[longitude, latitude]")
    address: str | None = Field(None, max_length=500)

    @field_validator("coordinates")
    @classmethod
    def validate_coordinates(cls, value: list[float]) -> list[float]:
        return coordinates_from_list(value).as_list()

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lng=self.coordinates[0], lat=self.coordinates[1])


class BookingCreateRequest(BaseModel):
    service_id: str
    scheduled_for: datetime
    location: LocationPayload
    job_size: str | None = None
    notes: str | None = Field(None, max_length=2000)

    def normalized_schedule(self) -> datetime:
        if self.scheduled_for.tzinfo is None:
            return self.scheduled_for.replace(tzinfo=timezone.utc)
        return self.scheduled_for.astimezone(timezone.utc)


class DeclineRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RateRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: str | None = Field(None, max_length=2000)


class LocationUpdateRequest(BaseModel):
    coordinates: list[float] = Field(min_length=2, max_length=2, description="[longitude, latitude]")
    recorded_at: datetime | None = None

    @field_validator("coordinates")
    @classmethod
    def validate_coordinates(cls, value: list[float]) -> list[float]:
        return coordinates_from_list(value).as_list()

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lng=self.coordinates[0], lat=self.coordinates[1])


class PaymentRequest(BaseModel):
    amount_cents: int | None = Field(None, gt=0)
    tip_cents: int = Field(0, ge=0)


class ProviderSearchRequest(BaseModel):
    skills: list[str] = Field(default_factory=list)
    location: LocationPayload
    base_price_cents: int = Field(ge=0)
    max_distance_km: float | None = Field(None, gt=0)


class BookingResponse(BaseModel):
    booking_id: str
    reference: str
    customer_id: str
    provider_id: str
    service_id: str
    phase: str
    status: str
    request_status: str
    payment_status: str
    scheduled_for: datetime
    estimated_duration_minutes: int
    job_size: str
    notes: str | None = None
    base_price_cents: int
    job_size_multiplier: float
    location_multiplier: float
    calculated_price_cents: int
    location: LocationPayload
    can_start_job: bool
    proximity_started_at: datetime | None = None
    provider_accepted_at: datetime | None = None
    provider_declined_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    decline_reason: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    actual_duration_minutes: int | None = None
    sla_breached: bool
    sla_penalty_cents: int
    provider_payout_cents: int | None = None
    customer_rating_of_provider: int | None = None
    customer_review: str | None = None
    provider_rating_of_customer: int | None = None
    provider_review: str | None = None

    @field_validator(
        "scheduled_for",
        "proximity_started_at",
        "provider_accepted_at",
        "provider_declined_at",
        "started_at",
        "completed_at",
        "cancelled_at",
    )
    @classmethod
    def as_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite returns naive datetimes; the API always answers in UTC.
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=timezone.utc)

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            booking_id=booking.booking_id,
            reference=booking.reference,
            customer_id=booking.customer_id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            phase=booking.phase,
            status=booking.status,
            request_status=booking.request_status,
            payment_status=booking.payment_status,
            scheduled_for=booking.scheduled_for,
            estimated_duration_minutes=booking.estimated_duration_minutes,
            job_size=booking.job_size,
            notes=booking.notes,
            base_price_cents=booking.base_price_cents,
            job_size_multiplier=booking.job_size_multiplier,
            location_multiplier=booking.location_multiplier,
            calculated_price_cents=booking.calculated_price_cents,
            location=LocationPayload(
                coordinates=[booking.job_site_lng, booking.job_site_lat],
                address=booking.job_site_address,
            ),
            can_start_job=booking.can_start_job,
            proximity_started_at=booking.proximity_started_at,
            provider_accepted_at=booking.provider_accepted_at,
            provider_declined_at=booking.provider_declined_at,
            started_at=booking.started_at,
            completed_at=booking.completed_at,
            cancelled_at=booking.cancelled_at,
            decline_reason=booking.decline_reason,
            cancellation_reason=booking.cancellation_reason,
            cancelled_by=booking.cancelled_by,
            actual_duration_minutes=booking.actual_duration_minutes,
            sla_breached=booking.sla_breached,
            sla_penalty_cents=booking.sla_penalty_cents,
            provider_payout_cents=booking.provider_payout_cents,
            customer_rating_of_provider=booking.customer_rating_of_provider,
            customer_review=booking.customer_review,
            provider_rating_of_customer=booking.provider_rating_of_customer,
            provider_review=booking.provider_review,
        )


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]


class BookingEventResponse(BaseModel):
    event_id: int
    action: str
    from_phase: str | None = None
    to_phase: str
    actor_id: str
    actor_role: str
    details: dict
    created_at: datetime


class ProximityResponse(BaseModel):
    proximity_detected: bool
    can_start_job: bool
    distance_meters: float | None = None
    stale: bool = False


class EscrowResponse(BaseModel):
    booking_id: str
    invoice_number: str
    transaction_id: str
    status: str
    currency: str
    amount_cents: int
    tip_cents: int
    commission_rate: float
    commission_cents: int
    net_payout_cents: int
    penalty_cents: int
    payout_cents: int | None = None
    created_at: datetime
    released_at: datetime | None = None
    refunded_at: datetime | None = None

    @classmethod
    def from_record(cls, record) -> "EscrowResponse":
        return cls(
            booking_id=record.booking_id,
            invoice_number=record.invoice_number,
            transaction_id=record.transaction_id,
            status=record.status,
            currency=record.currency,
            amount_cents=record.amount_cents,
            tip_cents=record.tip_cents,
            commission_rate=record.commission_rate,
            commission_cents=record.commission_cents,
            net_payout_cents=record.net_payout_cents,
            penalty_cents=record.penalty_cents,
            payout_cents=record.payout_cents,
            created_at=record.created_at,
            released_at=record.released_at,
            refunded_at=record.refunded_at,
        )


class PaymentResponse(BaseModel):
    payment_status: str
    duplicate: bool
    escrow: EscrowResponse


class PaymentHistoryResponse(BaseModel):
    transactions: list[EscrowResponse]


class ProviderMatchResponse(BaseModel):
    provider_id: str
    name: str
    distance_km: float
    score: float
    rating: float
    experience_years: int
    location_multiplier: float
    adjusted_price_cents: int


class ProviderSearchResponse(BaseModel):
    providers: list[ProviderMatchResponse]
