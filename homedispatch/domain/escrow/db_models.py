import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from homedispatch.infra.db import Base

ESCROW_HELD = "held"
ESCROW_RELEASED = "released"
ESCROW_REFUNDED = "refunded"


def generate_invoice_number(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(tz=timezone.utc)).strftime("%Y%m%d")
    return f"INV-{stamp}-{secrets.token_hex(3).upper()}"


class EscrowRecord(Base):
    __tablename__ = "escrow_records"

    escrow_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(ForeignKey("bookings.booking_id"), nullable=False, unique=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tip_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commission_rate: Mapped[float] = mapped_column(Float, nullable=False)
    commission_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_payout_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    penalty_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payout_cents: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ESCROW_HELD)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        default=generate_invoice_number,
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="zar")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_escrow_records_status", "status"),)
