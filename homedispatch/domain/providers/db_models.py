import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from homedispatch.infra.db import Base

APPLICATION_ACTIVE = "active"


class Provider(Base):
    __tablename__ = "providers"

    provider_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skills: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_identity_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_profile_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    application_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    service_area_lng: Mapped[float | None] = mapped_column(Float)
    service_area_lat: Mapped[float | None] = mapped_column(Float)
    service_radius_km: Mapped[float | None] = mapped_column(Float)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
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

    __table_args__ = (Index("ix_providers_online_status", "is_online", "application_status"),)
