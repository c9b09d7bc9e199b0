import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.domain.bookings.db_models import Booking
from homedispatch.domain.bookings.statuses import BUSY_STATUSES, phases_with_status
from homedispatch.domain.geo.service import Coordinates, haversine_km
from homedispatch.domain.pricing.config_loader import PricingConfig
from homedispatch.domain.pricing.service import adjusted_price_cents, location_multiplier, validate_base_price
from homedispatch.domain.providers.db_models import APPLICATION_ACTIVE, Provider

logger = logging.getLogger(__name__)

EXPERIENCE_CAP_YEARS = 10


@dataclass(frozen=True)
class MatchPolicy:
    max_distance_km: float = 50.0
    default_service_radius_km: float = 25.0


@dataclass(frozen=True)
class ProviderSnapshot:
    provider_id: str
    name: str
    is_online: bool
    is_busy: bool
    skills: tuple[str, ...]
    is_verified: bool
    is_identity_verified: bool
    is_profile_complete: bool
    application_status: str
    service_area: Coordinates | None
    service_radius_km: float | None
    rating: float
    experience_years: int


@dataclass(frozen=True)
class ProviderMatch:
    provider_id: str
    name: str
    distance_km: float
    score: float
    rating: float
    experience_years: int
    location_multiplier: float
    adjusted_price_cents: int


def score_provider(rating: float, distance_km: float, experience_years: int) -> float:
    proximity_score = max(0.0, 100 - 2 * distance_km)
    experience_score = min(max(experience_years, 0), EXPERIENCE_CAP_YEARS) * 2
    return rating * 20 + proximity_score + experience_score


def _skills_overlap(requested: set[str], offered: Iterable[str]) -> bool:
    if not requested:
        return True
    return bool(requested & {skill.strip().lower() for skill in offered})


def _eligible(snapshot: ProviderSnapshot) -> bool:
    return (
        snapshot.is_online
        and not snapshot.is_busy
        and snapshot.is_verified
        and snapshot.is_identity_verified
        and snapshot.is_profile_complete
        and snapshot.application_status == APPLICATION_ACTIVE
        and snapshot.service_area is not None
    )


def rank_providers(
    snapshots: Iterable[ProviderSnapshot],
    *,
    skills: Iterable[str],
    location: Coordinates,
    address: str | None,
    base_price_cents: int,
    max_distance_km: float | None,
    policy: MatchPolicy,
    pricing_config: PricingConfig,
) -> list[ProviderMatch]:
    base = validate_base_price(base_price_cents)
    requested = {skill.strip().lower() for skill in skills if skill and skill.strip()}
    limit = policy.max_distance_km if max_distance_km is None else min(max_distance_km, policy.max_distance_km)
    multiplier = location_multiplier(address, pricing_config)
    price = adjusted_price_cents(base, multiplier)

    matches: list[ProviderMatch] = []
    for snapshot in snapshots:
        if not _eligible(snapshot) or not _skills_overlap(requested, snapshot.skills):
            continue
        distance = haversine_km(location, snapshot.service_area)
        radius = snapshot.service_radius_km
        if radius is None:
            radius = policy.default_service_radius_km
        if distance > radius or distance > limit:
            continue
        matches.append(
            ProviderMatch(
                provider_id=snapshot.provider_id,
                name=snapshot.name,
                distance_km=round(distance, 2),
                score=round(score_provider(snapshot.rating, distance, snapshot.experience_years), 2),
                rating=snapshot.rating,
                experience_years=snapshot.experience_years,
                location_multiplier=multiplier,
                adjusted_price_cents=price,
            )
        )
    matches.sort(key=lambda match: (-match.score, match.distance_km, match.provider_id))
    return matches


async def load_provider_snapshots(session: AsyncSession) -> list[ProviderSnapshot]:
    busy_phases = set().union(*(phases_with_status(status) for status in BUSY_STATUSES))
    busy_stmt = select(Booking.provider_id).where(Booking.phase.in_([phase.value for phase in busy_phases])).distinct()
    busy = set((await session.execute(busy_stmt)).scalars().all())

    providers = (await session.execute(select(Provider).where(Provider.is_online.is_(True)))).scalars().all()
    snapshots = []
    for provider in providers:
        area = None
        if provider.service_area_lng is not None and provider.service_area_lat is not None:
            area = Coordinates(lng=provider.service_area_lng, lat=provider.service_area_lat)
        snapshots.append(
            ProviderSnapshot(
                provider_id=provider.provider_id,
                name=provider.name,
                is_online=provider.is_online,
                is_busy=provider.provider_id in busy,
                skills=tuple(provider.skills or ()),
                is_verified=provider.is_verified,
                is_identity_verified=provider.is_identity_verified,
                is_profile_complete=provider.is_profile_complete,
                application_status=provider.application_status,
                service_area=area,
                service_radius_km=provider.service_radius_km,
                rating=provider.rating or 0.0,
                experience_years=provider.experience_years or 0,
            )
        )
    return snapshots


async def find_available_providers(
    session: AsyncSession,
    skills: Iterable[str],
    location: Coordinates,
    base_price_cents: int,
    max_distance_km: float | None,
    *,
    policy: MatchPolicy,
    pricing_config: PricingConfig,
    address: str | None = None,
) -> list[ProviderMatch]:
    snapshots = await load_provider_snapshots(session)
    matches = rank_providers(
        snapshots,
        skills=skills,
        location=location,
        address=address,
        base_price_cents=base_price_cents,
        max_distance_km=max_distance_km,
        policy=policy,
        pricing_config=pricing_config,
    )
    logger.info(
        "provider_search",
        extra={"extra": {"candidates": len(snapshots), "matches": len(matches)}},
    )
    return matches
