from functools import lru_cache

from homedispatch.domain.escrow.service import EscrowPolicy
from homedispatch.domain.matching.service import MatchPolicy
from homedispatch.domain.pricing.config_loader import PricingConfig, load_pricing_config
from homedispatch.domain.proximity.service import ProximityPolicy
from homedispatch.settings import settings


@lru_cache
def get_pricing_config() -> PricingConfig:
    return load_pricing_config(settings.pricing_config_path)


@lru_cache
def get_proximity_policy() -> ProximityPolicy:
    return ProximityPolicy(
        threshold_meters=settings.proximity_threshold_meters,
        dwell_seconds=settings.proximity_dwell_seconds,
    )


@lru_cache
def get_escrow_policy() -> EscrowPolicy:
    return EscrowPolicy(
        commission_rate=settings.commission_rate,
        sla_tolerance_minutes=settings.sla_tolerance_minutes,
        sla_penalty_rate=settings.sla_penalty_rate,
        sla_penalty_cap=settings.sla_penalty_cap,
    )


@lru_cache
def get_match_policy() -> MatchPolicy:
    return MatchPolicy(
        max_distance_km=settings.match_max_distance_km,
        default_service_radius_km=settings.default_service_radius_km,
    )
