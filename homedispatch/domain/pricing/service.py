import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from homedispatch.domain.pricing.config_loader import PricingConfig

logger = logging.getLogger(__name__)

JOB_SIZES = ("small", "medium", "large")


class PricingConfigurationError(ValueError):
    """Service data carries a price the engine cannot quote from."""


@dataclass(frozen=True)
class PriceQuote:
    base_price_cents: int
    job_size: str
    job_size_multiplier: float
    location_multiplier: float
    calculated_price_cents: int


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decimal(value: float) -> Decimal:
    # str() keeps 1.3 as 1.3 instead of its binary expansion.
    return Decimal(str(value))


def resolve_job_size(job_size: str | None, config: PricingConfig) -> str:
    if isinstance(job_size, str):
        normalized = job_size.strip().lower()
        if normalized in config.job_size_multipliers:
            return normalized
    if job_size is not None:
        logger.info("pricing_job_size_defaulted", extra={"extra": {"requested": str(job_size)}})
    return config.default_job_size


def location_multiplier(address: str | None, config: PricingConfig) -> float:
    if not address:
        return 1.0
    lowered = address.lower()
    for rule in config.location_rules:
        if rule.area in lowered:
            return rule.multiplier
    return 1.0


def validate_base_price(base_price_cents: int | float | None) -> int:
    if base_price_cents is None:
        raise PricingConfigurationError("Service has no base price")
    if isinstance(base_price_cents, float) and not math.isfinite(base_price_cents):
        raise PricingConfigurationError("Service base price is not a finite number")
    if base_price_cents < 0:
        raise PricingConfigurationError("Service base price is negative")
    return int(base_price_cents)


def adjusted_price_cents(base_price_cents: int, multiplier: float) -> int:
    return round_cents(Decimal(base_price_cents) * _decimal(multiplier))


def quote(
    base_price_cents: int | float | None,
    job_size: str | None,
    address: str | None,
    config: PricingConfig,
) -> PriceQuote:
    base = validate_base_price(base_price_cents)
    size = resolve_job_size(job_size, config)
    size_multiplier = config.job_size_multipliers[size]
    area_multiplier = location_multiplier(address, config)
    price = round_cents(Decimal(base) * _decimal(size_multiplier) * _decimal(area_multiplier))
    return PriceQuote(
        base_price_cents=base,
        job_size=size,
        job_size_multiplier=size_multiplier,
        location_multiplier=area_multiplier,
        calculated_price_cents=price,
    )
