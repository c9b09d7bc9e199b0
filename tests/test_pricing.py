import json

import pytest
from pydantic import ValidationError

from homedispatch.domain.pricing.config_loader import LocationRule, PricingConfig, load_pricing_config
from homedispatch.domain.pricing.service import (
    PricingConfigurationError,
    adjusted_price_cents,
    location_multiplier,
    quote,
    resolve_job_size,
)

CONFIG = PricingConfig()


def test_sandton_medium_job_quote():
    result = quote(50000, "medium", "12 Rivonia Road, Sandton", CONFIG)
    assert result.location_multiplier == 1.3
    assert result.job_size_multiplier == 1.0
    assert result.calculated_price_cents == 65000


def test_township_discount_and_large_job():
    result = quote(50000, "large", "Vilakazi Street, Soweto", CONFIG)
    assert result.location_multiplier == 0.85
    assert result.job_size_multiplier == 1.4
    assert result.calculated_price_cents == 59500


def test_unknown_area_uses_neutral_multiplier():
    assert location_multiplier("Somewhere in Bloemfontein", CONFIG) == 1.0
    assert location_multiplier(None, CONFIG) == 1.0
    assert location_multiplier("", CONFIG) == 1.0


def test_area_matching_ignores_case():
    assert location_multiplier("ROSEBANK mall", CONFIG) == 1.25


@pytest.mark.parametrize("job_size", ["huge", "", None, 3])
def test_invalid_job_size_falls_back_to_medium(job_size):
    assert resolve_job_size(job_size, CONFIG) == "medium"


def test_job_size_is_normalized():
    assert resolve_job_size(" Small ", CONFIG) == "small"


def test_negative_base_price_is_a_configuration_error():
    with pytest.raises(PricingConfigurationError):
        quote(-1, "medium", None, CONFIG)


def test_missing_base_price_is_a_configuration_error():
    with pytest.raises(PricingConfigurationError):
        quote(None, "medium", None, CONFIG)


def test_rounding_is_half_up_to_whole_cents():
    assert adjusted_price_cents(999, 1.25) == 1249  # 1248.75
    assert adjusted_price_cents(1, 1.3) == 1


def test_quote_is_a_snapshot_of_the_config_it_was_given():
    first = quote(50000, "medium", "Sandton", CONFIG)
    changed = PricingConfig(location_rules=[LocationRule(area="sandton", multiplier=1.1)])
    second = quote(50000, "medium", "Sandton", changed)
    assert first.calculated_price_cents == 65000
    assert second.calculated_price_cents == 55000


def test_location_multiplier_outside_band_rejected():
    with pytest.raises(ValidationError):
        LocationRule(area="sandton", multiplier=1.5)
    with pytest.raises(ValidationError):
        LocationRule(area="soweto", multiplier=0.5)


def test_load_pricing_config_from_file(tmp_path):
    path = tmp_path / "pricing.json"
    path.write_text(
        json.dumps(
            {
                "version": "2026-10",
                "job_size_multipliers": {"small": 0.9, "medium": 1.0, "large": 1.5},
                "location_rules": [{"area": "Durban North", "multiplier": 1.1}],
            }
        ),
        encoding="utf-8",
    )
    config = load_pricing_config(str(path))
    assert config.version == "2026-10"
    assert config.location_rules[0].area == "durban north"
    assert quote(10000, "large", "Durban North", config).calculated_price_cents == 16500


def test_load_pricing_config_defaults_without_path():
    assert load_pricing_config(None) == PricingConfig()
