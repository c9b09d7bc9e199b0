import dataclasses

import pytest

from homedispatch.domain.bookings.statuses import BookingPhase
from homedispatch.domain.geo.service import Coordinates
from homedispatch.domain.matching.service import (
    MatchPolicy,
    ProviderSnapshot,
    find_available_providers,
    rank_providers,
    score_provider,
)
from homedispatch.domain.pricing.config_loader import PricingConfig
from homedispatch.domain.pricing.service import PricingConfigurationError
from tests.conftest import SANDTON, seed_booking, seed_parties

JOB_SITE = Coordinates(lng=28.0567, lat=-26.1076)
POLICY = MatchPolicy()
CONFIG = PricingConfig()


def _snapshot(provider_id: str, **overrides) -> ProviderSnapshot:
    values = dict(
        provider_id=provider_id,
        name=f"Provider {provider_id}",
        is_online=True,
        is_busy=False,
        skills=("plumbing", "electrical"),
        is_verified=True,
        is_identity_verified=True,
        is_profile_complete=True,
        application_status="active",
        service_area=Coordinates(lng=28.0567, lat=-26.1076),
        service_radius_km=25.0,
        rating=4.0,
        experience_years=5,
    )
    values.update(overrides)
    return ProviderSnapshot(**values)


def _rank(snapshots, skills=("plumbing",), max_distance_km=None, address=None):
    return rank_providers(
        snapshots,
        skills=skills,
        location=JOB_SITE,
        address=address,
        base_price_cents=50000,
        max_distance_km=max_distance_km,
        policy=POLICY,
        pricing_config=CONFIG,
    )


def test_score_formula():
    assert score_provider(4.5, 10, 6) == pytest.approx(4.5 * 20 + 80 + 12)
    assert score_provider(5, 80, 30) == pytest.approx(100 + 0 + 20)


@pytest.mark.parametrize(
    "override",
    [
        {"is_online": False},
        {"is_busy": True},
        {"is_verified": False},
        {"is_identity_verified": False},
        {"is_profile_complete": False},
        {"application_status": "pending"},
        {"service_area": None},
        {"skills": ("gardening",)},
    ],
)
def test_ineligible_providers_are_excluded(override):
    assert _rank([_snapshot("p1", **override)]) == []


def test_empty_skill_list_matches_any_provider():
    assert len(_rank([_snapshot("p1", skills=("gardening",))], skills=())) == 1


def test_skills_match_case_insensitively():
    assert len(_rank([_snapshot("p1", skills=("Plumbing",))], skills=("PLUMBING",))) == 1


def test_provider_outside_own_radius_is_excluded():
    far = _snapshot("p1", service_area=Coordinates(lng=28.2293, lat=-25.7479), service_radius_km=10)
    assert _rank([far]) == []


def test_search_distance_limit_applies():
    nearby = _snapshot("p1", service_area=Coordinates(lng=28.10, lat=-26.10), service_radius_km=40)
    assert len(_rank([nearby])) == 1
    assert _rank([nearby], max_distance_km=1) == []


def test_missing_radius_uses_default():
    snapshot = _snapshot("p1", service_radius_km=None)
    assert len(_rank([snapshot])) == 1


def test_zero_radius_is_not_replaced_by_default():
    on_site = _snapshot("p1", service_radius_km=0)
    down_the_road = _snapshot("p2", service_area=Coordinates(lng=28.10, lat=-26.10), service_radius_km=0)
    assert [match.provider_id for match in _rank([on_site, down_the_road])] == ["p1"]


def test_ranking_prefers_score_then_distance_then_id():
    best = _snapshot("b", rating=5.0)
    closer = _snapshot("c", rating=4.0)
    farther = _snapshot("a", rating=4.0, service_area=Coordinates(lng=28.10, lat=-26.10))
    tie = _snapshot("a2", rating=4.0)
    ranked = _rank([farther, tie, closer, best])
    assert [match.provider_id for match in ranked] == ["b", "a2", "c", "a"]


def test_matches_carry_location_adjusted_price():
    ranked = _rank([_snapshot("p1")], address="Sandton City")
    assert ranked[0].location_multiplier == 1.3
    assert ranked[0].adjusted_price_cents == 65000


def test_negative_base_price_rejected():
    with pytest.raises(PricingConfigurationError):
        rank_providers(
            [_snapshot("p1")],
            skills=(),
            location=JOB_SITE,
            address=None,
            base_price_cents=-5,
            max_distance_km=None,
            policy=POLICY,
            pricing_config=CONFIG,
        )


def test_snapshot_is_immutable():
    snapshot = _snapshot("p1")
    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.rating = 1.0


@pytest.mark.anyio
async def test_busy_provider_is_not_offered(async_session_maker):
    ids = await seed_parties(async_session_maker)
    location = Coordinates(lng=SANDTON[0], lat=SANDTON[1])

    async with async_session_maker() as session:
        matches = await find_available_providers(
            session, ["plumbing"], location, 50000, None, policy=POLICY, pricing_config=CONFIG
        )
    assert [match.provider_id for match in matches] == [ids["provider_id"]]

    await seed_booking(async_session_maker, ids, phase=BookingPhase.CONFIRMED)
    async with async_session_maker() as session:
        matches = await find_available_providers(
            session, ["plumbing"], location, 50000, None, policy=POLICY, pricing_config=CONFIG
        )
    assert matches == []


@pytest.mark.anyio
async def test_requested_booking_does_not_make_provider_busy(async_session_maker):
    ids = await seed_parties(async_session_maker)
    await seed_booking(async_session_maker, ids, phase=BookingPhase.REQUESTED)
    location = Coordinates(lng=SANDTON[0], lat=SANDTON[1])

    async with async_session_maker() as session:
        matches = await find_available_providers(
            session, [], location, 50000, 10, policy=POLICY, pricing_config=CONFIG
        )
    assert len(matches) == 1
