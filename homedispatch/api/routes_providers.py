from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.api.identity import get_actor
from homedispatch.dependencies import get_match_policy, get_pricing_config
from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings import schemas as booking_schemas
from homedispatch.domain.bookings import service as booking_service
from homedispatch.infra.db import get_db_session

router = APIRouter()


@router.post("/v1/providers/search", response_model=booking_schemas.ProviderSearchResponse)
async def search_providers(
    payload: booking_schemas.ProviderSearchRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.ProviderSearchResponse:
    del actor
    matches = await booking_service.find_available_providers(
        session,
        payload.skills,
        payload.location.to_coordinates(),
        payload.base_price_cents,
        payload.max_distance_km,
        policy=get_match_policy(),
        pricing_config=get_pricing_config(),
        address=payload.location.address,
    )
    return booking_schemas.ProviderSearchResponse(
        providers=[
            booking_schemas.ProviderMatchResponse(
                provider_id=match.provider_id,
                name=match.name,
                distance_km=match.distance_km,
                score=match.score,
                rating=match.rating,
                experience_years=match.experience_years,
                location_multiplier=match.location_multiplier,
                adjusted_price_cents=match.adjusted_price_cents,
            )
            for match in matches
        ]
    )
