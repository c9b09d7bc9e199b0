import logging

from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.domain.bookings.effects import CustomerLocationDefault
from homedispatch.domain.customers.db_models import Customer

logger = logging.getLogger(__name__)


async def apply_location_default(session: AsyncSession, effect: CustomerLocationDefault) -> bool:
    """Copy a booking location onto a customer profile that still has none."""
    customer = await session.get(Customer, effect.customer_id)
    if customer is None or customer.has_location:
        return False
    customer.location_lng = effect.lng
    customer.location_lat = effect.lat
    customer.location_address = effect.address
    await session.commit()
    logger.info("customer_location_defaulted", extra={"extra": {"customer_id": effect.customer_id}})
    return True
