"""Rate lookups per tenant, room and rental type.

Rates are fetched fresh on every call and never cached. A failed lookup
leaves the amount at zero and is logged; it never blocks the booking flow.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .api_client import PortalApiClient
from .errors import PortalError
from .models import RateQuote, RentalPeriod, Room

logger = logging.getLogger(__name__)


class RateResolver:
    def __init__(self, client: PortalApiClient, *, token: Optional[str] = None) -> None:
        self.client = client
        self.token = token

    def get_rate(self, tenant_id: int, room_id: int, rental_type_id: int) -> float:
        try:
            return self.client.get_rate(tenant_id, room_id, rental_type_id, token=self.token)
        except PortalError as exc:
            logger.warning(
                "Rate lookup failed (tenant=%s room=%s rental_type=%s): %s",
                tenant_id,
                room_id,
                rental_type_id,
                exc,
            )
            return 0.0

    def resolve_for_room(self, tenant_id: int, room: Room) -> Dict[RentalPeriod, RateQuote]:
        """Daily rate always; monthly rate only for rooms that are not meeting rooms."""
        config = self.client.config
        wanted = {RentalPeriod.DAILY: config.daily_rental_type_id}
        if not room.is_meeting_room:
            wanted[RentalPeriod.MONTHLY] = config.monthly_rental_type_id

        quotes: Dict[RentalPeriod, RateQuote] = {}
        for period, rental_type_id in wanted.items():
            amount = self.get_rate(tenant_id, room.room_id, rental_type_id)
            quotes[period] = RateQuote(
                room_id=room.room_id,
                rental_type_id=rental_type_id,
                period=period,
                amount=amount,
                is_set=amount > 0,
            )
        return quotes
