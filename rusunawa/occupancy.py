"""Occupancy, pricing and room list helpers.

Occupancy is computed from the occupants the backend reports with a room.
``occupied <= capacity`` is expected but only reported here: an
over-capacity room is flagged, never corrected.
"""

from __future__ import annotations

import math
from datetime import date
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .dates import whole_months_between
from .models import Occupancy, RentalPeriod, Room

SORT_PRICE_ASC = "price_asc"
SORT_PRICE_DESC = "price_desc"
SORT_NAME = "name"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_occupancy(room: Room) -> Occupancy:
    capacity = room.capacity
    occupied = room.occupied_count
    percentage = (occupied / capacity) * 100 if capacity > 0 else 0
    fully_booked = occupied >= capacity

    if fully_booked:
        status = "fully_booked"
    elif occupied > 0:
        status = "partially_occupied"
    else:
        status = "available"

    return Occupancy(
        capacity=capacity,
        occupied_slots=occupied,
        available_slots=max(0, capacity - occupied),
        occupancy_percentage=_round_half_up(percentage),
        is_fully_booked=fully_booked,
        status=status,
        over_capacity=occupied > capacity,
    )


def rental_units(start: date, end: date, period: RentalPeriod) -> int:
    """Billable units (days or whole months) for a stay, at least one."""
    if period is RentalPeriod.MONTHLY:
        return max(1, whole_months_between(start, end))
    return max(1, (end - start).days)


def calculate_total_price(
    start: Optional[date],
    end: Optional[date],
    rate: Optional[float],
    period: RentalPeriod,
) -> float:
    if not start or not end or not rate:
        return 0.0
    return rate * rental_units(start, end, period)


class RoomFilters(BaseModel):
    """Room list filters, as offered by the room search panel."""

    classification: Optional[str] = None
    rental_type: Optional[str] = None
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    search: Optional[str] = None
    sort: Optional[str] = None

    def as_query_params(self) -> dict:
        """Backend query parameters with empty values removed."""
        params = {
            "classification": self.classification,
            "rental_type": self.rental_type,
            "min_rate": self.min_rate,
            "max_rate": self.max_rate,
            "search": self.search,
        }
        return {k: v for k, v in params.items() if v}


def filter_rooms(rooms: List[Room], filters: RoomFilters) -> List[Room]:
    """Apply ``filters`` locally, in case the backend ignored some of them."""
    result = rooms
    if filters.classification:
        result = [r for r in result if r.classification.name == filters.classification]
    if filters.rental_type:
        result = [r for r in result if r.rental_type.name == filters.rental_type]
    if filters.min_rate is not None:
        result = [r for r in result if r.rate >= filters.min_rate]
    if filters.max_rate:
        result = [r for r in result if r.rate <= filters.max_rate]
    if filters.search:
        needle = filters.search.lower()
        result = [
            r for r in result
            if needle in r.name.lower() or needle in (r.description or "").lower()
        ]

    if filters.sort == SORT_PRICE_ASC:
        result = sorted(result, key=lambda r: r.rate)
    elif filters.sort == SORT_PRICE_DESC:
        result = sorted(result, key=lambda r: r.rate, reverse=True)
    elif filters.sort == SORT_NAME:
        result = sorted(result, key=lambda r: r.name.lower())
    return list(result)


def price_range(rooms: List[Room]) -> Optional[Tuple[float, float]]:
    if not rooms:
        return None
    rates = [r.rate for r in rooms]
    return min(rates), max(rates)
