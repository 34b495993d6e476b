"""Blocked-date and capacity checks for a booking request.

The backend is authoritative for both. Blocked dates come from the room's
availability endpoint and are only intersected with the requested range.
Capacity is checked for everything except meeting rooms, first against the
occupants we already know about and then against the backend's capacity
endpoint. A failing capacity lookup does not block a booking; it becomes a
warning, and the backend still has the final say when the booking is
submitted.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List

from .api_client import PortalApiClient
from .errors import ApiError, AvailabilityCheckFailed
from .models import AvailabilityResult, DateSpan, Room
from .normalize import parse_availability, parse_capacity
from .occupancy import calculate_occupancy

logger = logging.getLogger(__name__)

CAPACITY_WARNING = "Could not verify room capacity. Please check with administration."


class AvailabilityChecker:
    def __init__(self, client: PortalApiClient) -> None:
        self.client = client

    def check_availability(self, room: Room, start_date: date, end_date: date) -> AvailabilityResult:
        open_flag, spans = self._blocked_dates(room, start_date, end_date)
        clashes = [s for s in spans if s.intersects(start_date, end_date)]
        is_date_available = open_flag and not clashes

        if room.is_meeting_room:
            return AvailabilityResult(
                is_date_available=is_date_available,
                is_capacity_available=True,
                unavailable_dates=clashes,
            )

        occupancy = calculate_occupancy(room)
        if occupancy.is_fully_booked:
            return AvailabilityResult(
                is_date_available=is_date_available,
                is_capacity_available=False,
                available_slots=0,
                unavailable_dates=clashes,
            )

        warnings: List[str] = []
        capacity_checked = False
        is_capacity_available = True
        slots = occupancy.available_slots
        try:
            body = self.client.get_room_capacity(room.room_id, start_date, end_date)
            is_capacity_available, slots = parse_capacity(body)
            capacity_checked = True
        except ApiError as exc:
            logger.warning("Capacity check failed for room %s: %s", room.room_id, exc)
            warnings.append(CAPACITY_WARNING)

        return AvailabilityResult(
            is_date_available=is_date_available,
            is_capacity_available=is_capacity_available,
            available_slots=slots,
            unavailable_dates=clashes,
            capacity_checked=capacity_checked,
            warnings=warnings,
        )

    def _blocked_dates(self, room: Room, start_date: date, end_date: date) -> tuple[bool, List[DateSpan]]:
        try:
            body = self.client.get_room_availability(room.room_id, start_date, end_date)
            return parse_availability(body)
        except ApiError as exc:
            logger.error("Availability check failed for room %s: %s", room.room_id, exc)
            raise AvailabilityCheckFailed("Failed to check room availability.") from exc
