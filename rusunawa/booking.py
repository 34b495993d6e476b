"""Booking form state machine shared by every page that can book a room.

One ``BookingFormController`` holds a single booking draft and moves it
through::

    idle -> dates_selected -> checking -> available | unavailable | at_capacity
    available -> submitting -> confirmed | failed (-> available)

Availability is only checked when asked for explicitly. Rates are fetched
when the controller is created and again whenever the room or tenant
changes. Nothing here is persisted: confirmed and failed outcomes live only
as long as the controller does.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .api_client import PortalApiClient
from .availability import AvailabilityChecker
from .dates import DateLike, DateRangeValidator
from .errors import (
    ApiError,
    AuthenticationRequired,
    AvailabilityCheckFailed,
    BookingStateError,
    PortalError,
)
from .models import (
    AvailabilityResult,
    Booking,
    BookingDraft,
    Notice,
    RateQuote,
    RentalPeriod,
    Room,
    Tenant,
)
from .occupancy import calculate_occupancy, calculate_total_price
from .rates import RateResolver

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    IDLE = "idle"
    DATES_SELECTED = "dates_selected"
    CHECKING = "checking"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    AT_CAPACITY = "at_capacity"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# States from which a new date selection or check may start.
_CHECKABLE = frozenset(
    {
        BookingState.DATES_SELECTED,
        BookingState.AVAILABLE,
        BookingState.UNAVAILABLE,
        BookingState.AT_CAPACITY,
    }
)


class BookingFormController:
    """Orchestrates date validation, availability, rates and submission."""

    def __init__(
        self,
        room: Room,
        tenant: Optional[Tenant],
        client: PortalApiClient,
        *,
        token: Optional[str] = None,
        validator: Optional[DateRangeValidator] = None,
        checker: Optional[AvailabilityChecker] = None,
        resolver: Optional[RateResolver] = None,
    ) -> None:
        self.room = room
        self.tenant = tenant
        self.client = client
        self.token = token
        self.validator = validator or DateRangeValidator()
        self.checker = checker or AvailabilityChecker(client)
        self.resolver = resolver or RateResolver(client, token=token)

        self.state = BookingState.IDLE
        self.history: List[Tuple[BookingState, BookingState]] = []
        self.draft = self._new_draft()
        self.rates: Dict[RentalPeriod, RateQuote] = {}
        self.availability: Optional[AvailabilityResult] = None
        self.confirmation: Optional[Booking] = None
        self.submit_error: Optional[PortalError] = None
        self.notices: List[Notice] = []
        self.errors: Dict[str, str] = {}
        self.load_rates()

    # -- helpers ---------------------------------------------------------

    def _new_draft(self) -> BookingDraft:
        return BookingDraft(
            room_id=self.room.room_id,
            tenant_id=self.tenant.tenant_id if self.tenant else None,
        )

    def _move(self, new_state: BookingState) -> None:
        logger.debug("Booking form for room %s: %s -> %s", self.room.room_id, self.state.value, new_state.value)
        self.history.append((self.state, new_state))
        self.state = new_state

    def _notify(self, level: str, title: str, message: str) -> None:
        self.notices.append(Notice(level=level, title=title, message=message))

    # -- dependencies ----------------------------------------------------

    def load_rates(self) -> Dict[RentalPeriod, RateQuote]:
        """Fetch rates for the current room and tenant; zero on any failure."""
        self.rates = {}
        if self.tenant is None:
            return self.rates
        try:
            self.rates = self.resolver.resolve_for_room(self.tenant.tenant_id, self.room)
        except Exception:
            logger.exception("Rate resolution failed for room %s", self.room.room_id)
            self.rates = {}
        return self.rates

    def change_room(self, room: Room) -> None:
        self.room = room
        self._reset()
        self.load_rates()

    def change_tenant(self, tenant: Optional[Tenant]) -> None:
        self.tenant = tenant
        self.draft.tenant_id = tenant.tenant_id if tenant else None
        self.load_rates()

    def _reset(self) -> None:
        self.draft = self._new_draft()
        self.availability = None
        self.errors = {}
        if self.state is not BookingState.IDLE:
            self._move(BookingState.IDLE)

    # -- transitions -----------------------------------------------------

    def select_dates(self, start_date: DateLike, end_date: DateLike = None) -> BookingState:
        if self.state is BookingState.SUBMITTING:
            raise BookingStateError("Cannot change dates while a booking is being submitted")

        self.availability = None
        self.errors = {}
        result = self.validator.validate(self.room, start_date, end_date)
        if not result.ok:
            self.draft.start_date = result.start_date
            self.draft.end_date = result.end_date
            self.errors["dates"] = result.error or "Invalid dates"
            self._notify("error", "Invalid dates", self.errors["dates"])
            if self.state is not BookingState.IDLE:
                self._move(BookingState.IDLE)
            return self.state

        self.draft.start_date = result.start_date
        self.draft.end_date = result.end_date
        self._move(BookingState.DATES_SELECTED)
        return self.state

    def check_availability(self) -> BookingState:
        if self.state not in _CHECKABLE:
            if self.state is BookingState.IDLE:
                message = self.errors.get("dates") or "Please select valid check-in and check-out dates."
                self.errors.setdefault("dates", message)
                self._notify("error", "Invalid dates", message)
                return self.state
            raise BookingStateError(f"Cannot check availability while {self.state.value}")

        if self.state is not BookingState.DATES_SELECTED:
            self._move(BookingState.DATES_SELECTED)
        self._move(BookingState.CHECKING)
        try:
            result = self.checker.check_availability(self.room, self.draft.start_date, self.draft.end_date)
        except AvailabilityCheckFailed as exc:
            self._notify("error", "Error", str(exc))
            self._move(BookingState.DATES_SELECTED)
            return self.state

        self.availability = result
        for warning in result.warnings:
            self._notify("warning", "Warning", warning)

        if not result.is_date_available:
            self._notify("error", "Room not available", "This room is blocked for the selected dates.")
            self._move(BookingState.UNAVAILABLE)
        elif not result.is_capacity_available:
            self._notify(
                "error",
                "Room at full capacity",
                "This room is fully booked for the selected dates. "
                f"Available slots: {result.available_slots or 0}",
            )
            self._move(BookingState.AT_CAPACITY)
        else:
            self._move(BookingState.AVAILABLE)
        return self.state

    def submit(self) -> BookingState:
        if self.state is not BookingState.AVAILABLE:
            raise BookingStateError(f"Cannot submit a booking while {self.state.value}")
        if self.tenant is None or not self.token:
            raise AuthenticationRequired("Please log in to book this room")

        self.submit_error = None
        self._move(BookingState.SUBMITTING)
        rental_type = self.room.rental_type
        try:
            booking = self.client.create_booking(
                self.token,
                self.draft,
                rental_type_id=rental_type.rental_type_id,
                total_amount=self.estimated_total() or None,
            )
        except ApiError as exc:
            self.submit_error = exc
            self._fail(exc.message)
            if exc.status_code == 401:
                raise AuthenticationRequired("Your session has expired. Please log in again.") from exc
            return self.state
        except PortalError as exc:
            self.submit_error = exc
            self._fail(str(exc))
            return self.state

        self.confirmation = booking
        self._notify("success", "Booking Successful", "Your room has been booked successfully!")
        self._move(BookingState.CONFIRMED)
        self.draft = self._new_draft()
        self.availability = None
        return self.state

    def _fail(self, message: str) -> None:
        logger.warning("Booking submission failed for room %s: %s", self.room.room_id, message)
        self._move(BookingState.FAILED)
        self._notify("error", "Booking Error", message or "Failed to process your booking. Please try again later.")
        self._move(BookingState.AVAILABLE)

    # -- views -----------------------------------------------------------

    @property
    def can_book(self) -> bool:
        return self.state is BookingState.AVAILABLE

    def current_rate(self) -> Optional[RateQuote]:
        return self.rates.get(self.room.rental_type.period)

    def estimated_total(self) -> float:
        quote = self.current_rate()
        amount = quote.amount if quote else 0.0
        return calculate_total_price(
            self.draft.start_date,
            self.draft.end_date,
            amount,
            self.room.rental_type.period,
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "canBook": self.can_book,
            "room": self.room.to_json(),
            "occupancy": None if self.room.is_meeting_room else calculate_occupancy(self.room).to_json(),
            "draft": self.draft.to_json(),
            "rates": {period.value: quote.to_json() for period, quote in self.rates.items()},
            "estimatedTotal": self.estimated_total(),
            "availability": self.availability.to_json() if self.availability else None,
            "confirmation": self.confirmation.to_json() if self.confirmation else None,
            "notices": [n.to_json() for n in self.notices],
            "errors": dict(self.errors),
        }
