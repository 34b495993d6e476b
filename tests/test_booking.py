"""
Tests for rusunawa.booking: the booking form state machine.
"""

from datetime import date

import httpx
import pytest

from rusunawa.booking import BookingFormController, BookingState
from rusunawa.errors import AuthenticationRequired, BookingStateError
from rusunawa.models import RentalPeriod, Tenant
from rusunawa.normalize import parse_room
from tests.payloads import failure, room_payload, success


TENANT = Tenant(tenant_id=7, name="Siti Aminah")


class ExplodingResolver:
    def resolve_for_room(self, tenant_id, room):
        raise RuntimeError("rate service exploded")


def _open_backend(backend, room_id=1, capacity_slots=1):
    backend.on("GET", f"/rooms/{room_id}/rates", json={"rate": 50000})
    backend.on("GET", f"/rooms/{room_id}/availability", json={"availability": []})
    backend.on("GET", f"/rooms/{room_id}/capacity", json={"is_available": True, "available_slots": capacity_slots})


def _booking_response(request):
    return httpx.Response(201, json={"booking": {"bookingId": 41, "roomId": 1, "tenantId": 7,
                                                 "checkInDate": "2025-03-12", "checkOutDate": "2025-03-15",
                                                 "status": "pending"}})


@pytest.fixture
def make_controller(api, validator):
    def make(room=None, tenant=TENANT, token="tok", **kwargs):
        room = room or parse_room(room_payload())
        return BookingFormController(room, tenant, api, token=token, validator=validator, **kwargs)

    return make


class TestSelectDates:
    def test_valid_dates_move_to_dates_selected(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        assert controller.select_dates("2025-03-12", "2025-03-15") is BookingState.DATES_SELECTED
        assert controller.draft.start_date == date(2025, 3, 12)
        assert controller.draft.end_date == date(2025, 3, 15)
        assert controller.errors == {}

    def test_daily_end_before_start_fails_without_api_call(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        assert controller.select_dates("2025-03-15", "2025-03-15") is BookingState.IDLE
        assert controller.errors["dates"]
        assert controller.check_availability() is BookingState.IDLE
        assert backend.calls("GET", "/rooms/1/availability") == []
        assert backend.calls("GET", "/rooms/1/capacity") == []
        assert controller.notices[-1].level == "error"

    def test_check_without_dates_records_error(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        controller.check_availability()
        assert controller.state is BookingState.IDLE
        assert "dates" in controller.errors
        assert backend.calls("GET", "/rooms/1/availability") == []

    def test_monthly_end_derived(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller(room=parse_room(room_payload(rental_type="bulanan")))
        controller.select_dates("2025-03-31")
        assert controller.draft.end_date == date(2025, 4, 30)

    def test_new_dates_discard_previous_result(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        controller.check_availability()
        assert controller.availability is not None
        controller.select_dates("2025-03-20", "2025-03-22")
        assert controller.state is BookingState.DATES_SELECTED
        assert controller.availability is None
        assert not controller.can_book


class TestCheckAvailability:
    def test_open_room_becomes_available(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller(room=parse_room(room_payload(capacity=1)))
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.AVAILABLE
        assert controller.can_book
        assert (BookingState.DATES_SELECTED, BookingState.CHECKING) in controller.history

    def test_full_room_at_capacity_even_with_open_dates(self, backend, make_controller):
        _open_backend(backend)
        room = parse_room(room_payload(capacity=2, occupants=["approved", "approved"]))
        controller = make_controller(room=room)
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.AT_CAPACITY
        assert controller.availability.is_date_available
        assert not controller.can_book

    def test_blocked_subrange_unavailable(self, backend, make_controller):
        _open_backend(backend)
        backend.on("GET", "/rooms/1/availability", json={
            "blockedRanges": [{"startDate": "2025-03-13", "endDate": "2025-03-13"}],
        })
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.UNAVAILABLE
        assert controller.notices[-1].title == "Room not available"

    def test_primary_failure_returns_to_dates_selected(self, backend, make_controller):
        _open_backend(backend)
        backend.on("GET", "/rooms/1/availability", status=500, json={"message": "boom"})
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.DATES_SELECTED
        assert controller.notices[-1].level == "error"
        assert controller.availability is None

    def test_capacity_warning_still_available(self, backend, make_controller):
        _open_backend(backend)
        backend.on("GET", "/rooms/1/capacity", status=500, json={"message": "down"})
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.AVAILABLE
        assert any(n.level == "warning" for n in controller.notices)

    def test_recheck_after_unavailable(self, backend, make_controller):
        _open_backend(backend)
        backend.on("GET", "/rooms/1/availability", json={"is_available": False})
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        controller.check_availability()
        backend.on("GET", "/rooms/1/availability", json={"availability": []})
        assert controller.check_availability() is BookingState.AVAILABLE


class TestRates:
    def test_rates_loaded_on_construction(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        assert controller.rates[RentalPeriod.DAILY].amount == 50000
        assert set(controller.rates) == {RentalPeriod.DAILY, RentalPeriod.MONTHLY}

    def test_estimated_total(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.estimated_total() == 150000

    def test_failing_resolver_leaves_price_unset_and_flow_continues(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller(resolver=ExplodingResolver())
        assert controller.rates == {}
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.estimated_total() == 0
        assert controller.check_availability() is BookingState.AVAILABLE

    def test_rate_endpoint_failure_gives_zero(self, backend, make_controller):
        _open_backend(backend)
        backend.on("GET", "/rooms/1/rates", status=500, json={"message": "down"})
        controller = make_controller()
        assert not controller.rates[RentalPeriod.DAILY].is_set
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.AVAILABLE

    def test_change_room_reloads_rates_and_resets(self, backend, make_controller):
        _open_backend(backend)
        _open_backend(backend, room_id=2)
        backend.on("GET", "/rooms/2/rates", json={"rate": 80000})
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        controller.change_room(parse_room(room_payload(room_id=2)))
        assert controller.state is BookingState.IDLE
        assert controller.draft.room_id == 2
        assert controller.draft.start_date is None
        assert controller.rates[RentalPeriod.DAILY].amount == 80000

    def test_change_tenant_reloads_rates(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        before = len(backend.calls("GET", "/rooms/1/rates"))
        controller.change_tenant(Tenant(tenant_id=8))
        calls = backend.calls("GET", "/rooms/1/rates")
        assert len(calls) == before + 2
        assert calls[-1].url.params["tenantId"] == "8"
        assert controller.draft.tenant_id == 8

    def test_no_tenant_no_rates(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller(tenant=None, token=None)
        assert controller.rates == {}
        assert backend.calls("GET", "/rooms/1/rates") == []


class TestSubmit:
    def _available(self, backend, make_controller, **kwargs):
        _open_backend(backend)
        controller = make_controller(room=parse_room(room_payload(capacity=1)), **kwargs)
        controller.select_dates("2025-03-12", "2025-03-15")
        assert controller.check_availability() is BookingState.AVAILABLE
        return controller

    def test_submit_confirms_and_clears_draft(self, backend, make_controller):
        controller = self._available(backend, make_controller)
        backend.on("POST", "/bookings", handler=_booking_response)
        assert controller.submit() is BookingState.CONFIRMED
        assert controller.confirmation.booking_id == 41
        assert controller.draft.start_date is None
        assert controller.draft.end_date is None
        assert controller.notices[-1].level == "success"
        assert (BookingState.AVAILABLE, BookingState.SUBMITTING) in controller.history

    def test_submit_sends_total(self, backend, make_controller):
        controller = self._available(backend, make_controller)
        backend.on("POST", "/bookings", handler=_booking_response)
        controller.submit()
        request = backend.calls("POST", "/bookings")[0]
        assert request.headers["Authorization"] == "Bearer tok"
        assert b'"totalAmount":150000.0' in request.content.replace(b" ", b"")

    def test_failure_returns_to_available_for_retry(self, backend, make_controller):
        controller = self._available(backend, make_controller)
        backend.on("POST", "/bookings", status=400, json=failure("Room already booked"))
        assert controller.submit() is BookingState.AVAILABLE
        assert (BookingState.SUBMITTING, BookingState.FAILED) in controller.history
        assert controller.notices[-1].message == "Room already booked"
        assert controller.submit_error.status_code == 400

        backend.on("POST", "/bookings", handler=_booking_response)
        assert controller.submit() is BookingState.CONFIRMED

    def test_unauthorized_raises_after_returning_to_available(self, backend, make_controller):
        controller = self._available(backend, make_controller)
        backend.on("POST", "/bookings", status=401, json={"message": "Unauthenticated"})
        with pytest.raises(AuthenticationRequired):
            controller.submit()
        assert controller.state is BookingState.AVAILABLE

    def test_submit_requires_token(self, backend, make_controller):
        controller = self._available(backend, make_controller, token=None)
        with pytest.raises(AuthenticationRequired):
            controller.submit()
        assert backend.calls("POST", "/bookings") == []

    @pytest.mark.parametrize("setup", ["idle", "dates_selected", "at_capacity"])
    def test_illegal_submit(self, backend, make_controller, setup):
        _open_backend(backend)
        room = parse_room(room_payload(capacity=1, occupants=["approved"]))
        controller = make_controller(room=room)
        if setup != "idle":
            controller.select_dates("2025-03-12", "2025-03-15")
        if setup == "at_capacity":
            controller.check_availability()
        with pytest.raises(BookingStateError):
            controller.submit()

    def test_check_after_confirmation_is_illegal(self, backend, make_controller):
        controller = self._available(backend, make_controller)
        backend.on("POST", "/bookings", json=success(bookingId=50))
        controller.submit()
        with pytest.raises(BookingStateError):
            controller.check_availability()


class TestSnapshot:
    def test_snapshot_is_serializable_view(self, backend, make_controller):
        _open_backend(backend)
        controller = make_controller()
        controller.select_dates("2025-03-12", "2025-03-15")
        controller.check_availability()
        snap = controller.snapshot()
        assert snap["state"] == "available"
        assert snap["canBook"] is True
        assert snap["draft"]["startDate"] == "2025-03-12"
        assert snap["rates"]["harian"]["amount"] == 50000
        assert snap["estimatedTotal"] == 150000
        assert snap["availability"]["isDateAvailable"] is True
        assert snap["occupancy"]["availableSlots"] == 1
        assert snap["confirmation"] is None
