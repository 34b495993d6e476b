"""Main application entry point for the tenant portal booking service.

This module defines the FastAPI application, configures logging, keeps an
optional in-memory cache of the room list and exposes the booking
eligibility logic as a JSON API. The rusunawa backend stays authoritative
for everything: this service validates, checks and forwards.

Endpoints:
  - ``/healthz``: simple health check endpoint.
  - ``/api/rooms``: filtered room list with occupancy and price range.
  - ``/api/rooms/{id}``: room detail, with tenant rates when signed in.
  - ``/api/rental-types``: rental types known to the backend.
  - ``/api/tenant/login``, ``/api/tenant/logout``, ``/api/tenant/me``:
    tenant session handling.
  - ``/api/tenant/register``: tenant sign-up, forwarded to the backend.
  - ``/api/tenant/bookings``: the signed-in tenant's bookings, booking
    detail and cancellation.
  - ``/api/tenant/invoices``, ``/api/tenant/payments``,
    ``/api/tenant/documents``: read-only billing and document listings.
  - ``/api/rooms/{id}/eligibility``: date validation plus availability check.
  - ``/api/bookings``: validate, check and submit a booking in one call.

Tenant sessions are held in memory, identified by an opaque cookie and
dropped after ``SESSION_TTL_SECONDS`` of inactivity; a bearer token is
accepted too. Backend failures while listing rooms are captured and
surfaced via the ``lastError`` field, serving the previous list when one
is cached.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .api_client import PortalApiClient, get_client
from .auth import AuthEvent, Credentials, SessionStore, TenantAuthService, TenantSession
from .booking import BookingFormController, BookingState
from .config import settings
from .dates import DateRangeValidator
from .errors import (
    ApiError,
    ApiUnavailable,
    AuthenticationFailed,
    AuthenticationRequired,
    BookingStateError,
    PayloadError,
    PortalError,
)
from .models import PortalModel, Room, TenantRegistration
from .occupancy import RoomFilters, calculate_occupancy, filter_rooms, price_range
from .rates import RateResolver

logger = logging.getLogger("rusunawa")
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="Rusunawa Tenant Portal Service")

# CORS is off by default because the portal pages and the API share an origin.
if settings.enable_cors.lower() in {"1", "true", "yes"}:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=False,
    )

_cache_lock = threading.Lock()
_cache: Dict[str, Any] = {
    "rooms": {},
    "last_error": None,
}

_sessions = SessionStore(settings.session_ttl_seconds)


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def _cache_fresh(ts: Optional[datetime], max_age_seconds: int) -> bool:
    """Return True if the timestamp ``ts`` is within ``max_age_seconds`` of now."""
    if ts is None:
        return False
    return (_utcnow() - ts).total_seconds() < max_age_seconds


# -- dependencies --------------------------------------------------------


def get_api_client() -> PortalApiClient:
    return get_client()


def get_session_store() -> SessionStore:
    return _sessions


def get_validator() -> DateRangeValidator:
    return DateRangeValidator()


def get_auth_service(client: PortalApiClient = Depends(get_api_client)) -> TenantAuthService:
    return TenantAuthService(client, client.config)


def current_session(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    auth: TenantAuthService = Depends(get_auth_service),
) -> Optional[TenantSession]:
    """Return the caller's verified session, or ``None``.

    The session cookie is tried first. A bearer token builds a session for
    this request only.
    """
    session = store.get(request.cookies.get(settings.session_cookie_name))
    if session is not None:
        return session if auth.verify(session) else None

    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        try:
            return auth.session_from_token(token.strip())
        except AuthenticationFailed:
            return None
        except ApiError as exc:
            raise _http_error(exc)
    return None


def require_session(session: Optional[TenantSession] = Depends(current_session)) -> TenantSession:
    if session is None or not session.is_authenticated:
        raise HTTPException(status_code=401, detail="Please log in to continue")
    return session


def require_credentials(session: TenantSession = Depends(require_session)) -> Credentials:
    """Token and tenant of the caller, read once so a concurrent logout cannot split them."""
    creds = session.credentials()
    if creds is None:
        raise HTTPException(status_code=401, detail="Please log in to continue")
    return creds


def _http_error(exc: PortalError) -> HTTPException:
    """Map a package error onto the HTTP status the caller should see."""
    if isinstance(exc, (AuthenticationRequired, AuthenticationFailed)):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, BookingStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ApiUnavailable):
        return HTTPException(status_code=503, detail=exc.message)
    if isinstance(exc, PayloadError):
        return HTTPException(status_code=502, detail=exc.message)
    if isinstance(exc, ApiError):
        status = exc.status_code if 400 <= exc.status_code < 500 else 502
        return HTTPException(status_code=status, detail=exc.message)
    return HTTPException(status_code=500, detail=str(exc))


# -- rooms ---------------------------------------------------------------


def _store_rooms(key: Tuple[Hashable, ...], rooms: List[Room]) -> None:
    """Record ``rooms`` under ``key``, keeping at most ``ROOMS_CACHE_MAX_ENTRIES`` queries.

    Entries are kept oldest first, so eviction drops the least recently
    refreshed query. Callers hold ``_cache_lock``.
    """
    entries: Dict[Tuple[Hashable, ...], Tuple[List[Room], datetime]] = _cache["rooms"]
    entries.pop(key, None)
    entries[key] = (rooms, _utcnow())
    limit = max(1, settings.rooms_cache_max_entries)
    while len(entries) > limit:
        del entries[next(iter(entries))]


def _get_rooms_cached(client: PortalApiClient, params: Dict[str, Any]) -> List[Room]:
    """Retrieve rooms for ``params``, using the cache if it is fresh.

    With ``ROOMS_CACHE_SECONDS`` at 0 every call goes to the backend. A
    failed refresh records ``last_error`` and serves the previous list for
    the same query when there is one.
    """
    max_age = settings.rooms_cache_seconds
    key: Tuple[Hashable, ...] = tuple(sorted(params.items()))
    if max_age > 0:
        with _cache_lock:
            entry = _cache["rooms"].get(key)
            if entry is not None and _cache_fresh(entry[1], max_age):
                return entry[0]
    try:
        rooms = client.list_rooms(params)
        with _cache_lock:
            if max_age > 0:
                _store_rooms(key, rooms)
            _cache["last_error"] = None
        return rooms
    except ApiError as exc:
        logger.exception("Error fetching rooms: %s", exc)
        with _cache_lock:
            _cache["last_error"] = f"ROOMS_ERROR: {exc}"
            entry = _cache["rooms"].get(key)
            if entry is not None:
                return entry[0]
        raise


def _room_view(room: Room) -> Dict[str, Any]:
    view = room.to_json()
    view["isMeetingRoom"] = room.is_meeting_room
    view["occupancy"] = None if room.is_meeting_room else calculate_occupancy(room).to_json()
    return view


@app.get("/api/rooms")
def api_rooms(
    classification: Optional[str] = None,
    rental_type: Optional[str] = None,
    min_rate: Optional[float] = None,
    max_rate: Optional[float] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    client: PortalApiClient = Depends(get_api_client),
) -> Dict[str, Any]:
    """Return rooms matching the search panel filters."""
    filters = RoomFilters(
        classification=classification,
        rental_type=rental_type,
        min_rate=min_rate,
        max_rate=max_rate,
        search=search,
        sort=sort,
    )
    try:
        rooms = _get_rooms_cached(client, filters.as_query_params())
    except ApiError as exc:
        raise _http_error(exc)
    rooms = filter_rooms(rooms, filters)
    bounds = price_range(rooms)
    with _cache_lock:
        last_error = _cache.get("last_error")
    return {
        "count": len(rooms),
        "items": [_room_view(r) for r in rooms],
        "priceRange": {"min": bounds[0], "max": bounds[1]} if bounds else None,
        "lastError": last_error,
    }


@app.get("/api/rooms/{room_id}")
def api_room_detail(
    room_id: int,
    client: PortalApiClient = Depends(get_api_client),
    session: Optional[TenantSession] = Depends(current_session),
) -> Dict[str, Any]:
    """Return one room. Signed-in tenants also get their rates for it."""
    try:
        room = client.get_room(room_id)
    except ApiError as exc:
        raise _http_error(exc)
    payload: Dict[str, Any] = {"room": _room_view(room), "rates": None}
    creds = session.credentials() if session is not None else None
    if creds is not None:
        quotes = RateResolver(client, token=creds.token).resolve_for_room(creds.tenant.tenant_id, room)
        payload["rates"] = {period.value: quote.to_json() for period, quote in quotes.items()}
    return payload


@app.get("/api/rental-types")
def api_rental_types(client: PortalApiClient = Depends(get_api_client)) -> Dict[str, Any]:
    try:
        types = client.list_rental_types()
    except ApiError as exc:
        raise _http_error(exc)
    return {"items": [t.to_json() for t in types]}


# -- tenant session ------------------------------------------------------


class LoginRequest(BaseModel):
    email: str
    password: str


@app.post("/api/tenant/register", status_code=201)
def api_register(
    body: TenantRegistration,
    auth: TenantAuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    """Create a tenant account. The caller logs in separately afterwards."""
    try:
        message = auth.register(body)
    except ApiError as exc:
        raise _http_error(exc)
    return {"ok": True, "message": message}


@app.post("/api/tenant/login")
def api_login(
    body: LoginRequest,
    response: Response,
    store: SessionStore = Depends(get_session_store),
    auth: TenantAuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    session = store.create()
    try:
        tenant = auth.login(session, body.email, body.password)
    except (AuthenticationFailed, ApiError) as exc:
        store.discard(session.session_id)
        raise _http_error(exc)
    response.set_cookie(
        settings.session_cookie_name,
        session.session_id,
        httponly=True,
        samesite="lax",
        max_age=settings.session_ttl_seconds or None,
    )
    return {"tenant": tenant.to_json()}


@app.post("/api/tenant/logout")
def api_logout(
    response: Response,
    session: TenantSession = Depends(require_session),
    auth: TenantAuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    auth.logout(session)
    response.delete_cookie(settings.session_cookie_name)
    return {"ok": True}


@app.get("/api/tenant/me")
def api_me(creds: Credentials = Depends(require_credentials)) -> Dict[str, Any]:
    return {"tenant": creds.tenant.to_json()}


def _expire_on_401(session: TenantSession, exc: ApiError) -> None:
    if exc.status_code == 401:
        session.expire(AuthEvent.TOKEN_EXPIRED)


@app.get("/api/tenant/bookings")
def api_tenant_bookings(
    page: int = 1,
    limit: int = 20,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    try:
        bookings = client.list_tenant_bookings(creds.token, creds.tenant.tenant_id, page=page, limit=limit)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    return {"count": len(bookings), "items": [b.to_json() for b in bookings]}


@app.get("/api/tenant/bookings/{booking_id}")
def api_tenant_booking_detail(
    booking_id: int,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    """Return one booking, only if it belongs to the signed-in tenant."""
    try:
        booking = client.get_booking(creds.token, booking_id)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    if booking.tenant_id is not None and booking.tenant_id != creds.tenant.tenant_id:
        logger.warning("Tenant %s asked for booking %s of another tenant", creds.tenant.tenant_id, booking_id)
        raise HTTPException(status_code=404, detail="Booking not found")
    return {"booking": booking.to_json()}


@app.post("/api/tenant/bookings/{booking_id}/cancel")
def api_cancel_booking(
    booking_id: int,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    try:
        client.cancel_booking(creds.token, booking_id)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    logger.info("Tenant %s cancelled booking %s", creds.tenant.tenant_id, booking_id)
    return {"ok": True, "bookingId": booking_id, "status": "cancelled"}


# -- billing and documents -----------------------------------------------


@app.get("/api/tenant/invoices")
def api_tenant_invoices(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    try:
        invoices, total = client.list_tenant_invoices(
            creds.token, creds.tenant.tenant_id, status=status, page=page, limit=limit
        )
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    return {
        "count": len(invoices),
        "totalCount": total if total is not None else len(invoices),
        "page": page,
        "items": [i.to_json() for i in invoices],
    }


@app.get("/api/tenant/payments")
def api_tenant_payments(
    page: int = 1,
    limit: int = 10,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    try:
        payments = client.list_tenant_payments(creds.token, creds.tenant.tenant_id, page=page, limit=limit)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    return {"count": len(payments), "items": [p.to_json() for p in payments]}


@app.get("/api/tenant/payments/{payment_id}/status")
def api_payment_status(
    payment_id: int,
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    """Refresh one payment's status through the backend and report it."""
    try:
        payment = client.check_payment_status(creds.token, payment_id)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    return {"payment": payment.to_json(), "isSettled": payment.is_settled}


@app.get("/api/tenant/documents")
def api_tenant_documents(
    client: PortalApiClient = Depends(get_api_client),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    try:
        documents = client.list_tenant_documents(creds.token, creds.tenant.tenant_id)
    except ApiError as exc:
        _expire_on_401(session, exc)
        raise _http_error(exc)
    approved = sum(1 for d in documents if d.status == "approved")
    return {"count": len(documents), "approvedCount": approved, "items": [d.to_json() for d in documents]}


# -- booking flow --------------------------------------------------------


class DateSelection(PortalModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class BookingRequest(DateSelection):
    room_id: int
    notes: Optional[str] = None


def _controller(
    room_id: int,
    creds: Credentials,
    client: PortalApiClient,
    validator: DateRangeValidator,
) -> BookingFormController:
    try:
        room = client.get_room(room_id)
    except ApiError as exc:
        raise _http_error(exc)
    return BookingFormController(room, creds.tenant, client, token=creds.token, validator=validator)


@app.post("/api/rooms/{room_id}/eligibility")
def api_eligibility(
    room_id: int,
    body: DateSelection,
    client: PortalApiClient = Depends(get_api_client),
    validator: DateRangeValidator = Depends(get_validator),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    """Validate the dates and check availability without booking."""
    controller = _controller(room_id, creds, client, validator)
    if controller.select_dates(body.start_date, body.end_date) is BookingState.DATES_SELECTED:
        controller.check_availability()
    return controller.snapshot()


@app.post("/api/bookings", status_code=201)
def api_create_booking(
    body: BookingRequest,
    client: PortalApiClient = Depends(get_api_client),
    validator: DateRangeValidator = Depends(get_validator),
    session: TenantSession = Depends(require_session),
    creds: Credentials = Depends(require_credentials),
) -> Dict[str, Any]:
    controller = _controller(body.room_id, creds, client, validator)
    if controller.select_dates(body.start_date, body.end_date) is not BookingState.DATES_SELECTED:
        raise HTTPException(status_code=422, detail=controller.snapshot())
    controller.draft.notes = body.notes
    if controller.check_availability() is not BookingState.AVAILABLE:
        raise HTTPException(status_code=409, detail=controller.snapshot())

    try:
        controller.submit()
    except AuthenticationRequired as exc:
        session.expire(AuthEvent.TOKEN_EXPIRED)
        raise _http_error(exc)
    except BookingStateError as exc:
        raise _http_error(exc)

    if controller.state is not BookingState.CONFIRMED:
        raise _http_error(controller.submit_error or ApiError(502, "Booking failed"))
    return {"booking": controller.confirmation.to_json(), "form": controller.snapshot()}


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return {"ok": True, "time": _utcnow().isoformat().replace("+00:00", "Z")}
