"""Rusunawa backend client utilities.

This module wraps the rusunawa backend REST API (rooms, availability,
capacity, rates, bookings, invoices, payments, documents and tenant
authentication) behind a small synchronous client built on ``httpx``. It
encapsulates retry logic with exponential back-off for transient GET
errors and is careful never to log tokens or passwords. All connection
settings come from ``rusunawa.config``.

Every method returns parsed models from ``rusunawa.models``; raw payloads
do not leave this module except through ``rusunawa.normalize``.
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx

from . import normalize
from .config import Settings, settings as default_settings
from .errors import ApiError, ApiUnavailable, PayloadError
from .models import (
    Booking,
    BookingDraft,
    Invoice,
    Payment,
    RentalType,
    Room,
    Tenant,
    TenantDocument,
    TenantRegistration,
)

logger = logging.getLogger(__name__)

# Status codes worth retrying for idempotent requests.
TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


def _iso(d: date) -> str:
    return d.isoformat()


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        status = body.get("status")
        if isinstance(status, dict) and status.get("message"):
            return str(status["message"])
        if body.get("message"):
            return str(body["message"])
    return fallback


class PortalApiClient:
    """Synchronous client for the rusunawa backend API.

    A bearer ``token`` is passed per call rather than stored, so a single
    client can serve every tenant session in the process.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=time.sleep,
    ) -> None:
        self.config = config or default_settings
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=self.config.api_base_url.rstrip("/"),
            timeout=self.config.api_timeout_seconds,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    # -- transport -------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        retries = self.config.api_max_retries if method == "GET" else 0
        attempt = 0
        while True:
            logger.debug("API request %s %s params=%s", method, path, params)
            try:
                response = self._http.request(method, path, params=params, json=json, headers=headers)
            except httpx.HTTPError as exc:
                logger.error("API connection error for %s %s: %s", method, path, exc)
                raise ApiUnavailable(f"Server connection error: {exc}") from exc

            status = response.status_code
            attempt += 1
            if attempt <= retries and status in TRANSIENT_STATUSES:
                delay = self.config.api_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "API %s %s transient error (status=%s), retrying in %.1fs (attempt %s/%s)",
                    method,
                    path,
                    status,
                    delay,
                    attempt,
                    retries,
                )
                self._sleep(delay)
                continue
            break

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"message": response.text}
        logger.debug("API response %s %s status=%s", method, path, status)

        if not 200 <= status < 300:
            logger.error("API error for %s %s: status=%s", method, path, status)
            raise ApiError(status, _error_message(body, "An error occurred while connecting to the server"), body)
        message = normalize.envelope_error(body)
        if message is not None:
            raise ApiError(status, message, body)
        return body

    # -- rooms -----------------------------------------------------------

    def list_rooms(self, params: Optional[Dict[str, Any]] = None) -> List[Room]:
        return normalize.parse_rooms(self._request("GET", "/rooms", params=params or None))

    def get_room(self, room_id: int) -> Room:
        return normalize.parse_room(self._request("GET", f"/rooms/{room_id}"))

    def get_room_availability(self, room_id: int, start: date, end: date) -> Dict[str, Any]:
        """Return the raw blocked-date payload for ``room_id`` in ``[start, end]``."""
        return self._request(
            "GET",
            f"/rooms/{room_id}/availability",
            params={"startDate": _iso(start), "endDate": _iso(end)},
        )

    def get_room_capacity(self, room_id: int, start: date, end: date) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/rooms/{room_id}/capacity",
            params={"startDate": _iso(start), "endDate": _iso(end)},
        )

    def get_rate(self, tenant_id: int, room_id: int, rental_type_id: int, *, token: Optional[str] = None) -> float:
        body = self._request(
            "GET",
            f"/rooms/{room_id}/rates",
            token=token,
            params={"tenantId": tenant_id, "rentalTypeId": rental_type_id},
        )
        return normalize.parse_rate_amount(body)

    def list_rental_types(self) -> List[RentalType]:
        try:
            body = self._request("GET", "/rental-types")
        except ApiError as exc:
            logger.warning("Rental types unavailable (%s), using defaults", exc)
            body = {}
        return normalize.parse_rental_types(body)

    # -- bookings --------------------------------------------------------

    def create_booking(
        self,
        token: str,
        draft: BookingDraft,
        *,
        rental_type_id: Optional[int] = None,
        total_amount: Optional[float] = None,
    ) -> Booking:
        """Submit ``draft`` and return the booking the backend recorded.

        The backend answers in one of three shapes: a ``booking`` object, a
        success envelope with a ``bookingId``, or a bare success envelope.
        For the last one the tenant's most recent booking is fetched.
        """
        if draft.tenant_id is None or draft.start_date is None or draft.end_date is None:
            raise ValueError("Booking draft is incomplete")
        payload: Dict[str, Any] = {
            "tenantId": draft.tenant_id,
            "roomId": draft.room_id,
            "checkInDate": _iso(draft.start_date),
            "checkOutDate": _iso(draft.end_date),
        }
        if rental_type_id:
            payload["rentalTypeId"] = rental_type_id
        if total_amount:
            payload["totalAmount"] = total_amount
        if draft.notes:
            payload["notes"] = draft.notes

        body = self._request("POST", "/bookings", token=token, json=payload)
        if isinstance(body, dict) and isinstance(body.get("booking"), dict):
            return normalize.parse_booking(body["booking"])
        if normalize.envelope_ok(body):
            if body.get("bookingId") is not None:
                return normalize.parse_booking({**payload, "bookingId": body["bookingId"]})
            latest = self.list_tenant_bookings(token, draft.tenant_id, page=1, limit=1)
            if latest:
                return latest[0]
            return normalize.parse_booking(payload)
        raise PayloadError("Unrecognised booking response", body)

    def list_tenant_bookings(self, token: str, tenant_id: int, *, page: int = 1, limit: int = 20) -> List[Booking]:
        body = self._request(
            "GET",
            f"/tenants/{tenant_id}/bookings",
            token=token,
            params={"page": page, "limit": limit},
        )
        return normalize.parse_bookings(body)

    def get_booking(self, token: str, booking_id: int) -> Booking:
        return normalize.parse_booking(self._request("GET", f"/bookings/{booking_id}", token=token))

    def cancel_booking(self, token: str, booking_id: int) -> Dict[str, Any]:
        return self._request("PUT", f"/bookings/{booking_id}/status", token=token, json={"status": "cancelled"})

    # -- invoices, payments and documents (read only) --------------------

    def list_tenant_invoices(
        self,
        token: str,
        tenant_id: int,
        *,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Invoice], Optional[int]]:
        """Return one page of the tenant's invoices and the backend's total count."""
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        body = self._request("GET", f"/tenants/{tenant_id}/invoices", token=token, params=params)
        return normalize.parse_invoices(body), normalize.parse_total_count(body)

    def list_tenant_payments(self, token: str, tenant_id: int, *, page: int = 1, limit: int = 10) -> List[Payment]:
        body = self._request(
            "GET",
            f"/tenants/{tenant_id}/payments",
            token=token,
            params={"page": page, "limit": limit},
        )
        return normalize.parse_payments(body)

    def check_payment_status(self, token: str, payment_id: int) -> Payment:
        """Ask the backend to refresh ``payment_id`` from the gateway and return it."""
        return normalize.parse_payment(self._request("GET", f"/payments/{payment_id}/check-status", token=token))

    def list_tenant_documents(self, token: str, tenant_id: int) -> List[TenantDocument]:
        return normalize.parse_documents(self._request("GET", f"/tenants/{tenant_id}/documents", token=token))

    # -- tenant authentication -------------------------------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Return the raw login payload; ``auth`` validates its shape."""
        return self._request("POST", "/tenant/auth/login", json={"email": email, "password": password})

    def register(self, registration: TenantRegistration) -> Dict[str, Any]:
        """Create a tenant account. The new tenant still has to log in."""
        return self._request("POST", "/tenant/auth/register", json=registration.model_dump(exclude_none=True))

    def verify_token(self, token: str) -> Dict[str, Any]:
        return self._request("GET", "/tenant/auth/verify", token=token)

    def logout(self, token: str) -> None:
        self._request("POST", "/tenant/auth/logout", token=token)

    def get_tenant(self, token: str, tenant_id: int) -> Tenant:
        return normalize.parse_tenant(self._request("GET", f"/tenants/{tenant_id}", token=token))


_client: Optional[PortalApiClient] = None


def get_client() -> PortalApiClient:
    """Return the process-wide client built from the global settings."""
    global _client
    if _client is None:
        _client = PortalApiClient()
    return _client
