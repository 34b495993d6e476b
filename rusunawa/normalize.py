"""Parsing of rusunawa backend payloads into the canonical models.

The backend is inconsistent about shapes: ids arrive as ``roomId``,
``room_id`` or ``id``, a tenant type is sometimes a string and sometimes an
object, and single resources may or may not be wrapped in an envelope. All
of that is handled here, once, right after each API call. Everything
downstream works with the models from ``rusunawa.models`` only.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .config import settings
from .dates import parse_date
from .errors import PayloadError
from .models import (
    Booking,
    Classification,
    DateSpan,
    Invoice,
    Occupant,
    Payment,
    RentalPeriod,
    RentalType,
    Room,
    Tenant,
    TenantDocument,
)

logger = logging.getLogger(__name__)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _unwrap(raw: Any, key: str) -> Any:
    if isinstance(raw, dict) and isinstance(raw.get(key), dict):
        return raw[key]
    return raw


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _date_or_none(value: Any):
    try:
        return parse_date(value)
    except ValueError:
        logger.debug("Ignoring unparseable date %r", value)
        return None


def canonical_name(value: Optional[str]) -> Optional[str]:
    """Lower-case, underscore-separated form of a backend enum name."""
    if value is None:
        return None
    return str(value).strip().replace("-", "_").replace(" ", "_").lower() or None


def parse_classification(raw: Any) -> Classification:
    if isinstance(raw, dict):
        return Classification(
            classification_id=_as_int(_first(raw, "classificationId", "classification_id", "id")),
            name=str(raw.get("name") or ""),
            display_name=_first(raw, "display_name", "displayName"),
        )
    if raw:
        return Classification(name=str(raw))
    return Classification()


def parse_rental_type(raw: Any) -> RentalType:
    """Map the backend rental type (object, name or id) onto a ``RentalType``."""
    if isinstance(raw, dict):
        type_id = _as_int(_first(raw, "rentalTypeId", "rental_type_id", "id"))
        name = canonical_name(raw.get("name"))
    elif isinstance(raw, int):
        type_id, name = raw, None
    else:
        type_id, name = None, canonical_name(raw)

    if name in ("monthly", RentalPeriod.MONTHLY.value):
        name = RentalPeriod.MONTHLY.value
    elif name in ("daily", RentalPeriod.DAILY.value):
        name = RentalPeriod.DAILY.value
    elif type_id == settings.monthly_rental_type_id:
        name = RentalPeriod.MONTHLY.value
    else:
        name = RentalPeriod.DAILY.value

    if type_id is None:
        type_id = (
            settings.monthly_rental_type_id
            if name == RentalPeriod.MONTHLY.value
            else settings.daily_rental_type_id
        )
    return RentalType(rental_type_id=type_id, name=name)


def parse_occupant(raw: Dict[str, Any]) -> Occupant:
    tenant = raw.get("tenant") if isinstance(raw.get("tenant"), dict) else {}
    user = tenant.get("user") if isinstance(tenant.get("user"), dict) else {}
    return Occupant(
        tenant_id=_as_int(_first(raw, "tenantId", "tenant_id") or _first(tenant, "tenantId", "id")),
        name=_first(raw, "name", "fullName") or _first(user, "fullName", "name"),
        status=canonical_name(raw.get("status")) or "",
        check_in=_date_or_none(_first(raw, "checkIn", "checkInDate", "check_in")),
        check_out=_date_or_none(_first(raw, "checkOut", "checkOutDate", "check_out")),
    )


def parse_room(raw: Any) -> Room:
    """Parse a room, either bare or wrapped as ``{"room": {...}}``."""
    raw = _unwrap(raw, "room")
    if not isinstance(raw, dict):
        raise PayloadError("Room payload is not an object", raw)
    room_id = _as_int(_first(raw, "roomId", "room_id", "id"))
    if room_id is None:
        raise PayloadError("Room payload has no id", raw)

    capacity = _as_int(raw.get("capacity"))
    if capacity is None or capacity <= 0:
        capacity = settings.default_room_capacity

    occupants = raw.get("occupants") or []
    try:
        return Room(
            room_id=room_id,
            name=str(raw.get("name") or f"Room {room_id}"),
            classification=parse_classification(raw.get("classification")),
            rental_type=parse_rental_type(_first(raw, "rentalType", "rental_type", "rentalTypeId")),
            rate=_as_float(raw.get("rate")),
            capacity=capacity,
            occupants=[parse_occupant(o) for o in occupants if isinstance(o, dict)],
            description=raw.get("description"),
        )
    except ValidationError as exc:
        raise PayloadError(f"Invalid room payload: {exc}", raw) from exc


def parse_rooms(raw: Any) -> List[Room]:
    items = raw.get("rooms") if isinstance(raw, dict) else raw
    if items is None:
        return []
    if not isinstance(items, list):
        raise PayloadError("Rooms payload is not a list", raw)
    return [parse_room(item) for item in items]


def parse_tenant(raw: Any) -> Tenant:
    """Parse a tenant profile in any of the shapes the backend produces."""
    raw = _unwrap(_unwrap(raw, "tenant"), "tenant")
    if not isinstance(raw, dict):
        raise PayloadError("Tenant payload is not an object", raw)
    tenant_id = _as_int(_first(raw, "tenantId", "tenant_id", "id"))
    if tenant_id is None:
        raise PayloadError("Tenant payload has no id", raw)

    user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
    tenant_type = _first(raw, "tenantType", "tenant_type")
    if isinstance(tenant_type, dict):
        tenant_type = tenant_type.get("name")

    return Tenant(
        tenant_id=tenant_id,
        name=_first(user, "fullName", "full_name", "name") or _first(raw, "fullName", "name"),
        email=_first(user, "email") or raw.get("email"),
        tenant_type=canonical_name(tenant_type),
        nim=raw.get("nim"),
        gender=raw.get("gender"),
    )


def parse_booking(raw: Any) -> Booking:
    raw = _unwrap(raw, "booking")
    if not isinstance(raw, dict):
        raise PayloadError("Booking payload is not an object", raw)
    total = _first(raw, "totalAmount", "total_amount", "amount")
    return Booking(
        booking_id=_as_int(_first(raw, "bookingId", "booking_id", "id")),
        room_id=_as_int(_first(raw, "roomId", "room_id")),
        tenant_id=_as_int(_first(raw, "tenantId", "tenant_id")),
        check_in_date=_date_or_none(_first(raw, "checkInDate", "startDate", "check_in")),
        check_out_date=_date_or_none(_first(raw, "checkOutDate", "endDate", "check_out")),
        total_amount=None if total is None else _as_float(total),
        status=canonical_name(raw.get("status")) if isinstance(raw.get("status"), str) else None,
        payment_status=canonical_name(_first(raw, "paymentStatus", "payment_status")) or "pending",
    )


def parse_bookings(raw: Any) -> List[Booking]:
    items = raw.get("bookings") if isinstance(raw, dict) else raw
    if not items:
        return []
    if not isinstance(items, list):
        raise PayloadError("Bookings payload is not a list", raw)
    return [parse_booking(item) for item in items]


def _listing(raw: Any, *keys: str) -> List[Dict[str, Any]]:
    """Return the list under the first of ``keys`` (or ``raw`` itself)."""
    items: Any = raw
    if isinstance(raw, dict):
        items = _first(raw, *keys)
    if not items:
        return []
    if not isinstance(items, list):
        raise PayloadError(f"Expected a list under {keys[0]!r}", raw)
    return [item for item in items if isinstance(item, dict)]


def _status(raw: Dict[str, Any]) -> Optional[str]:
    value = raw.get("status")
    return canonical_name(value) if isinstance(value, str) else None


def parse_total_count(raw: Any) -> Optional[int]:
    if not isinstance(raw, dict):
        return None
    return _as_int(_first(raw, "total_count", "totalCount", "total"))


def parse_invoice(raw: Any) -> Invoice:
    raw = _unwrap(raw, "invoice")
    if not isinstance(raw, dict):
        raise PayloadError("Invoice payload is not an object", raw)
    amount = _first(raw, "amount", "totalAmount", "total_amount")
    return Invoice(
        invoice_id=_as_int(_first(raw, "invoiceId", "invoice_id", "id")),
        invoice_no=_first(raw, "invoiceNo", "invoice_no", "invoiceNumber"),
        booking_id=_as_int(_first(raw, "bookingId", "booking_id")),
        amount=None if amount is None else _as_float(amount),
        issued_at=_date_or_none(_first(raw, "issuedAt", "issued_at", "createdAt", "created_at")),
        due_date=_date_or_none(_first(raw, "dueDate", "due_date")),
        status=_status(raw),
    )


def parse_invoices(raw: Any) -> List[Invoice]:
    return [parse_invoice(item) for item in _listing(raw, "invoices", "data")]


def parse_payment(raw: Any) -> Payment:
    raw = _unwrap(raw, "payment")
    if not isinstance(raw, dict):
        raise PayloadError("Payment payload is not an object", raw)
    amount = raw.get("amount")
    transaction_id = _first(raw, "transactionId", "transaction_id")
    return Payment(
        payment_id=_as_int(_first(raw, "paymentId", "payment_id", "id")),
        invoice_id=_as_int(_first(raw, "invoiceId", "invoice_id")),
        booking_id=_as_int(_first(raw, "bookingId", "booking_id")),
        amount=None if amount is None else _as_float(amount),
        status=_status(raw),
        payment_method=canonical_name(_first(raw, "paymentMethod", "payment_method")),
        payment_channel=_first(raw, "paymentChannel", "payment_channel"),
        transaction_id=None if transaction_id is None else str(transaction_id),
        payment_date=_date_or_none(_first(raw, "paymentDate", "payment_date", "paidAt", "paid_at")),
        created_at=_date_or_none(_first(raw, "createdAt", "created_at")),
        notes=raw.get("notes"),
    )


def parse_payments(raw: Any) -> List[Payment]:
    return [parse_payment(item) for item in _listing(raw, "payments", "data")]


def parse_document(raw: Any) -> TenantDocument:
    raw = _unwrap(raw, "document")
    if not isinstance(raw, dict):
        raise PayloadError("Document payload is not an object", raw)
    doc_type = _first(raw, "documentType", "document_type", "docType")
    type_name = doc_type.get("name") if isinstance(doc_type, dict) else doc_type
    doc_id = _first(raw, "docId", "doc_id", "documentId", "id")
    return TenantDocument(
        document_id=None if doc_id is None else str(doc_id),
        doc_type_id=_as_int(_first(raw, "docTypeId", "doc_type_id")),
        document_type=None if type_name is None else str(type_name),
        file_name=_first(raw, "fileName", "file_name"),
        status=_status(raw),
        notes=_first(raw, "notes", "description"),
        created_at=_date_or_none(_first(raw, "createdAt", "created_at")),
    )


def parse_documents(raw: Any) -> List[TenantDocument]:
    return [parse_document(item) for item in _listing(raw, "documents", "data")]


def envelope_error(raw: Any) -> Optional[str]:
    """Return the message of a ``{"status": {"status": "error"}}`` envelope."""
    if not isinstance(raw, dict):
        return None
    status = raw.get("status")
    if isinstance(status, dict) and status.get("status") == "error":
        return status.get("message") or raw.get("message") or "Request failed"
    return None


def envelope_ok(raw: Any) -> bool:
    if not isinstance(raw, dict):
        return False
    status = raw.get("status")
    return isinstance(status, dict) and status.get("status") == "success"


def parse_rate_amount(raw: Any) -> float:
    """Extract an amount from ``{"rate": n}``, ``{"rate": {"amount": n}}`` or ``{"amount": n}``."""
    if not isinstance(raw, dict):
        raise PayloadError("Rate payload is not an object", raw)
    value = raw.get("rate", raw.get("amount"))
    if isinstance(value, dict):
        value = value.get("amount", value.get("rate"))
    if value is None:
        raise PayloadError("Rate payload has no amount", raw)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"Rate amount {value!r} is not numeric", raw) from exc


def _span(entry: Dict[str, Any]) -> Optional[DateSpan]:
    single = _date_or_none(entry.get("date"))
    if single is not None:
        return DateSpan(start=single, end=single)
    start = _date_or_none(_first(entry, "startDate", "start_date", "start"))
    end = _date_or_none(_first(entry, "endDate", "end_date", "end")) or start
    if start is None:
        return None
    return DateSpan(start=start, end=end)


def parse_availability(raw: Any) -> tuple[bool, List[DateSpan]]:
    """Return ``(open_flag, blocked_spans)`` from an availability response.

    ``open_flag`` is False only when the backend explicitly says the room is
    unavailable for the whole request.
    """
    if not isinstance(raw, dict):
        raise PayloadError("Availability payload is not an object", raw)
    blocked: List[DateSpan] = []
    for entry in raw.get("availability") or []:
        if isinstance(entry, dict) and entry.get("isAvailable", entry.get("is_available", True)) is False:
            span = _span(entry)
            if span is not None:
                blocked.append(span)
    for entry in raw.get("blockedRanges") or raw.get("blocked_ranges") or []:
        if isinstance(entry, dict):
            span = _span(entry)
            if span is not None:
                blocked.append(span)
    open_flag = raw.get("is_available", raw.get("isAvailable", True)) is not False
    return open_flag, blocked


def parse_capacity(raw: Any) -> tuple[bool, int]:
    """Return ``(is_available, available_slots)`` from a capacity response."""
    if not isinstance(raw, dict):
        raise PayloadError("Capacity payload is not an object", raw)
    is_available = bool(raw.get("is_available", raw.get("isAvailable", False)))
    slots = _as_int(raw.get("available_slots", raw.get("availableSlots"))) or 0
    return is_available, slots


def parse_rental_types(raw: Any) -> List[RentalType]:
    items: Iterable[Any] = []
    if isinstance(raw, dict):
        items = raw.get("rentalTypes") or raw.get("rental_types") or []
    elif isinstance(raw, list):
        items = raw
    types = [parse_rental_type(item) for item in items if isinstance(item, dict)]
    if not types:
        types = [
            RentalType(rental_type_id=settings.daily_rental_type_id, name=RentalPeriod.DAILY.value),
            RentalType(rental_type_id=settings.monthly_rental_type_id, name=RentalPeriod.MONTHLY.value),
        ]
    return types
