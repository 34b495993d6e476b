"""Tenant authentication context.

A ``TenantSession`` is the only place a tenant's token and profile live.
Everything that cares about sign-in state subscribes to it instead of
reading copies of the token kept elsewhere. ``SessionStore`` maps opaque
session ids (the service's cookie value) to sessions and reaps the ones
left idle past their time to live. ``TenantAuthService`` talks to the
backend's registration, login, verify and logout endpoints.

Tokens are issued and verified by the backend only. This module forwards
them and never logs them.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from .api_client import PortalApiClient
from .config import Settings, settings as default_settings
from .errors import ApiError, ApiUnavailable, AuthenticationFailed, PayloadError
from .models import Tenant, TenantRegistration
from .normalize import envelope_ok, parse_tenant

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"


Listener = Callable[[AuthEvent, "TenantSession"], None]


class Credentials(NamedTuple):
    """Token and tenant read together from a session."""

    token: str
    tenant: Tenant


class TenantSession:
    """Token and profile for one signed-in tenant, with change listeners."""

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id
        self.token: Optional[str] = None
        self.tenant: Optional[Tenant] = None
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self.credentials() is not None

    def credentials(self) -> Optional[Credentials]:
        """Return the current token and tenant as one pair, or ``None``.

        Callers that need both values must use this rather than reading
        the attributes one at a time, since another request may sign the
        session out in between.
        """
        with self._lock:
            if not self.token or self.tenant is None:
                return None
            return Credentials(self.token, self.tenant)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable removes it again."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, self)
            except Exception:
                logger.exception("Auth listener failed on %s", event.value)

    def sign_in(self, token: str, tenant: Tenant) -> None:
        with self._lock:
            self.token = token
            self.tenant = tenant
        self._emit(AuthEvent.LOGIN)

    def sign_out(self) -> None:
        self._clear()
        self._emit(AuthEvent.LOGOUT)

    def expire(self, event: AuthEvent = AuthEvent.TOKEN_EXPIRED) -> None:
        self._clear()
        self._emit(event)

    def _clear(self) -> None:
        with self._lock:
            self.token = None
            self.tenant = None


class SessionStore:
    """Thread-safe, in-memory map of session id to ``TenantSession``.

    With a positive ``ttl_seconds`` a session not looked up for that long
    is dropped: ``get`` refuses it and ``create`` sweeps every such entry.
    Signed-in sessions dropped this way are expired so their listeners
    hear about it. ``clock`` must be monotonic.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, TenantSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def create(self) -> TenantSession:
        session = TenantSession(secrets.token_urlsafe(32))
        session.subscribe(self._on_auth_event)
        with self._lock:
            stale = self._pop_stale()
            self._sessions[session.session_id] = session
            self._last_seen[session.session_id] = self._clock()
        self._expire_all(stale)
        return session

    def get(self, session_id: Optional[str]) -> Optional[TenantSession]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            now = self._clock()
            if not self._is_stale(session_id, now):
                self._last_seen[session_id] = now
                return session
            self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        self._expire_all([session])
        return None

    def discard(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _is_stale(self, session_id: str, now: float) -> bool:
        if not self.ttl_seconds or self.ttl_seconds <= 0:
            return False
        return now - self._last_seen.get(session_id, now) >= self.ttl_seconds

    def _pop_stale(self) -> List[TenantSession]:
        # Caller holds self._lock.
        now = self._clock()
        stale_ids = [sid for sid in self._sessions if self._is_stale(sid, now)]
        stale = [self._sessions.pop(sid) for sid in stale_ids]
        for sid in stale_ids:
            self._last_seen.pop(sid, None)
        if stale:
            logger.info("Reaped %s idle session(s)", len(stale))
        return stale

    @staticmethod
    def _expire_all(sessions: List[TenantSession]) -> None:
        for session in sessions:
            if session.is_authenticated:
                session.expire(AuthEvent.TOKEN_EXPIRED)

    def _on_auth_event(self, event: AuthEvent, session: TenantSession) -> None:
        if event is not AuthEvent.LOGIN:
            self.discard(session.session_id)


class TenantAuthService:
    def __init__(self, client: PortalApiClient, config: Optional[Settings] = None) -> None:
        self.client = client
        self.config = config or default_settings

    def login(self, session: TenantSession, email: str, password: str) -> Tenant:
        """Sign ``session`` in with the backend; raise ``AuthenticationFailed`` otherwise."""
        try:
            body = self.client.login(email, password)
        except ApiUnavailable:
            raise
        except ApiError as exc:
            logger.info("Login rejected for %s (status=%s)", email, exc.status_code)
            raise AuthenticationFailed(exc.message or "Login failed") from exc

        token = body.get("token") if isinstance(body, dict) else None
        raw_tenant: Any = body.get("tenant") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationFailed("Invalid response from server: missing token")
        if not isinstance(raw_tenant, dict) or raw_tenant.get("id") is None or not raw_tenant.get("user"):
            raise AuthenticationFailed("Invalid response from server: missing tenant data")
        try:
            tenant = parse_tenant(raw_tenant)
        except PayloadError as exc:
            raise AuthenticationFailed("Invalid response from server: malformed tenant data") from exc

        session.sign_in(token, tenant)
        logger.info("Tenant %s signed in", tenant.tenant_id)
        return tenant

    def register(self, registration: TenantRegistration) -> str:
        """Create the tenant account and return the backend's message.

        Registration does not sign anyone in. Backend rejections (a taken
        email, for one) propagate as ``ApiError`` with the backend's message.
        """
        try:
            body = self.client.register(registration)
        except ApiUnavailable:
            raise
        except ApiError as exc:
            logger.warning("Registration failed for %s (status=%s): %s", registration.email, exc.status_code, exc.message)
            raise
        logger.info("Registered tenant account for %s", registration.email)
        message = body.get("message") if isinstance(body, dict) else None
        return message if isinstance(message, str) and message else "Registration successful! Please login."

    def verify(self, session: TenantSession) -> bool:
        """Check the session token with the backend.

        An unreachable backend does not sign the tenant out: the failure is
        logged and the session is treated as valid for this request.
        """
        creds = session.credentials()
        if creds is None:
            return False
        if self.config.skip_token_verification:
            return True
        try:
            body = self.client.verify_token(creds.token)
        except ApiUnavailable as exc:
            logger.warning("Token verification unavailable, continuing: %s", exc)
            return True
        except ApiError as exc:
            logger.info("Token rejected for tenant %s (status=%s)", creds.tenant.tenant_id, exc.status_code)
            session.expire(AuthEvent.TOKEN_INVALID)
            return False

        if not envelope_ok(body):
            session.expire(AuthEvent.TOKEN_INVALID)
            return False
        return True

    def session_from_token(self, token: str) -> TenantSession:
        """Build a session for a bearer token the caller already holds.

        The session is not stored; it lives for one request. The backend's
        verify response must carry the tenant profile.
        """
        try:
            body = self.client.verify_token(token)
        except ApiUnavailable:
            raise
        except ApiError as exc:
            raise AuthenticationFailed("Invalid or expired token") from exc
        if not envelope_ok(body) or not isinstance(body.get("tenant"), dict):
            raise AuthenticationFailed("Invalid or expired token")
        try:
            tenant = parse_tenant(body["tenant"])
        except PayloadError as exc:
            raise AuthenticationFailed("Invalid or expired token") from exc
        session = TenantSession()
        session.sign_in(token, tenant)
        return session

    def logout(self, session: TenantSession) -> None:
        creds = session.credentials()
        if creds is not None:
            try:
                self.client.logout(creds.token)
            except ApiError as exc:
                logger.warning("Backend logout failed, clearing session anyway: %s", exc)
        session.sign_out()
