"""OAuth token lifecycle for dual-instance tenant sessions."""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union
from datetime import datetime, timezone

import requests
from dateutil import parser as date_parser

from ..errors import (
    NoRefreshTokenError,
    TokenExchangeFailedError,
    UpstreamUnavailableError,
)
from ..extractors.base import create_session, error_message
from ..models.migration import MigrationConfig
from ..models.session import Tenant, TenantSession, TokenState, mask, profile_field
from ..stores.base import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass
class _CachedToken:
    token: str
    cached_until: float  # end of the shortened cache window
    expires_at: float  # real expiry reported upstream


class _Flight:
    """One in-flight refresh shared by every caller waiting on the same key."""

    def __init__(self, generation: int):
        self.generation = generation
        self.done = threading.Event()
        self.token: Optional[str] = None
        self.error: Optional[BaseException] = None


def to_epoch(value: Union[None, int, float, str, datetime]) -> Optional[float]:
    """Convert an expiry given as epoch seconds, datetime or ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        when = value
    elif isinstance(value, (int, float)):
        return float(value)
    else:
        try:
            return float(value)
        except ValueError:
            when = date_parser.parse(value)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp()


class TokenLifecycleManager:
    """
    Keeps per-session access tokens valid.

    Session keys are ``"{user_id}_{instance}"``. Access tokens are cached for
    ``ttl_factor`` of their real lifetime so they are refreshed well before
    upstream rejects them. Refreshes are single-flight per key: concurrent
    callers that miss the cache share one upstream call.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        token_url: str = "https://api.hubapi.com/oauth/v1/token",
        timeout: float = 30.0,
        ttl_factor: float = 0.75,
        store: Optional[ProfileStore] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        max_retries: int = 3
    ):
        """
        Initialize the token manager.

        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            redirect_uri: Redirect URI registered with the OAuth app
            token_url: OAuth token endpoint
            timeout: Request timeout in seconds
            ttl_factor: Fraction of the real lifetime a token stays cached
            store: Profile store refreshed tokens are written back to
            session: Custom requests session
            clock: Returns the current time in epoch seconds
            max_retries: Connection-level retries
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.timeout = timeout
        self.ttl_factor = min(ttl_factor, 0.75)
        self.store = store
        self.clock = clock
        self._session = session or create_session(max_retries)

        self._lock = threading.Lock()
        self._access: Dict[str, _CachedToken] = {}
        self._refresh: Dict[str, str] = {}
        self._generation: Dict[str, int] = {}
        self._inflight: Dict[str, _Flight] = {}
        self._invalidated = set()

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        store: Optional[ProfileStore] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None
    ) -> "TokenLifecycleManager":
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            token_url=config.token_url,
            timeout=config.request_timeout,
            ttl_factor=config.token_ttl_factor,
            store=store,
            session=session,
            clock=clock or time.time,
            max_retries=config.max_retries,
        )

    # Token access

    def get_access_token(self, session_key: str) -> str:
        """
        Return a valid access token, refreshing it when the cache window lapsed.

        Raises:
            NoRefreshTokenError: When no refresh token is on file for the key
            TokenExchangeFailedError: When the token endpoint rejects the refresh
            UpstreamUnavailableError: On timeout or connection failure
        """
        with self._lock:
            entry = self._access.get(session_key)
            if entry and self.clock() < entry.cached_until:
                return entry.token

            flight = self._inflight.get(session_key)
            leader = flight is None
            if leader:
                refresh_token = self._refresh.get(session_key)
                if not refresh_token:
                    raise NoRefreshTokenError(session_key)
                flight = _Flight(self._generation.get(session_key, 0))
                self._inflight[session_key] = flight

        if not leader:
            logger.debug(f"Waiting on in-flight refresh for {session_key}")
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.token

        return self._run_refresh(session_key, refresh_token, flight)

    def get_tenant_token(self, tenant: Tenant) -> str:
        """Access token for a tenant, seeding from the profile store on first use."""
        key = tenant.session_key
        if self.store is not None and not self.has_refresh_token(key) and key not in self._invalidated:
            self.seed_from_profile(tenant, self.store.read_profile(tenant.user_id))
        return self.get_access_token(key)

    def _run_refresh(self, session_key: str, refresh_token: str, flight: _Flight) -> str:
        logger.info(f"Refreshing access token for {session_key} (refresh token {mask(refresh_token)})")
        cached = None
        try:
            payload = self._request_token({
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "refresh_token": refresh_token,
            })
            with self._lock:
                cached = self._make_entry(payload)
                if self._generation.get(session_key, 0) == flight.generation:
                    self._access[session_key] = cached
                else:
                    logger.info(f"Session {session_key} was invalidated during refresh; not caching")
                    cached = None
                flight.token = payload["access_token"]
        except Exception as e:
            flight.error = e
            logger.error(f"Token refresh failed for {session_key}: {e}")
            raise
        finally:
            with self._lock:
                if self._inflight.get(session_key) is flight:
                    del self._inflight[session_key]
            flight.done.set()

        if cached is not None:
            self._write_back(session_key, cached)
        return flight.token

    def _make_entry(self, payload: Dict[str, Any]) -> _CachedToken:
        now = self.clock()
        expires_in = float(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        return _CachedToken(
            token=payload["access_token"],
            cached_until=now + expires_in * self.ttl_factor,
            expires_at=now + expires_in,
        )

    def _request_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a form-encoded grant to the token endpoint."""
        try:
            response = self._session.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise UpstreamUnavailableError("Timed out calling the token endpoint")
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailableError(f"Could not reach the token endpoint: {e}")

        if response.status_code >= 500:
            raise UpstreamUnavailableError(error_message(response), upstream_status=response.status_code)
        if response.status_code >= 400:
            raise TokenExchangeFailedError(error_message(response), upstream_status=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            raise TokenExchangeFailedError("Token endpoint returned a non-JSON body", response.status_code)
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenExchangeFailedError("Token endpoint response has no access_token", response.status_code)
        return payload

    def _write_back(self, session_key: str, cached: _CachedToken, refresh_token: Optional[str] = None) -> None:
        """Persist a new access token to the profile store. Failures are logged only."""
        tenant = Tenant.from_session_key(session_key)
        if self.store is None or tenant is None:
            return

        fields = {
            profile_field("access_token", tenant.instance): cached.token,
            profile_field("access_token_expires_at", tenant.instance):
                datetime.fromtimestamp(cached.expires_at, tz=timezone.utc).isoformat(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if refresh_token:
            fields[profile_field("refresh_token", tenant.instance)] = refresh_token

        try:
            self.store.update_profile(tenant.user_id, fields)
        except Exception as e:
            logger.error(f"Failed to persist tokens for {session_key}: {e}")

    # Session lifecycle

    def exchange_code(self, session_key: str, code: str) -> TenantSession:
        """
        Complete an OAuth authorization: trade a code for a fresh token pair.

        The returned refresh token replaces any previous one for the key.
        """
        payload = self._request_token({
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code": code,
        })
        refresh_token = payload.get("refresh_token")
        if not refresh_token:
            raise TokenExchangeFailedError("Token endpoint response has no refresh_token")

        with self._lock:
            cached = self._make_entry(payload)
            self._generation[session_key] = self._generation.get(session_key, 0) + 1
            self._invalidated.discard(session_key)
            self._refresh[session_key] = refresh_token
            self._access[session_key] = cached

        logger.info(f"Authorized session {session_key} (access token {mask(cached.token)})")
        self._write_back(session_key, cached, refresh_token=refresh_token)
        return self.session(session_key)

    def seed_tokens(
        self,
        session_key: str,
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
        expires_at: Union[None, int, float, str, datetime] = None
    ) -> None:
        """
        Rehydrate a session from durable storage.

        An access token is cached only when its expiry is known and still in
        the future; its cache window is ``ttl_factor`` of the remaining lifetime.
        """
        expires_epoch = to_epoch(expires_at)
        with self._lock:
            now = self.clock()
            if refresh_token:
                self._refresh[session_key] = refresh_token
                self._invalidated.discard(session_key)
            if access_token and expires_epoch is not None and expires_epoch > now:
                self._access[session_key] = _CachedToken(
                    token=access_token,
                    cached_until=now + (expires_epoch - now) * self.ttl_factor,
                    expires_at=expires_epoch,
                )
                self._invalidated.discard(session_key)
            elif access_token:
                logger.debug(f"Not caching seeded access token for {session_key}: expired or no expiry")

    def seed_from_profile(self, tenant: Tenant, profile: Dict[str, Any]) -> bool:
        """
        Seed a tenant's session from its profile fields.

        Returns:
            True when the profile holds a refresh token for the instance
        """
        instance = tenant.instance
        refresh_token = profile.get(profile_field("refresh_token", instance))
        self.seed_tokens(
            tenant.session_key,
            refresh_token=refresh_token,
            access_token=profile.get(profile_field("access_token", instance)),
            expires_at=profile.get(profile_field("access_token_expires_at", instance)),
        )
        return bool(refresh_token)

    def expire_access_token(self, session_key: str) -> None:
        """Drop only the cached access token so the next call refreshes."""
        with self._lock:
            self._access.pop(session_key, None)

    def invalidate(self, session_key: str) -> None:
        """Drop both tokens for a key (uninstall). An in-flight refresh will not be cached."""
        with self._lock:
            self._access.pop(session_key, None)
            self._refresh.pop(session_key, None)
            self._generation[session_key] = self._generation.get(session_key, 0) + 1
            self._invalidated.add(session_key)
        logger.info(f"Invalidated session {session_key}")

    # Introspection

    def has_refresh_token(self, session_key: str) -> bool:
        with self._lock:
            return session_key in self._refresh

    def is_authorized(self, session_key: str) -> bool:
        """True when a token can be produced without a new OAuth consent."""
        with self._lock:
            if session_key in self._refresh:
                return True
            entry = self._access.get(session_key)
            return bool(entry and self.clock() < entry.cached_until)

    def state(self, session_key: str) -> TokenState:
        with self._lock:
            if session_key in self._invalidated:
                return TokenState.INVALIDATED
            if session_key in self._inflight:
                return TokenState.REFRESHING
            entry = self._access.get(session_key)
            if entry is None:
                return TokenState.NO_TOKEN
            now = self.clock()
            if now < entry.cached_until:
                return TokenState.CACHED_VALID
            if now < entry.expires_at:
                return TokenState.CACHED_EXPIRING_SOON
            return TokenState.NO_TOKEN

    def session(self, session_key: str) -> TenantSession:
        """Snapshot of the tokens held for a key."""
        with self._lock:
            entry = self._access.get(session_key)
            return TenantSession(
                session_key=session_key,
                access_token=entry.token if entry else None,
                access_token_expires_at=entry.expires_at if entry else None,
                refresh_token=self._refresh.get(session_key),
            )
