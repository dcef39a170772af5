"""
Credential lifecycle for brokerage OAuth tokens.

Turns a person's single-use refresh token into a usable access token, rotates
both on every refresh and keeps per-person health bookkeeping current.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Callable, Dict, Optional

from pydantic import SecretStr

from brokerlink.clients.broker_oauth import BrokerOAuthClient, OAuthTokenExchangeError
from brokerlink.clients.credential_store import CredentialStore
from brokerlink.core.config import BrokerSettings
from brokerlink.core.errors import (
    AuthenticationFailedError,
    BrokerlinkError,
    InvalidRefreshTokenFormat,
    NoAvailablePersonError,
    NoRefreshTokenError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)
from brokerlink.models.credentials import (
    AccessGrant,
    AccessTokenStatus,
    ConnectionTestResult,
    EnrollmentResult,
    NewCredential,
    PersonHealth,
    RefreshTokenStatus,
    TokenGrant,
    TokenKind,
    TokenStatus,
)
from brokerlink.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

ReusePredicate = Callable[[AccessGrant], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    """Owns every write to credentials and person health."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: BrokerOAuthClient,
        settings: BrokerSettings,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._settings = settings
        self._limiter = rate_limiter
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    async def get_valid_access_token(self, person_name: str) -> AccessGrant:
        """Return the active access token, refreshing when none is usable."""
        grant = self._current_access_grant(person_name, mark_used=True)
        if grant is not None:
            return grant

        logger.info("Access token expired for %s, refreshing", person_name)
        return await self._single_flight(person_name, reuse=lambda _grant: True)

    async def refresh_access_token(
        self, person_name: str, *, invalidated_token: Optional[str] = None
    ) -> AccessGrant:
        """Rotate the person's token pair.

        ``invalidated_token`` names the access token a caller just saw
        rejected; when another caller already replaced it, the replacement is
        returned and the single-use refresh token is left alone.
        """
        reuse: Optional[ReusePredicate] = None
        if invalidated_token is not None:
            reuse = lambda grant: grant.access_token != invalidated_token  # noqa: E731
        return await self._single_flight(person_name, reuse=reuse)

    async def setup_person_token(
        self, person_name: str, refresh_token_value: str
    ) -> EnrollmentResult:
        """Enroll or re-enroll a person from an operator-supplied refresh token."""
        if not isinstance(refresh_token_value, str):
            raise InvalidRefreshTokenFormat()
        cleaned = refresh_token_value.strip()
        self._validate_format(cleaned)

        async with self._lock_for(person_name):
            logger.info("Setting up token for %s", person_name)
            grant = await self._exchange(person_name, cleaned)
            self._store_rotated_grant(person_name, grant, purge_existing=True)

        logger.info("Refresh token setup successfully for %s", person_name)
        return EnrollmentResult(person_name=person_name, api_server=grant.api_server)

    def get_token_status(self, person_name: str) -> TokenStatus:
        refresh = self._store.find_active(person_name, TokenKind.REFRESH)
        access = self._store.find_active(person_name, TokenKind.ACCESS)
        if access is not None and access.is_expired(self._clock()):
            access = None
        person = self._store.get_person(person_name)

        return TokenStatus(
            person_name=person_name,
            refresh_token=RefreshTokenStatus(
                exists=refresh is not None,
                expires_at=refresh.expires_at if refresh else None,
                last_used=refresh.last_used if refresh else None,
                error_count=refresh.error_count if refresh else 0,
                last_error=refresh.last_error if refresh else None,
            ),
            access_token=AccessTokenStatus(
                exists=access is not None,
                expires_at=access.expires_at if access else None,
                last_used=access.last_used if access else None,
                api_server=access.api_server if access else None,
            ),
            has_valid_token=person.has_valid_token if person else False,
            last_token_refresh=person.last_token_refresh if person else None,
            last_token_error=person.last_token_error if person else None,
            is_healthy=refresh is not None and (access is not None or not refresh.last_error),
        )

    def record_token_error(self, person_name: str, message: str) -> None:
        """Count a failure against the person's refresh token. Never raises."""
        try:
            self._store.record_error(person_name, message, now=self._clock())
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error recording token error for %s", person_name)

    async def test_connection(self, person_name: str) -> ConnectionTestResult:
        """Validate the credential end to end against the time endpoint.

        The time call shares the process rate budget, and a 401 gets the same
        single refresh and retry as any other resource call.
        """
        grant = await self.get_valid_access_token(person_name)
        try:
            server_time = await self._call_server_time(grant)
        except UpstreamUnavailableError as exc:
            if exc.status_code != HTTPStatus.UNAUTHORIZED:
                self.record_token_error(person_name, str(exc))
                raise
            logger.info("Time endpoint rejected token for %s, refreshing", person_name)
            grant = await self.refresh_access_token(
                person_name, invalidated_token=grant.access_token
            )
            server_time = await self._retry_server_time(person_name, grant)

        self._store.record_success(person_name, now=self._clock())
        return ConnectionTestResult(
            person_name=person_name,
            api_server=grant.api_server,
            server_time=server_time,
        )

    def delete_person_tokens(self, person_name: str) -> None:
        self._store.deactivate_person(person_name, now=self._clock())
        logger.info("Tokens deleted for %s", person_name)

    def list_persons(self) -> list[PersonHealth]:
        return self._store.list_persons()

    def find_available_person(self) -> str:
        """Return the first active person whose token is currently healthy."""
        for person in self._store.list_persons():
            if person.is_active and person.has_valid_token:
                return person.person_name
        raise NoAvailablePersonError()

    # Internals

    async def _call_server_time(self, grant: AccessGrant) -> Optional[str]:
        if self._limiter is None:
            return await self._oauth.fetch_server_time(grant.api_server, grant.access_token)
        async with self._limiter.slot():
            return await self._oauth.fetch_server_time(grant.api_server, grant.access_token)

    async def _retry_server_time(self, person_name: str, grant: AccessGrant) -> Optional[str]:
        try:
            return await self._call_server_time(grant)
        except UpstreamUnavailableError as exc:
            self.record_token_error(person_name, str(exc))
            if exc.status_code == HTTPStatus.UNAUTHORIZED:
                logger.error("Time endpoint rejected refreshed token for %s", person_name)
                raise AuthenticationFailedError(person_name, "time") from exc
            raise

    def _lock_for(self, person_name: str) -> asyncio.Lock:
        lock = self._locks.get(person_name)
        if lock is None:
            lock = self._locks[person_name] = asyncio.Lock()
        return lock

    async def _single_flight(
        self, person_name: str, *, reuse: Optional[ReusePredicate]
    ) -> AccessGrant:
        task = self._inflight.get(person_name)
        if task is None:
            task = asyncio.ensure_future(self._run_refresh(person_name, reuse))
            self._inflight[person_name] = task
            task.add_done_callback(lambda done: self._forget(person_name, done))
        # The refresh keeps running when a waiter times out: its refresh token
        # may already be consumed upstream and the new pair must still land.
        return await asyncio.shield(task)

    def _forget(self, person_name: str, task: asyncio.Task) -> None:
        if self._inflight.get(person_name) is task:
            del self._inflight[person_name]
        if not task.cancelled():
            task.exception()

    async def _run_refresh(
        self, person_name: str, reuse: Optional[ReusePredicate]
    ) -> AccessGrant:
        async with self._lock_for(person_name):
            if reuse is not None:
                current = self._current_access_grant(person_name, mark_used=False)
                if current is not None and reuse(current):
                    logger.debug("Reusing access token already rotated for %s", person_name)
                    return current
            try:
                return await self._redeem(person_name)
            except BrokerlinkError as exc:
                self.record_token_error(person_name, str(exc))
                if isinstance(exc, UpstreamAuthError) and exc.requires_reenrollment:
                    # The refresh token is dead upstream; keep the row for
                    # auditing but never present it again.
                    self._store.retire(person_name, TokenKind.REFRESH, now=self._clock())
                raise

    async def _redeem(self, person_name: str) -> AccessGrant:
        credential = self._store.find_active(person_name, TokenKind.REFRESH)
        if credential is None:
            raise NoRefreshTokenError(person_name)

        refresh_token = credential.token_value.get_secret_value()
        self._validate_format(refresh_token, person_name)

        logger.info("Attempting to refresh access token for %s", person_name)
        grant = await self._exchange(person_name, refresh_token)
        access_grant = self._store_rotated_grant(person_name, grant, purge_existing=False)
        logger.info("Token refreshed successfully for %s", person_name)
        return access_grant

    def _validate_format(self, token: Optional[str], person_name: Optional[str] = None) -> None:
        if not token or len(token) < self._settings.min_refresh_token_length:
            raise InvalidRefreshTokenFormat(person_name)

    async def _exchange(self, person_name: str, refresh_token: str) -> TokenGrant:
        try:
            return await self._oauth.refresh_token(refresh_token)
        except OAuthTokenExchangeError as exc:
            logger.error(
                "Broker token endpoint error for %s: status=%s detail=%s",
                person_name,
                exc.status_code,
                exc.detail[:200],
            )
            if exc.transient:
                raise UpstreamUnavailableError(
                    f"Token endpoint unavailable for {person_name}: {exc.detail}",
                    status_code=exc.status_code,
                ) from exc
            raise UpstreamAuthError(
                person_name, status_code=exc.status_code, detail=exc.detail
            ) from exc

    def _store_rotated_grant(
        self, person_name: str, grant: TokenGrant, *, purge_existing: bool
    ) -> AccessGrant:
        # The submitted refresh token is already consumed upstream at this point.
        try:
            return self._persist_grant(person_name, grant, purge_existing=purge_existing)
        except sqlite3.Error as exc:
            logger.error(
                "Rotated token pair for %s could not be stored and is lost: %s",
                person_name,
                exc,
            )
            self.record_token_error(
                person_name,
                "Rotated token pair could not be stored; re-enrollment required",
            )
            raise

    def _persist_grant(
        self, person_name: str, grant: TokenGrant, *, purge_existing: bool
    ) -> AccessGrant:
        now = self._clock()
        access_expires_at = now + timedelta(seconds=grant.expires_in)
        self._store.rotate(
            person_name,
            [
                NewCredential(
                    kind=TokenKind.ACCESS,
                    token_value=SecretStr(grant.access_token),
                    api_server=grant.api_server,
                    expires_at=access_expires_at,
                ),
                NewCredential(
                    kind=TokenKind.REFRESH,
                    token_value=SecretStr(grant.refresh_token),
                    expires_at=now + timedelta(days=self._settings.refresh_token_ttl_days),
                ),
            ],
            now=now,
            purge_existing=purge_existing,
        )
        return AccessGrant(
            person_name=person_name,
            access_token=grant.access_token,
            api_server=grant.api_server,
            expires_at=access_expires_at,
        )

    def _current_access_grant(
        self, person_name: str, *, mark_used: bool
    ) -> Optional[AccessGrant]:
        credential = self._store.find_active(person_name, TokenKind.ACCESS)
        now = self._clock()
        if credential is None or credential.is_expired(now) or not credential.api_server:
            return None
        if mark_used:
            self._store.mark_used(credential.id, now=now)
        return AccessGrant(
            person_name=person_name,
            access_token=credential.token_value.get_secret_value(),
            api_server=credential.api_server,
            expires_at=credential.expires_at,
        )


__all__ = ["TokenLifecycleManager"]
