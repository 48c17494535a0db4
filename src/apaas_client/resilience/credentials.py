"""
Access credential lifecycle.

The CredentialStore holds one short-lived access token and its absolute
expiry, and refreshes it on demand through an injected issuing coroutine.
Concurrent callers that find the credential stale share one in-flight
refresh.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from apaas_client.logging_config import TRACE

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# Refresh when fewer than this many ms of validity remain
DEFAULT_REFRESH_MARGIN_MS = 60_000


@dataclass(frozen=True)
class Credential:
    """Access token and its absolute expiry (epoch milliseconds)."""

    token: str
    expire_at_ms: int


@dataclass
class CredentialStats:
    """Counters for credential observability."""

    refreshes: int = 0
    refresh_failures: int = 0


class CredentialStore:
    """
    Owns the access credential of one client instance.

    Usage:
        store = CredentialStore(issue=fetch_app_token)
        token = await store.ensure_valid()

    ``issue`` performs the network call and returns a Credential, or raises
    AuthError. It is called directly, never through the call scheduler.
    """

    def __init__(
        self,
        issue: Callable[[], Awaitable[Credential]],
        *,
        disable_cache: bool = False,
        refresh_margin_ms: int = DEFAULT_REFRESH_MARGIN_MS,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        if refresh_margin_ms < 0:
            raise ValueError(f"refresh_margin_ms must be >= 0, got {refresh_margin_ms}")
        self._issue = issue
        self._disable_cache = disable_cache
        self._refresh_margin_ms = refresh_margin_ms
        self._time_fn = time_fn
        self._credential: Credential | None = None
        self._inflight: asyncio.Future[Credential] | None = None
        self.stats = CredentialStats()

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    @property
    def token(self) -> str | None:
        """Current token, or None if never fetched."""
        if self._credential is None:
            return None
        return self._credential.token

    @property
    def credential(self) -> Credential | None:
        return self._credential

    def needs_refresh(self) -> bool:
        """Check whether the next ensure_valid() would hit the network."""
        if self._disable_cache or self._credential is None:
            return True
        return self._now_ms() + self._refresh_margin_ms > self._credential.expire_at_ms

    async def ensure_valid(self) -> str:
        """
        Return a token that is valid for at least the refresh margin.

        With caching disabled every call refreshes.

        Raises:
            AuthError: If the issuing endpoint rejected the request.
        """
        if self._disable_cache:
            logger.debug("Token cache disabled, refreshing token")
            credential = await self.refresh()
            return credential.token

        if self._credential is None:
            logger.debug("No token cached, fetching new token")
        elif self.needs_refresh():
            logger.debug("Token near expiry, refreshing")
        else:
            return self._credential.token

        credential = await self.refresh()
        return credential.token

    async def refresh(self) -> Credential:
        """
        Fetch a new credential.

        If a refresh is already running, wait for it instead of issuing a
        second request. Cancelling one waiter does not cancel the shared
        refresh.
        """
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._do_refresh())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future[Credential]) -> None:
        if self._inflight is future:
            self._inflight = None
        # Mark the exception retrieved when every waiter was cancelled
        if not future.cancelled():
            future.exception()

    async def _do_refresh(self) -> Credential:
        try:
            credential = await self._issue()
        except Exception as e:
            self.stats.refresh_failures += 1
            logger.error("Failed to fetch access token", extra={"error": str(e)})
            raise

        self.stats.refreshes += 1
        now_ms = self._now_ms()
        if credential.expire_at_ms <= now_ms:
            logger.warning(
                "Issued token is already expired",
                extra={"expire_at_ms": credential.expire_at_ms, "now_ms": now_ms},
            )
        self._credential = credential
        logger.info("Access token refreshed successfully")
        return credential

    def remaining_seconds(self) -> int | None:
        """
        Seconds until the current token expires.

        Returns:
            None if no token was ever fetched, 0 if expired.
        """
        if self._credential is None:
            logger.warning("No valid token available")
            return None

        now_ms = self._now_ms()
        remaining_ms = self._credential.expire_at_ms - now_ms
        if remaining_ms <= 0:
            logger.warning("Token has expired")
            return 0

        remaining = remaining_ms // 1000
        logger.debug("Token expires in %d seconds", remaining)
        logger.log(
            TRACE,
            "Token expiry details",
            extra={
                "remaining_s": remaining,
                "expire_at_ms": self._credential.expire_at_ms,
                "now_ms": now_ms,
            },
        )
        return remaining

    def invalidate(self) -> None:
        """Drop the cached credential so the next call refreshes."""
        self._credential = None
