"""
CsrfTokenCache - Short-lived anti-forgery token for state-changing requests.

The token is refreshed ahead of expiry, and concurrent callers needing a
fresh token share a single refresh instead of each hitting the endpoint.
A token is only handed out for the bearer credential it was fetched with.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from loguru import logger

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass(frozen=True)
class CredentialToken:
    """Anti-forgery token, its absolute expiry and the credential it belongs to."""

    value: str
    expires_at: datetime
    access_token: str | None = None

    def is_valid(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        return now < self.expires_at - margin

    def belongs_to(self, access_token: str) -> bool:
        return self.access_token is None or self.access_token == access_token


TokenFetcher = Callable[[str], Awaitable[dict[str, Any]]]


class CsrfTokenCache:
    """
    Caches the anti-forgery token and single-flights refreshes.

    Usage:
        tokens = CsrfTokenCache(fetch_token=client.fetch_csrf_token)
        token = await tokens.get_token(session.access_token)
        if token:
            headers["X-CSRF-Token"] = token
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        refresh_margin: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._fetch_token = fetch_token
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._token: CredentialToken | None = None
        # One refresh per bearer credential
        self._refresh_tasks: dict[str, asyncio.Task[CredentialToken | None]] = {}
        self.refresh_count = 0

    @property
    def token(self) -> CredentialToken | None:
        return self._token

    async def get_token(self, access_token: str) -> str | None:
        """Return a usable token for ``access_token``, refreshing it first if needed."""
        token = self._token
        if (
            token is not None
            and token.belongs_to(access_token)
            and token.is_valid(self._clock(), self._refresh_margin)
        ):
            return token.value

        task = self._refresh_tasks.get(access_token)
        if task is None:
            task = asyncio.create_task(self._refresh(access_token))
            self._refresh_tasks[access_token] = task
            task.add_done_callback(lambda t: self._clear_refresh_task(access_token, t))

        refreshed = await asyncio.shield(task)
        return refreshed.value if refreshed else None

    def _clear_refresh_task(self, access_token: str, task: asyncio.Task[Any]) -> None:
        if self._refresh_tasks.get(access_token) is task:
            del self._refresh_tasks[access_token]

    async def _refresh(self, access_token: str) -> CredentialToken | None:
        self.refresh_count += 1
        logger.debug("Fetching CSRF token...")
        try:
            payload = await self._fetch_token(access_token)
        except Exception as e:
            logger.error(f"Failed to fetch CSRF token: {e}")
            return None

        value = payload.get("token") or payload.get("csrfToken")
        if not value:
            logger.error("CSRF token endpoint returned no token")
            return None

        expires_in = payload.get("expiresInSeconds")
        lifetime = (
            timedelta(seconds=float(expires_in))
            if expires_in is not None
            else DEFAULT_TOKEN_LIFETIME
        )
        token = CredentialToken(
            value=value,
            expires_at=self._clock() + lifetime,
            access_token=access_token,
        )
        self._token = token
        logger.debug(f"CSRF token fetched, expires in {lifetime.total_seconds():.0f}s")
        return token

    def accept(
        self,
        value: str,
        access_token: str | None = None,
        expires_in: timedelta = DEFAULT_TOKEN_LIFETIME,
    ) -> None:
        """Adopt a rotated token announced by the server on a request made with ``access_token``."""
        if access_token is None and self._token is not None:
            access_token = self._token.access_token
        self._token = CredentialToken(
            value=value,
            expires_at=self._clock() + expires_in,
            access_token=access_token,
        )
        logger.debug("Adopted rotated CSRF token from response header")

    def clear(self) -> None:
        """Forget the token (e.g. on logout)."""
        self._token = None
