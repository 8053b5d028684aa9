"""
Auth session seam.

Authentication itself lives outside this package; callers plug in whatever
supplies the signed-in user's bearer credential and its expiry.
"""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel


class AuthSession(BaseModel):
    """Signed-in user as seen by the client layer."""

    user_id: str
    access_token: str
    expires_at: datetime | None = None

    def is_authenticated(self, now: datetime | None = None) -> bool:
        if not self.user_id or not self.access_token:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(self.expires_at.tzinfo)
        return now < self.expires_at


class SessionProvider(Protocol):
    def current_session(self) -> AuthSession | None: ...


class StaticSessionProvider:
    """Holds a session set by the host application (login/logout)."""

    def __init__(self, session: AuthSession | None = None):
        self._session = session

    def current_session(self) -> AuthSession | None:
        return self._session

    def sign_in(self, session: AuthSession) -> None:
        self._session = session

    def sign_out(self) -> None:
        self._session = None


def active_session(provider: SessionProvider | None) -> AuthSession | None:
    """Current session if it is still authenticated, else None."""
    if provider is None:
        return None
    session = provider.current_session()
    if session is None or not session.is_authenticated():
        return None
    return session
