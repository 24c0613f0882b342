"""Request authentication for the support desk API."""

from typing import Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthenticationError
from .models import Actor
from .sessions import SessionManager

SESSION_COOKIE_NAME = "supportdesk_session"


class SessionAuth:
    """Resolve the calling :class:`Actor` from a bearer token or session cookie."""

    def __init__(self, sessions: SessionManager):
        self._sessions = sessions
        self._bearer = HTTPBearer(auto_error=False)

    async def token(self, request: Request) -> Optional[str]:
        credentials: Optional[HTTPAuthorizationCredentials] = await self._bearer(request)  # type: ignore[assignment]
        if credentials is not None and credentials.scheme.lower() == "bearer":
            return credentials.credentials
        return request.cookies.get(SESSION_COOKIE_NAME) or None

    async def __call__(self, request: Request) -> Actor:
        token = await self.token(request)
        if not token:
            raise AuthenticationError("Unauthorized")
        return self._sessions.verify_session(token)


__all__ = ["SESSION_COOKIE_NAME", "SessionAuth"]
