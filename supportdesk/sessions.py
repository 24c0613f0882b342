"""In-memory session handling for signed-in accounts."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .errors import AuthenticationError
from .models import Actor


@dataclass
class _SessionRecord:
    actor: Actor
    expires_at: datetime


class SessionManager:
    """Issue, validate, and revoke bearer session tokens.

    A session stores the caller's id and role as read from the profile at
    sign-in. Every successful lookup extends the expiry by the TTL.
    """

    def __init__(self, *, ttl: timedelta = timedelta(hours=8)) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Session TTL must be positive")
        self._ttl = ttl
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, actor: Actor) -> str:
        token = secrets.token_urlsafe(32)
        record = _SessionRecord(actor=actor, expires_at=self._now() + self._ttl)
        with self._lock:
            self._sessions[token] = record
        return token

    def resolve(self, token: Optional[str]) -> Optional[Actor]:
        if not token:
            return None
        now = self._now()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                self._sessions.pop(token, None)
                return None
            record.expires_at = now + self._ttl
            return record.actor

    def verify_session(self, token: Optional[str]) -> Actor:
        actor = self.resolve(token)
        if actor is None:
            raise AuthenticationError("Unauthorized")
        return actor

    def destroy(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SessionManager"]
