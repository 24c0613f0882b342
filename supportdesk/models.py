"""Domain models for the support desk service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    """Account tier. Assigned when the account is provisioned and never changed."""

    ADMIN = "admin"
    MANAGER = "manager"
    TEAM = "team"
    CUSTOMER = "customer"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the role named exactly by ``value``, or ``None`` for anything else."""

        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class Actor:
    """Authenticated caller context passed explicitly into every operation."""

    id: str
    role: Optional[Role]


@dataclass(frozen=True)
class Identity:
    """Login identity owned by the identity provider."""

    id: str
    email: str
    created_at: datetime
    attributes: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class Profile:
    """Directory entry for a user account."""

    id: str
    name: str
    email: str
    role: Role
    manager_id: Optional[str]
    created_by: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "manager_id": self.manager_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Message:
    """A direct message. Immutable once stored."""

    id: str
    sender_id: str
    recipient_id: str
    content: str
    created_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


__all__ = ["Actor", "Identity", "Message", "Profile", "Role"]
