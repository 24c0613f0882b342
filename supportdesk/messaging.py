"""Authorized message delivery on top of the message store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .contacts import broadcast_recipients, contact_candidates, is_allowed
from .errors import BroadcastError, NotFound, PermissionDenied, ValidationError
from .models import Actor, Message, Profile, Role

logger = logging.getLogger("supportdesk.messaging")


@dataclass(frozen=True)
class BroadcastReport:
    """Outcome of a broadcast in which every insert succeeded."""

    content: str
    delivered: Tuple[str, ...]


def _clean_content(content: Optional[str]) -> str:
    cleaned = content.strip() if isinstance(content, str) else ""
    if not cleaned:
        raise ValidationError("Missing message content")
    return cleaned


def _require_role(actor: Actor) -> Role:
    if actor.role is None:
        raise PermissionDenied("Sender role is missing or invalid")
    return actor.role


class MessageService:
    """Send and read direct messages.

    ``directory`` provides the profile lookups and ``messages`` the message
    store (``insert_message``, ``has_message``, ``list_conversation``,
    ``list_inbox``, ``list_sender_ids``).
    """

    def __init__(self, directory, messages) -> None:
        self._directory = directory
        self._messages = messages

    def send_message(self, actor: Actor, recipient_id: Optional[str], content: Optional[str]) -> Message:
        cleaned = _clean_content(content)
        role = _require_role(actor)

        target_id = recipient_id.strip() if isinstance(recipient_id, str) else ""
        if not target_id:
            raise ValidationError("Missing recipient")

        recipient = self._directory.get_profile(target_id)
        if recipient is None:
            raise NotFound("Recipient not found")

        if not is_allowed(role, actor.id, recipient, self._messages):
            logger.info(
                "Denied %s %s messaging %s %s",
                role.value,
                actor.id,
                recipient.role.value,
                recipient.id,
            )
            raise PermissionDenied("Not allowed to message this user")

        return self._messages.insert_message(actor.id, recipient.id, cleaned)

    def broadcast(self, actor: Actor, content: Optional[str]) -> BroadcastReport:
        """Send ``content`` to every non-admin profile.

        Inserts run in order. The first failure abandons the remaining
        recipients and raises :class:`BroadcastError`; messages already
        delivered stay in place.
        """

        cleaned = _clean_content(content)
        role = _require_role(actor)
        if role is not Role.ADMIN:
            raise PermissionDenied("Only admins may broadcast")

        recipients = broadcast_recipients(role, self._directory.list_profiles())
        delivered: List[str] = []
        for recipient in recipients:
            try:
                self._messages.insert_message(actor.id, recipient.id, cleaned)
            except Exception as exc:
                logger.error(
                    "Broadcast from %s stopped at recipient %s after %d of %d deliveries: %s",
                    actor.id,
                    recipient.id,
                    len(delivered),
                    len(recipients),
                    exc,
                )
                raise BroadcastError(
                    f"Broadcast failed for recipient {recipient.id}: {exc}",
                    recipient_id=recipient.id,
                    delivered=delivered,
                ) from exc
            delivered.append(recipient.id)

        logger.info("Broadcast from %s delivered to %d recipients", actor.id, len(delivered))
        return BroadcastReport(content=cleaned, delivered=tuple(delivered))

    def conversation(self, actor: Actor, other_id: Optional[str]) -> List[Message]:
        _require_role(actor)
        target_id = other_id.strip() if isinstance(other_id, str) else ""
        if not target_id:
            raise ValidationError("Missing conversation partner")
        if self._directory.get_profile(target_id) is None:
            raise NotFound("User not found")
        return self._messages.list_conversation(actor.id, target_id)

    def inbox(self, actor: Actor) -> List[Message]:
        _require_role(actor)
        return self._messages.list_inbox(actor.id)

    def contacts(self, actor: Actor) -> List[Profile]:
        _require_role(actor)
        return contact_candidates(actor, self._directory, self._messages)


__all__ = ["BroadcastReport", "MessageService"]
