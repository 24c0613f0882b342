"""Who may message whom.

The contact graph is directed and derived from roles, never stored:

* admin    -> any manager, team member or customer
* manager  -> its own direct reports (team members whose ``manager_id`` is the manager)
* team     -> a customer, but only after that customer has messaged the team member
* customer -> any team member

Every other pairing is denied, including senders without a recognised role.
The team -> customer edge is the only stateful one and consults the message
history through any object satisfying :class:`MessageHistory`.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .models import Actor, Profile, Role

BROADCAST_ROLES = frozenset({Role.MANAGER, Role.TEAM, Role.CUSTOMER})


@runtime_checkable
class MessageHistory(Protocol):
    """Message lookups the engine depends on."""

    def has_message(self, *, sender_id: str, recipient_id: str) -> bool:
        ...

    def list_sender_ids(self, recipient_id: str) -> List[str]:
        ...


Rule = Callable[[str, Profile, MessageHistory], bool]


def _admin_rule(sender_id: str, recipient: Profile, history: MessageHistory) -> bool:
    return recipient.role in BROADCAST_ROLES


def _manager_rule(sender_id: str, recipient: Profile, history: MessageHistory) -> bool:
    return recipient.role is Role.TEAM and recipient.manager_id == sender_id


def _team_rule(sender_id: str, recipient: Profile, history: MessageHistory) -> bool:
    if recipient.role is not Role.CUSTOMER:
        return False
    return history.has_message(sender_id=recipient.id, recipient_id=sender_id)


def _customer_rule(sender_id: str, recipient: Profile, history: MessageHistory) -> bool:
    return recipient.role is Role.TEAM


_RULES: Dict[Role, Rule] = {
    Role.ADMIN: _admin_rule,
    Role.MANAGER: _manager_rule,
    Role.TEAM: _team_rule,
    Role.CUSTOMER: _customer_rule,
}

_missing_rules = set(Role) - set(_RULES)
if _missing_rules:  # pragma: no cover - guards against adding a role without a rule
    raise RuntimeError(f"No contact rule defined for roles: {sorted(r.value for r in _missing_rules)}")


def _deny(sender_id: str, recipient: Profile, history: MessageHistory) -> bool:
    return False


def is_allowed(
    sender_role: Role | str | None,
    sender_id: str,
    recipient: Profile,
    history: MessageHistory,
) -> bool:
    """Return ``True`` if a sender with ``sender_role`` may message ``recipient``."""

    rule = _RULES.get(Role.parse(sender_role), _deny)
    return rule(sender_id, recipient, history)


def broadcast_recipients(sender_role: Role | str | None, profiles: Iterable[Profile]) -> List[Profile]:
    """Select the broadcast audience. Only admins have one."""

    if Role.parse(sender_role) is not Role.ADMIN:
        return []
    return [profile for profile in profiles if profile.role in BROADCAST_ROLES]


def repliable_customers(team_member_id: str, directory, history: MessageHistory) -> List[Profile]:
    """Customers who have messaged the team member and may therefore receive replies."""

    sender_ids = history.list_sender_ids(team_member_id)
    return [
        profile
        for profile in directory.get_profiles(sender_ids)
        if profile.role is Role.CUSTOMER
    ]


def contact_candidates(actor: Actor, directory, history: MessageHistory) -> List[Profile]:
    """Profiles the actor may message right now.

    ``directory`` must provide ``list_profiles``, ``list_team_members`` and
    ``get_profiles``. Every returned profile satisfies :func:`is_allowed`.
    """

    role = actor.role
    candidates: Optional[List[Profile]]
    if role is Role.ADMIN:
        candidates = directory.list_profiles(sorted(BROADCAST_ROLES, key=lambda r: r.value))
    elif role is Role.MANAGER:
        candidates = directory.list_team_members(actor.id)
    elif role is Role.TEAM:
        candidates = repliable_customers(actor.id, directory, history)
    elif role is Role.CUSTOMER:
        candidates = directory.list_profiles([Role.TEAM])
    else:
        candidates = None

    if not candidates:
        return []
    return [
        profile
        for profile in candidates
        if profile.id != actor.id and is_allowed(role, actor.id, profile, history)
    ]


__all__ = [
    "BROADCAST_ROLES",
    "MessageHistory",
    "broadcast_recipients",
    "contact_candidates",
    "is_allowed",
    "repliable_customers",
]
