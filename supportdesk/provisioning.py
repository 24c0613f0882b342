"""Two-phase user provisioning with compensation.

Provisioning creates a login identity (phase one) and then the profile row
that carries the role, the manager assignment and the audit trail (phase two).
The identity provider and the profile store are separate systems, so there is
no shared transaction: when phase two fails the identity from phase one is
deleted again before the error is reported.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from .errors import (
    IdentityCreationError,
    NotFound,
    PermissionDenied,
    ProfileInsertError,
    ValidationError,
)
from .models import Actor, Identity, Profile, Role

logger = logging.getLogger("supportdesk.provisioning")

NAME_MIN_LENGTH = 2


@dataclass(frozen=True)
class ProvisionRequest:
    """Input for a provisioning call."""

    name: Optional[str]
    email: Optional[str]
    password: Optional[str]
    role: Role | str | None = None
    manager_id: Optional[str] = None


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


class ProvisioningWorkflow:
    """Create accounts on behalf of admins and managers, or via self-signup.

    ``identities`` must provide ``create_identity(email, password, attributes)``
    and ``delete_identity(id)``; ``profiles`` must provide ``get_profile(id)``
    and ``insert_profile(id, ...)``.
    """

    def __init__(self, identities, profiles) -> None:
        self._identities = identities
        self._profiles = profiles

    def provision_user(self, actor: Actor, request: ProvisionRequest) -> Profile:
        role = Role.parse(request.role)
        if role not in (Role.MANAGER, Role.TEAM):
            raise ValidationError("Role must be either 'manager' or 'team'")

        if role is Role.MANAGER and actor.role is not Role.ADMIN:
            raise PermissionDenied("Forbidden: Admins only")
        if role is Role.TEAM and actor.role not in (Role.MANAGER, Role.ADMIN):
            raise PermissionDenied("Forbidden: Managers or Admins only")

        name, email, password = self._require_credentials(request)
        manager_id = self._resolve_manager_id(actor, role, request.manager_id)

        return self._provision(
            name=name,
            email=email,
            password=password,
            role=role,
            manager_id=manager_id,
            created_by=actor.id,
        )

    def create_manager(self, actor: Actor, *, name: str, email: str, password: str) -> Profile:
        return self.provision_user(
            actor,
            ProvisionRequest(name=name, email=email, password=password, role=Role.MANAGER),
        )

    def create_team_member(
        self,
        actor: Actor,
        *,
        name: str,
        email: str,
        password: str,
        manager_id: Optional[str] = None,
    ) -> Profile:
        return self.provision_user(
            actor,
            ProvisionRequest(
                name=name,
                email=email,
                password=password,
                role=Role.TEAM,
                manager_id=manager_id,
            ),
        )

    def signup_customer(self, request: ProvisionRequest) -> Profile:
        """Self-service signup. The new customer is recorded as its own creator."""

        name, email, password = self._require_credentials(request)
        if len(name) < NAME_MIN_LENGTH:
            raise ValidationError(f"Name must be at least {NAME_MIN_LENGTH} characters")
        return self._provision(
            name=name,
            email=email,
            password=password,
            role=Role.CUSTOMER,
            manager_id=None,
            created_by=None,
        )

    def bootstrap_admin(self, *, name: str, email: str, password: str) -> Profile:
        """Create an admin account without an actor. Only reachable from the CLI."""

        cleaned_name, cleaned_email, cleaned_password = self._require_credentials(
            ProvisionRequest(name=name, email=email, password=password, role=Role.ADMIN)
        )
        return self._provision(
            name=cleaned_name,
            email=cleaned_email,
            password=cleaned_password,
            role=Role.ADMIN,
            manager_id=None,
            created_by=None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_credentials(self, request: ProvisionRequest) -> tuple[str, str, str]:
        name = _clean(request.name)
        email = _clean(request.email)
        password = request.password if isinstance(request.password, str) else ""
        if not name or not email or not password.strip():
            raise ValidationError("Name, email, and password are required")
        return name, email, password

    def _resolve_manager_id(
        self,
        actor: Actor,
        role: Role,
        requested: Optional[str],
    ) -> Optional[str]:
        requested_id = _clean(requested) or None

        if role is not Role.TEAM:
            if requested_id is not None:
                raise ValidationError("manager_id only applies to team members")
            return None

        if actor.role is Role.MANAGER:
            if requested_id is not None and requested_id != actor.id:
                raise PermissionDenied("Managers may only add team members to their own team")
            return actor.id

        if requested_id is None:
            raise ValidationError("manager_id is required when an admin creates a team member")
        manager = self._profiles.get_profile(requested_id)
        if manager is None:
            raise NotFound("Manager not found")
        if manager.role is not Role.MANAGER:
            raise ValidationError("manager_id must reference a manager")
        return manager.id

    def _provision(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: Role,
        manager_id: Optional[str],
        created_by: Optional[str],
    ) -> Profile:
        attributes: Dict[str, object] = {"role": role.value}
        if manager_id is not None:
            attributes["manager_id"] = manager_id

        with self._provisional_identity(email, password, attributes) as identity:
            profile = self._profiles.insert_profile(
                identity.id,
                name=name,
                email=email,
                role=role,
                manager_id=manager_id,
                created_by=created_by or identity.id,
            )

        logger.info(
            "Provisioned %s account %s (manager=%s, created_by=%s)",
            role.value,
            profile.id,
            profile.manager_id,
            profile.created_by,
        )
        return profile

    @contextmanager
    def _provisional_identity(
        self,
        email: str,
        password: str,
        attributes: Dict[str, object],
    ) -> Iterator[Identity]:
        """Yield a new identity that is deleted again unless the block succeeds."""

        try:
            identity = self._identities.create_identity(email, password, attributes)
        except IdentityCreationError:
            raise
        except Exception as exc:
            raise IdentityCreationError(f"User creation failed: {exc}") from exc

        try:
            yield identity
        except Exception as exc:
            compensated = self._compensate(identity)
            raise ProfileInsertError(
                str(exc) or "Profile creation failed",
                identity_id=identity.id,
                compensated=compensated,
            ) from exc

    def _compensate(self, identity: Identity) -> bool:
        logger.warning(
            "Profile insert failed for identity %s; deleting the identity", identity.id
        )
        try:
            self._identities.delete_identity(identity.id)
        except Exception:
            logger.exception(
                "Failed to delete identity %s after profile insert failure; manual cleanup required",
                identity.id,
            )
            return False
        return True


__all__ = ["NAME_MIN_LENGTH", "ProvisionRequest", "ProvisioningWorkflow"]
