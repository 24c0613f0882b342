"""Error taxonomy shared by the workflows and the HTTP layer."""

from __future__ import annotations

from typing import Optional, Sequence


class SupportDeskError(RuntimeError):
    """Base class for errors that are reported back to the caller."""

    status_code = 500


class ValidationError(SupportDeskError):
    """Raised when required input is missing or malformed."""

    status_code = 400


class AuthenticationError(SupportDeskError):
    """Raised when no valid session accompanies a request."""

    status_code = 401


class PermissionDenied(SupportDeskError):
    """Raised when the caller's role or ownership does not permit the action."""

    status_code = 403


class NotFound(SupportDeskError):
    """Raised when a referenced profile does not exist."""

    status_code = 404


class ProvisioningError(SupportDeskError):
    """Raised when an external system fails while provisioning a user."""

    phase = "unknown"


class IdentityCreationError(ProvisioningError):
    """Phase one failed: the identity provider rejected the new login."""

    phase = "identity"


class ProfileInsertError(ProvisioningError):
    """Phase two failed: the profile row could not be stored.

    ``compensated`` records whether the identity created in phase one was
    removed again.
    """

    phase = "profile"

    def __init__(self, message: str, *, identity_id: str, compensated: bool) -> None:
        super().__init__(message)
        self.identity_id = identity_id
        self.compensated = compensated


class BroadcastError(SupportDeskError):
    """Raised when a broadcast insert fails part way through the recipient list."""

    def __init__(self, message: str, *, recipient_id: str, delivered: Sequence[str]) -> None:
        super().__init__(message)
        self.recipient_id = recipient_id
        self.delivered = tuple(delivered)


class ExternalServiceError(SupportDeskError):
    """Raised when an AI provider call fails."""

    status_code = 502

    def __init__(self, message: str, *, provider_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        if provider_status is not None and provider_status >= 400:
            self.status_code = provider_status


__all__ = [
    "AuthenticationError",
    "BroadcastError",
    "ExternalServiceError",
    "IdentityCreationError",
    "NotFound",
    "PermissionDenied",
    "ProfileInsertError",
    "ProvisioningError",
    "SupportDeskError",
    "ValidationError",
]
