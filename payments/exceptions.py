"""Error taxonomy shared by the engine and the HTTP layer."""
from __future__ import annotations


class PaymentsError(Exception):
    """Base error carrying a stable machine-readable kind and an HTTP status."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class ValidationError(PaymentsError):
    """Missing or malformed required fields."""

    kind = "validation_error"
    status_code = 400


class AuthorizationError(PaymentsError):
    """Caller identity does not match the resource owner."""

    kind = "unauthorized"
    status_code = 401


class CapacityError(PaymentsError):
    """Family member limit reached."""

    kind = "capacity_exceeded"
    status_code = 403


class PlanEligibilityError(PaymentsError):
    """No qualifying subscription for this operation."""

    kind = "plan_not_eligible"
    status_code = 403


class NotFoundError(PaymentsError):
    """No matching record."""

    kind = "not_found"
    status_code = 404


class ConflictError(PaymentsError):
    """Record already exists."""

    kind = "conflict"
    status_code = 409


class StorageError(PaymentsError):
    """Underlying store failed; safe to retry."""

    kind = "storage_error"
    status_code = 500


class ProviderNotConfigured(PaymentsError):
    """Stripe is not configured."""

    kind = "provider_not_configured"
    status_code = 501


class ProviderError(PaymentsError):
    """Stripe rejected or failed the request."""

    kind = "provider_error"
    status_code = 502
