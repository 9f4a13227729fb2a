"""
ShelfLens Error Kinds

Every failure that reaches a caller carries a machine-readable ``kind`` and a
short human-readable ``user_message``. The API layer renders both; internal
``message`` text is only logged.
"""

from typing import Any


class ShelfLensError(Exception):
    """Base exception for ShelfLens services."""

    kind = "INTERNAL_ERROR"
    status_code = 500
    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.user_message,
            "details": self.details,
        }


class ValidationError(ShelfLensError):
    """Request is missing required fields or carries out-of-range values."""

    kind = "VALIDATION_ERROR"
    status_code = 400
    default_user_message = "The request is invalid."


class QuotaExceededError(ShelfLensError):
    """Tenant may not process another image or register another SKU."""

    kind = "QUOTA_EXCEEDED"
    status_code = 429
    default_user_message = "Your plan's quota has been reached."


class ProviderError(ShelfLensError):
    """External detection service is unavailable or returned non-success."""

    kind = "PROVIDER_ERROR"
    status_code = 502
    default_user_message = "The detection service failed to analyze the image."

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        provider_status: int | None = None,
        unavailable: bool = False,
    ):
        details = dict(details or {})
        if provider_status is not None:
            details.setdefault("provider_status", provider_status)
        super().__init__(message, user_message, details)
        self.provider_status = provider_status
        self.unavailable = unavailable
        if unavailable:
            self.status_code = 503


class StoreError(ShelfLensError):
    """Ledger or persistence failure."""

    kind = "STORE_ERROR"
    status_code = 500
    default_user_message = "We could not save your data. Please try again."
