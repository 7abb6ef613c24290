"""Custom exception hierarchy for API errors."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class BaseAPIException(Exception):
    """Base class for all API exceptions rendered by the global handlers."""

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details


# ============================================================================
# Authentication
# ============================================================================


class MissingTokenError(BaseAPIException):
    status_code = 401
    error_code = "MISSING_TOKEN"

    def __init__(self) -> None:
        super().__init__("Authentication required")


class InvalidTokenError(BaseAPIException):
    status_code = 401
    error_code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid authentication token") -> None:
        super().__init__(message)


class InvalidApiKeyError(BaseAPIException):
    status_code = 401
    error_code = "INVALID_API_KEY"

    def __init__(self) -> None:
        super().__init__("Invalid or missing API key")


# ============================================================================
# Resources
# ============================================================================


class ResourceNotFoundError(BaseAPIException):
    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class DatabaseError(BaseAPIException):
    status_code = 500
    error_code = "DATABASE_ERROR"


class DependencyUnavailableError(BaseAPIException):
    """A backing service (counter store, object store, probe tool) is unreachable."""

    status_code = 503
    error_code = "DEPENDENCY_UNAVAILABLE"

    def __init__(self, dependency: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or "Service temporarily unavailable. Please try again later.",
            details={"dependency": dependency},
        )
        self.dependency = dependency


# ============================================================================
# Quota
# ============================================================================


class QuotaError(BaseAPIException):
    """Denial raised by the quota gate.

    Rendered with the quota wire shape rather than the generic envelope.
    """

    kind: str = "quota"

    def __init__(
        self,
        message: str,
        action_class: str,
        tier: str,
        used: int = 0,
        cap: int = 0,
        reset_at: Optional[datetime] = None,
        upgrade_available: bool = False,
    ) -> None:
        super().__init__(message)
        self.action_class = action_class
        self.tier = tier
        self.used = used
        self.cap = cap
        self.reset_at = reset_at
        self.upgrade_available = upgrade_available

    def to_wire(self) -> dict[str, Any]:
        return {
            "error": {
                "kind": self.kind,
                "class": self.action_class,
                "used": self.used,
                "cap": self.cap,
                "resetAt": self.reset_at.isoformat() if self.reset_at else None,
                "tier": self.tier,
                "upgradeAvailable": self.upgrade_available,
                "message": self.message,
            }
        }


class QuotaExceededError(QuotaError):
    status_code = 429
    error_code = "QUOTA_EXCEEDED"
    kind = "quota-exceeded"

    def __init__(
        self,
        action_class: str,
        tier: str,
        used: int,
        cap: int,
        reset_at: Optional[datetime],
        upgrade_available: bool,
    ) -> None:
        if reset_at is not None:
            message = (
                f"{action_class} limit exceeded. You have used {used} of {cap}. "
                f"Limit resets at {reset_at.isoformat()}."
            )
        else:
            message = f"{action_class} limit reached ({used} of {cap})."
        super().__init__(
            message,
            action_class=action_class,
            tier=tier,
            used=used,
            cap=cap,
            reset_at=reset_at,
            upgrade_available=upgrade_available,
        )


class TierForbiddenError(QuotaError):
    status_code = 403
    error_code = "TIER_FORBIDDEN"
    kind = "forbidden-for-tier"

    def __init__(self, action_class: str, tier: str, upgrade_available: bool = True) -> None:
        super().__init__(
            f"{action_class} is not available on the {tier} tier. Please upgrade.",
            action_class=action_class,
            tier=tier,
            upgrade_available=upgrade_available,
        )


class QuotaConflictError(QuotaError):
    status_code = 409
    error_code = "QUOTA_CONFLICT"
    kind = "conflict"

    def __init__(self, action_class: str, tier: str, used: int = 0, cap: int = 0) -> None:
        super().__init__(
            "Too many concurrent requests for this action. Please retry.",
            action_class=action_class,
            tier=tier,
            used=used,
            cap=cap,
        )


# ============================================================================
# Media
# ============================================================================


class MediaValidationError(BaseAPIException):
    """Uploaded media violates policy (type, size, duration, codec)."""

    status_code = 400
    error_code = "MEDIA_VALIDATION_FAILED"

    def __init__(self, message: str, reason: str, **extra: Any) -> None:
        super().__init__(message, details={"reason": reason, **extra})
        self.reason = reason
        self.extra = extra

    def to_wire(self) -> dict[str, Any]:
        return {"error": self.message, "reason": self.reason, **self.extra}
