"""Domain error taxonomy.

Every error carries the HTTP status and machine-readable code the API
surfaces; services raise them, routers let them propagate to the global
handler in ``campusnet.middleware.error_handler``.
"""

from __future__ import annotations


class CampusError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class Unauthorized(CampusError):
    """No valid session."""

    status_code = 401
    code = "unauthorized"


class Forbidden(CampusError):
    """The session is valid but the action is not allowed for this user."""

    status_code = 403
    code = "forbidden"


class NotFound(CampusError):
    """Referenced resource does not exist."""

    status_code = 404
    code = "not_found"


class InvalidParent(CampusError):
    """Reply parent must be a live top-level comment on the same post."""

    status_code = 422
    code = "invalid_parent"


class UsageError(CampusError):
    """The operation does not apply to this target."""

    status_code = 400
    code = "usage_error"


class ConstraintViolation(CampusError):
    """A uniqueness invariant rejected the write."""

    status_code = 409
    code = "constraint_violation"


class TransientStoreFailure(CampusError):
    """The store is temporarily unavailable."""

    status_code = 503
    code = "store_unavailable"


class QuotaExceeded(CampusError):
    """Upload rejected by size or type limits."""

    status_code = 413
    code = "quota_exceeded"
