"""
Domain exceptions raised by the service layer and mapped to HTTP responses.
"""

from __future__ import annotations


class MemoirsError(Exception):
    """Base class for errors scoped to a single user action."""

    status_code = 400
    code = "error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class AuthenticationRequired(MemoirsError):
    status_code = 401
    code = "authentication_required"


class ProfileSetupRequired(MemoirsError):
    status_code = 403
    code = "profile_setup_required"


class VerificationRequired(MemoirsError):
    status_code = 403
    code = "verification_required"


class PermissionDenied(MemoirsError):
    status_code = 403
    code = "permission_denied"


class NotFound(MemoirsError):
    status_code = 404
    code = "not_found"


class ValidationFailed(MemoirsError):
    status_code = 422
    code = "validation_failed"


class BackendError(MemoirsError):
    """A database or storage call failed."""

    status_code = 502
    code = "backend_error"
