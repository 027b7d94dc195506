"""Error taxonomy for the request workflow and mapping of backend failures onto it."""

from __future__ import annotations

from typing import Any

import httpx


class WorkflowError(Exception):
    """Base class. ``user_message`` is the single message shown to the caller."""

    status_code = 500

    def __init__(self, user_message: str, *, detail: Any = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.detail = detail


class ValidationError(WorkflowError):
    status_code = 422


class MissingDepartmentError(ValidationError):
    """The caller's profile has no department, so nothing can be filed for them."""


class TransitionError(ValidationError):
    status_code = 409


class NoValidRowsError(ValidationError):
    status_code = 400


class AuthorizationError(WorkflowError):
    status_code = 403


class PermissionDeniedError(WorkflowError):
    """The backend's row-level policy refused the operation."""

    status_code = 403


class NotFoundError(WorkflowError):
    status_code = 404


class SessionExpiredError(WorkflowError):
    status_code = 401
    redirect_to = "/login"


class NetworkError(WorkflowError):
    status_code = 502


PERMISSION_CODES = {"PGRST301", "42501"}
NOT_FOUND_CODES = {"PGRST116"}
SESSION_MARKERS = ("jwt", "token", "session")


def classify_remote_error(exc: BaseException, action: str = "request") -> WorkflowError:
    """Translate an exception raised by a backend client into a WorkflowError.

    Inspects ``code`` and ``message`` attributes the way PostgREST errors carry them,
    falling back to the string form of the exception.
    """
    if isinstance(exc, WorkflowError):
        return exc

    if isinstance(exc, httpx.TransportError):
        return NetworkError(f"Could not reach the server while processing the {action}.", detail=str(exc))

    code = str(getattr(exc, "code", "") or "")
    message = str(getattr(exc, "message", "") or exc)
    lowered = message.lower()

    if code in PERMISSION_CODES or "permission" in lowered or "row-level security" in lowered:
        return PermissionDeniedError(f"You do not have permission to perform this {action}.", detail=message)
    if code in NOT_FOUND_CODES:
        return NotFoundError("The request could not be found.", detail=message)
    if any(marker in lowered for marker in SESSION_MARKERS):
        return SessionExpiredError("Your session has expired. Please sign in again.", detail=message)
    return NetworkError(f"The {action} failed: {message}", detail=message)
