"""
Authorization error taxonomy & FastAPI exception handlers.

Services and guards raise these domain exceptions; the handlers
registered by `register_exception_handlers` turn them into structured
JSON rejections.  Storage error messages never reach the client:
`StoreError` always renders as a generic 500.
"""

import logging
from collections.abc import Iterable

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("rbac")


class RBACError(Exception):
    """Base class for every authorization / administration error."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_type: str = "rbac_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.message or self.error_type, "type": self.error_type}


class Unauthenticated(RBACError):
    """No usable principal on the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(RBACError):
    """Authenticated, but the required permission(s) / role are missing."""

    status_code = status.HTTP_403_FORBIDDEN
    error_type = "forbidden"

    def __init__(
        self,
        message: str = "Access denied",
        *,
        required: Iterable[str] = (),
        missing: Iterable[str] | None = None,
        granted: Iterable[str] | None = None,
    ):
        super().__init__(message)
        self.required = sorted(required)
        self.missing = sorted(missing) if missing is not None else None
        self.granted = sorted(granted) if granted is not None else None

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["required"] = self.required
        if self.missing is not None:
            payload["missing"] = self.missing
        if self.granted is not None:
            payload["granted"] = self.granted
        return payload


class InvalidAssignment(RBACError):
    """Duplicate assignment, system-role mutation, or deletion while in use."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_assignment"


class NotFoundError(RBACError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"


class UserNotFound(NotFoundError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class RoleNotFound(NotFoundError):
    def __init__(self, message: str = "Role not found"):
        super().__init__(message)


class PermissionNotFound(NotFoundError):
    def __init__(self, message: str = "Permission not found"):
        super().__init__(message)


class AssignmentNotFound(NotFoundError):
    def __init__(self, message: str = "Assignment not found"):
        super().__init__(message)


class StoreError(RBACError):
    """Persistence unavailable or erroring.  The message stays server-side."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "internal_error"

    def to_payload(self) -> dict:
        return {"error": "Internal server error", "type": self.error_type}


# ── Handlers ─────────────────────────────────────────────────────────


async def _handle_rbac_error(request: Request, exc: RBACError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the RBAC error handlers to the FastAPI app."""
    app.add_exception_handler(RBACError, _handle_rbac_error)
