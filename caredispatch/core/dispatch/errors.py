# caredispatch/core/dispatch/errors.py
"""
Typed domain errors for complaint intake and status tracking.

Each error maps to a specific HTTP status code.  The transport layer
catches ``DispatchError`` subtypes and converts them to ``HTTPException``
without embedding business logic in the route handlers.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(DispatchError):
    """Missing or malformed input (400). Nothing was written."""

    status_code = 400


class NotFoundError(DispatchError):
    """Unknown complaint, volunteer, dispatch or assignment (404)."""

    status_code = 404


class ConflictError(DispatchError):
    """Transition rejected by the slot's current state (409)."""

    status_code = 409


class StorageError(DispatchError):
    """Persistence unavailable or constraint violated (500). The operation was aborted."""

    status_code = 500
