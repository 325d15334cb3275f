"""Error taxonomy shared by all payroll services."""

from __future__ import annotations

from typing import Any


class PayrollError(Exception):
    """Base class for payroll domain errors."""


class NotFoundError(PayrollError):
    """Raised when a required entity does not exist."""

    def __init__(self, entity: str, identifier: Any = None):
        self.entity = entity
        self.identifier = identifier
        msg = f"{entity} not found"
        if identifier is not None:
            msg = f"{entity} {identifier} not found"
        super().__init__(msg)


class ValidationError(PayrollError):
    """Raised when input or state does not allow the requested operation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(PayrollError):
    """Raised when an operation would duplicate an existing record."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
