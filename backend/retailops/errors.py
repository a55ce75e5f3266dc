"""
Service error taxonomy.

Every error raised by the service layer derives from ServiceError and carries
the HTTP status it maps to plus an optional list of field-level details.
Routes translate these into the standard response envelope.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors raised by lifecycle managers and reports."""
    status_code = 500

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(ServiceError):
    """400-level input problem."""
    status_code = 400

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message}])


class NotFoundError(ServiceError):
    """Referenced record does not exist (or is soft-deleted)."""
    status_code = 404


class ForbiddenError(ServiceError):
    """Principal may not act on the requested store or resource."""
    status_code = 403


class ConflictError(ServiceError):
    """409-level conflict: duplicate unique value or optimistic-lock mismatch."""
    status_code = 409


class BusinessRuleError(ServiceError):
    """Request is well-formed but violates a lifecycle rule."""
    status_code = 400


class InvalidTransition(BusinessRuleError):
    pass


class NotRefundable(BusinessRuleError):
    pass


class RefundExceedsBalance(BusinessRuleError):
    pass


class InsufficientStock(BusinessRuleError):
    pass


class DependencyError(ServiceError):
    """Persistence or another required collaborator is unavailable."""
    status_code = 500
