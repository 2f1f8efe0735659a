# backend/roombook/core/exceptions.py
"""
Domain-specific exceptions for the reservation engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException carrying the structured detail."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when the principal lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class ExternalDependencyException(DomainException):
    """Raised when the payment gateway or notification transport fails."""

    status_code = status.HTTP_502_BAD_GATEWAY


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking overlaps a live booking on the same resource."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class DuplicatePaymentException(ConflictException):
    """Raised when a booking already has a payment record."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="A payment already exists for this booking",
            code="PAYMENT_EXISTS",
            details={"booking_id": booking_id},
        )


class InvariantViolationException(BusinessRuleException):
    """Raised when a once-only operation is replayed or a transition is illegal."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "INVARIANT_VIOLATION",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, details=details or {})


class WebhookSignatureException(DomainException):
    """Raised when a gateway webhook fails signature verification."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_WEBHOOK_SIGNATURE")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
