"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class PersistenceException(RepositoryException):
    """Ticket store read or write failed or timed out."""

    def __init__(
        self,
        operation: str,
        ticket_id: Optional[str] = None,
        message: str = "ticket store call failed",
        details: Optional[dict] = None
    ):
        self.operation = operation
        self.ticket_id = ticket_id
        text = f"{operation}: {message}"
        if ticket_id:
            text += f" (ticket {ticket_id})"
        super().__init__(text, details or {"operation": operation, "ticket_id": ticket_id})


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class UnauthorizedException(ApplicationException):
    """Caller lacks the staff privilege an operation requires."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class DeliveryException(ExternalServiceException):
    """Exception for chat platform delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Messaging", message, details)
