"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from ticket_sentinel.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    PersistenceException,
    ResourceNotFoundException,
    ConfigurationException,
    UnauthorizedException,
    ExternalServiceException,
    DeliveryException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "PersistenceException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "UnauthorizedException",
    "ExternalServiceException",
    "DeliveryException",
]
