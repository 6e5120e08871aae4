"""
Core module for GarageBoard.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- gateway: Persistence gateway interface and in-memory implementation
- gateway_client: Typed, time-bounded client over a gateway
- delivery: Invoice delivery gateway (PDF / WhatsApp)

``gateway_client`` and ``delivery`` depend on ``models`` and are imported
from their modules directly.
"""

from .exceptions import (
    GarageBoardError,
    ValidationError,
    InvalidTransitionError,
    PaymentRequiredError,
    EstimateLockedError,
    InvalidItemError,
    InvalidPaymentError,
    OverpaymentError,
    NotFoundError,
    JobNotFoundError,
    EstimateNotFoundError,
    InvoiceNotFoundError,
    PersistenceError,
    PersistenceTimeoutError,
    DeliveryError,
)
from .gateway import PersistenceGateway, InMemoryGateway

__all__ = [
    "GarageBoardError",
    "ValidationError",
    "InvalidTransitionError",
    "PaymentRequiredError",
    "EstimateLockedError",
    "InvalidItemError",
    "InvalidPaymentError",
    "OverpaymentError",
    "NotFoundError",
    "JobNotFoundError",
    "EstimateNotFoundError",
    "InvoiceNotFoundError",
    "PersistenceError",
    "PersistenceTimeoutError",
    "DeliveryError",
    "PersistenceGateway",
    "InMemoryGateway",
]
