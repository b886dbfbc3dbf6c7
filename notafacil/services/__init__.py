"""Services package."""

from notafacil.services.gateway import InvoiceGateway
from notafacil.services.storage import (
    AuthUser,
    ChangeSubscription,
    InMemoryInvoiceBackend,
    InvoiceBackend,
    NotAuthenticated,
    QueueSubscription,
    RemoteWriteError,
    StorageError,
    SubscriptionSetupError,
    SupabaseInvoiceBackend,
)

__all__ = [
    # Gateway
    "InvoiceGateway",
    # Storage services
    "AuthUser",
    "ChangeSubscription",
    "InMemoryInvoiceBackend",
    "InvoiceBackend",
    "NotAuthenticated",
    "QueueSubscription",
    "RemoteWriteError",
    "StorageError",
    "SubscriptionSetupError",
    "SupabaseInvoiceBackend",
]
