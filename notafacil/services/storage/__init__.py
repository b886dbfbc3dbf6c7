"""
Storage Services Package

Provides the abstract backing-store interface and its implementations.
Supabase is the production backend; the in-memory backend serves tests
and local demos.
"""

from notafacil.services.storage.interface import (
    AuthUser,
    ChangeSubscription,
    InvoiceBackend,
    NotAuthenticated,
    RemoteWriteError,
    StorageError,
    SubscriptionSetupError,
)
from notafacil.services.storage.subscription import QueueSubscription
from notafacil.services.storage.memory import InMemoryInvoiceBackend
from notafacil.services.storage.supabase_backend import SupabaseInvoiceBackend

__all__ = [
    # Interfaces
    "AuthUser",
    "ChangeSubscription",
    "InvoiceBackend",
    "QueueSubscription",
    # Exceptions
    "NotAuthenticated",
    "RemoteWriteError",
    "StorageError",
    "SubscriptionSetupError",
    # Implementations
    "InMemoryInvoiceBackend",
    "SupabaseInvoiceBackend",
]
