"""
Abstract Backing Store Interface

DESIGN DECISION: We define an abstract interface for the backing store.
This allows us to:
1. Run against Supabase in production
2. Use in-memory storage for testing
3. Keep the gateway and realtime feed decoupled from any SDK

The interface is intentionally thin. The store owns authorization
(row-level security); every row operation still carries the owner id
so that no call ever asks for another user's records.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel

from notafacil.models.events import ChangeEvent


class AuthUser(BaseModel):
    """The signed-in user, as resolved by the authentication service."""

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


class ChangeSubscription(ABC):
    """
    A live stream of change events for one owner's invoices.

    Lazy, unbounded and non-restartable. Exactly one consumer iterates
    it. close() releases the underlying channel; after it returns no
    further event is yielded and iteration ends.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the channel. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class InvoiceBackend(ABC):
    """
    Abstract interface for the backing relational store and its auth service.

    Any backend implementation must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_current_user(self) -> Optional[AuthUser]:
        """
        Resolve the user of the current session.

        Returns:
            The signed-in user, or None if there is no session
        """
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        """
        Sign in with email and password.

        Raises:
            StorageError: If the credentials are rejected
        """
        pass

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> Optional[AuthUser]:
        """
        Register a new account.

        Returns:
            The new user when a session is established immediately,
            None when email confirmation is still pending
        """
        pass

    @abstractmethod
    async def sign_in_with_magic_link(
        self,
        email: str,
        redirect_to: Optional[str] = None,
    ) -> None:
        """Send a passwordless sign-in link."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    # -------------------------------------------------------------------------
    # Invoice rows
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_invoices(self, owner_id: str) -> list[dict[str, Any]]:
        """
        Fetch every invoice row owned by a user.

        Returns:
            Raw rows ordered by creation time, newest first
        """
        pass

    @abstractmethod
    async def insert_invoice(self, record: dict[str, Any]) -> None:
        """
        Insert a full invoice row (already tagged with user_id).

        Raises:
            StorageError: If the store rejects the row
        """
        pass

    @abstractmethod
    async def update_invoice(
        self,
        invoice_id: str,
        owner_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Update the mutable columns of a row.

        A missing row is not reported as an error.
        """
        pass

    @abstractmethod
    async def delete_invoice(self, invoice_id: str, owner_id: str) -> None:
        """
        Delete a row.

        A missing row is not reported as an error.
        """
        pass

    # -------------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------------

    @abstractmethod
    async def subscribe(self, owner_id: str) -> ChangeSubscription:
        """
        Open a change-event subscription for an owner's invoices.

        Raises:
            StorageError: If the channel cannot be opened
        """
        pass


class StorageError(Exception):
    """Base exception for backing store operations."""
    pass


class NotAuthenticated(StorageError):
    """No resolvable user session for an operation that needs an owner."""

    def __init__(self, message: str = "User is not authenticated."):
        super().__init__(message)


class RemoteWriteError(StorageError):
    """The backing store rejected a create, update or delete."""

    def __init__(self, operation: str, invoice_id: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.invoice_id = invoice_id
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to {operation} invoice {invoice_id}{detail}")


class SubscriptionSetupError(StorageError):
    """The initial bulk load or the change channel could not be set up."""
    pass
