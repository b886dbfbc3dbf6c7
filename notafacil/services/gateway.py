"""
Remote Mutation Gateway

Issues create/update/delete against the backing store on behalf of the
signed-in user.

GUARANTEES:
- Every call resolves the current user first; no user -> NotAuthenticated
- Every row written or targeted is scoped to that user
- Single-shot: no retries
- Store failures surface as RemoteWriteError, chained to the cause

"Not found" is never reported for update/delete. Whether a missing row
is an error is up to the store, and callers must not rely on it.
"""

from typing import Optional

import structlog

from notafacil.models.invoice import Invoice
from notafacil.models.mapping import invoice_to_record, invoice_to_update_fields
from notafacil.services.storage.interface import (
    AuthUser,
    InvoiceBackend,
    NotAuthenticated,
    RemoteWriteError,
)


logger = structlog.get_logger(__name__)


class InvoiceGateway:
    """Owner-scoped writes to the invoices table."""

    def __init__(self, backend: InvoiceBackend):
        self._backend = backend

    async def _require_user(self, operation: str) -> AuthUser:
        user = await self._backend.get_current_user()
        if user is None:
            logger.error("gateway_not_authenticated", operation=operation)
            raise NotAuthenticated(
                f"User is not authenticated. Cannot {operation} invoice."
            )
        return user

    async def create(self, invoice: Invoice) -> None:
        """Insert the full invoice, tagged with the owner's id."""
        user = await self._require_user("create")
        record = invoice_to_record(invoice, owner_id=user.id)
        try:
            await self._backend.insert_invoice(record)
        except Exception as e:
            logger.error("gateway_create_failed", invoice_id=invoice.id, error=str(e))
            raise RemoteWriteError("create", invoice.id, e) from e

    async def update(self, invoice: Invoice) -> None:
        """Send every mutable field, keyed by id."""
        user = await self._require_user("update")
        fields = invoice_to_update_fields(invoice)
        try:
            await self._backend.update_invoice(invoice.id, user.id, fields)
        except Exception as e:
            logger.error("gateway_update_failed", invoice_id=invoice.id, error=str(e))
            raise RemoteWriteError("update", invoice.id, e) from e

    async def delete(self, invoice_id: str) -> None:
        user = await self._require_user("delete")
        try:
            await self._backend.delete_invoice(invoice_id, user.id)
        except Exception as e:
            logger.error("gateway_delete_failed", invoice_id=invoice_id, error=str(e))
            raise RemoteWriteError("delete", invoice_id, e) from e

    async def current_user(self) -> Optional[AuthUser]:
        return await self._backend.get_current_user()
