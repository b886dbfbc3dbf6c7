"""
Optimistic Mutation Orchestrator for NotaFácil

This module is the single entry point the UI and the chatbot use to
change invoices. Every operation follows the same flow:

1. Apply the change to the local collection immediately
2. Call the remote gateway
3. On failure: undo the local change, tell the user, re-raise

DESIGN DECISION: Rollback is a structural inverse, not a blind restore
of a pre-mutation snapshot. Mutations still in flight are chained per
invoice id, in the order they were applied:

- create fails: remove the id at once (the row never reached the store)
- a later mutation has already confirmed: nothing to undo
- a later mutation is still pending: hand our "previous" down to it, so
  that if it fails too it restores the last value the store accepted
- we are the newest pending mutation: put "previous" back, as long as
  the entry still holds what we left there (a change event may have
  replaced it since)

With no overlapping mutation this restores the collection exactly:
same ids, same values, same order.
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel

from notafacil.audit import AuditLogger, create_correlation_id
from notafacil.models.invoice import Invoice, InvoiceDraft
from notafacil.realtime.collection import InvoiceCollection
from notafacil.services.gateway import InvoiceGateway
from notafacil.services.storage.interface import AuthUser, NotAuthenticated


logger = structlog.get_logger(__name__)


class MutationFailure(BaseModel):
    """What the user is told when an optimistic change had to be undone."""

    operation: str
    invoice_id: Optional[str] = None
    message: str
    error: str
    correlation_id: Optional[UUID] = None


FailureNotifier = Callable[[MutationFailure], None]

_USER_MESSAGES = {
    "create": "Failed to create invoice. Please try again.",
    "update": "Failed to update invoice. Please try again.",
    "delete": "Failed to delete invoice. Please try again.",
}


def log_failure(failure: MutationFailure) -> None:
    """Default notifier: no UI attached, so the failure goes to the log."""
    logger.warning(
        "invoice_mutation_failed",
        operation=failure.operation,
        invoice_id=failure.invoice_id,
        message=failure.message,
        error=failure.error,
    )


def new_invoice_id() -> str:
    return str(uuid4())


@dataclass(eq=False)
class _PendingMutation:
    """
    One optimistic change awaiting the store.

    expected: what the entry holds while this mutation owns it (None = absent)
    previous: what to put back on failure (None = absent)
    index: where previous sat, for re-inserting after a delete
    """
    operation: str
    invoice_id: str
    expected: Optional[Invoice]
    previous: Optional[Invoice]
    index: Optional[int] = None
    superseded: bool = False


class InvoiceOrchestrator:
    """
    Optimistic create/update/delete over the shared collection.

    Args:
        collection: The local collection shared with the realtime feed
        gateway: Remote writes
        current_user: Returns the session's user; None means signed out.
                      When omitted only the gateway checks the session.
        clock: Today's date, used to derive status on create
        id_factory: Generates ids for new invoices
        notifier: Called once per failed operation, right after rollback
        audit_logger: Audit trail
    """

    def __init__(
        self,
        collection: InvoiceCollection,
        gateway: InvoiceGateway,
        current_user: Optional[Callable[[], Optional[AuthUser]]] = None,
        clock: Callable[[], date] = date.today,
        id_factory: Callable[[], str] = new_invoice_id,
        notifier: FailureNotifier = log_failure,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._collection = collection
        self._gateway = gateway
        self._current_user = current_user
        self._clock = clock
        self._id_factory = id_factory
        self._notifier = notifier
        self._audit = audit_logger or AuditLogger()
        # invoice id -> mutations awaiting the store, oldest first
        self._pending: dict[str, list[_PendingMutation]] = {}

    @property
    def collection(self) -> InvoiceCollection:
        return self._collection

    def today(self) -> date:
        return self._clock()

    def _require_session(self, operation: str, invoice_id: Optional[str]) -> None:
        """Refuse before touching local state when nobody is signed in."""
        if self._current_user is None or self._current_user() is not None:
            return
        error = NotAuthenticated(f"User is not authenticated. Cannot {operation} invoice.")
        self._report(operation, invoice_id, error, correlation_id=None)
        raise error

    def _report(
        self,
        operation: str,
        invoice_id: Optional[str],
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        failure = MutationFailure(
            operation=operation,
            invoice_id=invoice_id,
            message=_USER_MESSAGES[operation],
            error=str(error),
            correlation_id=correlation_id,
        )
        try:
            self._notifier(failure)
        except Exception as e:
            logger.error("failure_notifier_failed", error=str(e))

    def _fail(
        self,
        operation: str,
        invoice_id: str,
        error: Exception,
        restored: bool,
        correlation_id: UUID,
    ) -> None:
        self._audit.log_mutation_failed(operation, invoice_id, str(error), correlation_id)
        self._audit.log_rollback(operation, invoice_id, restored, correlation_id)
        self._report(operation, invoice_id, error, correlation_id)

    # -------------------------------------------------------------------------
    # Pending mutations
    # -------------------------------------------------------------------------

    def _track(self, mutation: _PendingMutation) -> None:
        self._pending.setdefault(mutation.invoice_id, []).append(mutation)

    def _untrack(self, mutation: _PendingMutation) -> list[_PendingMutation]:
        """Drop a settled mutation. Returns those applied after it."""
        chain = self._pending[mutation.invoice_id]
        position = chain.index(mutation)
        later = chain[position + 1:]
        del chain[position]
        if not chain:
            del self._pending[mutation.invoice_id]
        return later

    def _confirm(self, mutation: _PendingMutation) -> None:
        chain = self._pending[mutation.invoice_id]
        # Older writes that fail from now on have nothing left to undo
        for earlier in chain[:chain.index(mutation)]:
            earlier.superseded = True
        self._untrack(mutation)

    def _rollback(self, mutation: _PendingMutation) -> bool:
        """Undo a rejected mutation. Returns True if the collection changed."""
        later = self._untrack(mutation)

        if mutation.operation == "create":
            for other in later:
                other.previous = None
            return self._collection.remove(mutation.invoice_id) is not None

        if mutation.superseded:
            return False

        if later:
            successor = later[0]
            successor.previous = mutation.previous
            if successor.index is None:
                successor.index = mutation.index
            return False

        current = self._collection.get(mutation.invoice_id)
        if current != mutation.expected:
            # A change event replaced the entry since; the store's value wins
            return False
        if mutation.previous is None:
            return self._collection.remove(mutation.invoice_id) is not None
        if current is None:
            self._collection.insert_at(mutation.index or 0, mutation.previous)
        else:
            self._collection.replace(mutation.previous)
        return True

    async def _send(self, mutation: _PendingMutation, call, correlation_id: UUID) -> None:
        self._track(mutation)
        try:
            await call
        except Exception as e:
            restored = self._rollback(mutation)
            self._fail(mutation.operation, mutation.invoice_id, e, restored, correlation_id)
            raise
        self._confirm(mutation)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(self, draft: InvoiceDraft) -> Invoice:
        """
        Create an invoice optimistically.

        The new invoice is prepended at once. If the store rejects it,
        it is removed again, even if a later edit touched it, and the
        error is re-raised.
        """
        self._require_session("create", None)
        correlation_id = create_correlation_id()

        invoice = draft.build(self._id_factory(), today=self._clock())
        self._collection.prepend(invoice)

        mutation = _PendingMutation("create", invoice.id, expected=invoice, previous=None)
        await self._send(mutation, self._gateway.create(invoice), correlation_id)

        self._audit.log_invoice_created(
            invoice.id, invoice.client_name, str(invoice.amount), correlation_id
        )
        return invoice

    async def update(self, invoice: Invoice) -> Invoice:
        """
        Replace the invoice with the same id optimistically.

        An id that is not in the local collection changes nothing
        locally; the remote update is still sent.
        """
        self._require_session("update", invoice.id)
        correlation_id = create_correlation_id()

        index = self._collection.index_of(invoice.id)
        previous = self._collection.replace(invoice)

        mutation = _PendingMutation(
            "update",
            invoice.id,
            expected=invoice if previous is not None else None,
            previous=previous,
            index=index,
        )
        await self._send(mutation, self._gateway.update(invoice), correlation_id)

        self._audit.log_invoice_updated(invoice.id, correlation_id)
        return invoice

    async def delete(self, invoice_id: str) -> None:
        """
        Remove an invoice optimistically.

        No confirmation is asked here; callers confirm beforehand.
        """
        self._require_session("delete", invoice_id)
        correlation_id = create_correlation_id()

        removed = self._collection.remove(invoice_id)
        index, previous = removed if removed is not None else (None, None)

        mutation = _PendingMutation(
            "delete", invoice_id, expected=None, previous=previous, index=index
        )
        await self._send(mutation, self._gateway.delete(invoice_id), correlation_id)

        self._audit.log_invoice_deleted(invoice_id, correlation_id)
