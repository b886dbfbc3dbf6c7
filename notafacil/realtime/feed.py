"""
Realtime Subscription Feed

Keeps the local InvoiceCollection in step with the backing store:
one bulk load, then an unbounded stream of change events.

STATE MACHINE:
    UNSUBSCRIBED --start()--> LOADING --(loaded + channel open)--> LIVE
    LOADING/LIVE --stop()--> UNSUBSCRIBED

EVENT APPLICATION (keyed by invoice id):
- insert: replace in place if present (the optimistic create got there
  first), otherwise prepend
- update: replace in place; if absent, treat as a missed insert
- delete: remove; absent is a no-op. The id comes from the "old" side
  of the event, because the "new" side of a delete is empty

Ordering is weakly consistent: bulk-load order until the first event,
then untouched entries keep their relative order and new entries go to
the front.
"""

import asyncio
import contextlib
from datetime import date
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from notafacil.audit import AuditLogger
from notafacil.models.audit import AuditEventBuilder
from notafacil.models.events import ChangeEvent, ChangeKind
from notafacil.models.invoice import Invoice
from notafacil.models.mapping import InvalidRecordError, record_to_invoice
from notafacil.realtime.collection import InvoiceCollection
from notafacil.services.storage.interface import (
    ChangeSubscription,
    InvoiceBackend,
    SubscriptionSetupError,
)


logger = structlog.get_logger(__name__)


class FeedState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    LOADING = "loading"
    LIVE = "live"


class RealtimeInvoiceFeed:
    """
    Bulk load plus live change events for the signed-in user.

    Usage:
        async with RealtimeInvoiceFeed(backend, collection):
            ...  # collection is live here
    """

    def __init__(
        self,
        backend: InvoiceBackend,
        collection: InvoiceCollection,
        clock: Callable[[], date] = date.today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._backend = backend
        self._collection = collection
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

        self._state = FeedState.UNSUBSCRIBED
        self._owner_id: Optional[str] = None
        self._subscription: Optional[ChangeSubscription] = None
        self._pump: Optional[asyncio.Task] = None
        # Bumped by stop(); a start() that sees it change abandons its work
        self._generation = 0

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def collection(self) -> InvoiceCollection:
        return self._collection

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Load the current user's invoices and go live.

        With no signed-in user the collection is emptied and the feed
        stays UNSUBSCRIBED without opening a channel.

        Raises:
            SubscriptionSetupError: If the bulk load or the channel fails.
                The collection is left empty; nothing is retried.
        """
        if self._state is not FeedState.UNSUBSCRIBED:
            raise RuntimeError(f"Feed already started (state: {self._state.value})")

        self._state = FeedState.LOADING
        generation = self._generation
        owner_id: Optional[str] = None
        subscription: Optional[ChangeSubscription] = None

        try:
            user = await self._backend.get_current_user()
            if generation != self._generation:
                return
            if user is None:
                self._collection.clear()
                self._state = FeedState.UNSUBSCRIBED
                return
            owner_id = user.id

            rows = await self._backend.fetch_invoices(owner_id)
            if generation != self._generation:
                return
            self._collection.replace_all(self._map_rows(rows))

            subscription = await self._backend.subscribe(owner_id)
        except Exception as e:
            if subscription is not None:
                await subscription.close()
            if generation == self._generation:
                self._collection.clear()
                self._state = FeedState.UNSUBSCRIBED
            logger.error("feed_setup_failed", owner_id=owner_id, error=str(e))
            self._audit.log(AuditEventBuilder.feed_setup_failed(owner_id, str(e)))
            raise SubscriptionSetupError(f"Realtime feed setup failed: {e}") from e

        if generation != self._generation:
            # stop() ran while the channel was opening
            await subscription.close()
            return

        self._owner_id = owner_id
        self._subscription = subscription
        self._state = FeedState.LIVE
        self._pump = asyncio.create_task(self._consume(subscription))
        self._audit.log(AuditEventBuilder.feed_loaded(owner_id, len(self._collection)))

    async def stop(self) -> None:
        """
        Tear the feed down. Idempotent.

        The channel is always released; once this returns no event
        reaches the collection.
        """
        self._generation += 1
        was_active = self._state is not FeedState.UNSUBSCRIBED
        owner_id = self._owner_id
        subscription, pump = self._subscription, self._pump

        self._state = FeedState.UNSUBSCRIBED
        self._owner_id = None
        self._subscription = None
        self._pump = None

        try:
            if subscription is not None:
                await subscription.close()
        finally:
            if pump is not None and pump is not asyncio.current_task():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump

        if was_active:
            self._audit.log(AuditEventBuilder.feed_closed(owner_id))

    async def restart(self) -> None:
        """Tear down and load again, e.g. after the signed-in user changed."""
        await self.stop()
        await self.start()

    async def __aenter__(self) -> "RealtimeInvoiceFeed":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def _consume(self, subscription: ChangeSubscription) -> None:
        """Apply events one at a time, in delivery order."""
        async for event in subscription:
            if self._subscription is not subscription:
                break
            try:
                self.apply_event(event)
            except Exception as e:
                # One bad event must not end the stream
                logger.error("feed_event_failed", kind=event.kind.value, error=str(e))
                self._audit.log_error(
                    "feed_event_failed", str(e), details={"kind": event.kind.value}
                )

    def apply_event(self, event: ChangeEvent) -> bool:
        """
        Apply one change event to the collection.

        Returns True when the collection changed. Events that cannot be
        applied are logged and skipped; they never stop the feed.
        """
        record = event.record
        if not record or not record.get("id"):
            self._skip(event, "payload carries no id")
            return False

        row_owner = record.get("user_id")
        if row_owner is not None and self._owner_id is not None and row_owner != self._owner_id:
            self._skip(event, "row belongs to another owner")
            return False

        if event.kind is ChangeKind.DELETE:
            return self._collection.remove(str(record["id"])) is not None

        try:
            invoice = record_to_invoice(record, today=self._clock())
        except InvalidRecordError as e:
            self._skip(event, str(e))
            return False

        self._collection.upsert(invoice)
        return True

    def _map_rows(self, rows: list[dict[str, Any]]) -> list[Invoice]:
        today = self._clock()
        invoices: list[Invoice] = []
        seen: set[str] = set()
        for row in rows:
            try:
                invoice = record_to_invoice(row, today=today)
            except InvalidRecordError as e:
                logger.warning("feed_row_skipped", error=str(e))
                continue  # Skip malformed rows
            if invoice.id in seen:
                continue
            seen.add(invoice.id)
            invoices.append(invoice)
        return invoices

    def _skip(self, event: ChangeEvent, reason: str) -> None:
        logger.warning("feed_event_skipped", kind=event.kind.value, reason=reason)
        self._audit.log(AuditEventBuilder.change_event_skipped(event.kind.value, reason))
