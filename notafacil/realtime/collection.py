"""
Local Invoice Collection

The ordered, in-memory view of the current owner's invoices. It has
exactly two writers: the realtime feed (applying change events) and
the optimistic orchestrator (applying and rolling back mutations).
Both run on the same event loop, so no lock is taken; every method
here is synchronous and completes without suspending.

Invariant: ids are unique within the collection.
"""

from typing import Callable, Iterable, Iterator, Optional

import structlog

from notafacil.models.invoice import Invoice


logger = structlog.get_logger(__name__)


CollectionListener = Callable[[tuple[Invoice, ...]], None]


class InvoiceCollection:
    """Ordered invoices keyed by id, newest first."""

    def __init__(self, invoices: Iterable[Invoice] = ()):
        self._items: list[Invoice] = []
        self._listeners: list[CollectionListener] = []
        self._load(invoices)

    def _load(self, invoices: Iterable[Invoice]) -> None:
        items = list(invoices)
        seen: set[str] = set()
        for invoice in items:
            if invoice.id in seen:
                raise ValueError(f"Duplicate invoice id: {invoice.id}")
            seen.add(invoice.id)
        self._items = items

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Invoice]:
        return iter(tuple(self._items))

    def __contains__(self, invoice_id: object) -> bool:
        return self.index_of(invoice_id) is not None

    def snapshot(self) -> tuple[Invoice, ...]:
        return tuple(self._items)

    def ids(self) -> list[str]:
        return [invoice.id for invoice in self._items]

    def index_of(self, invoice_id: object) -> Optional[int]:
        for index, invoice in enumerate(self._items):
            if invoice.id == invoice_id:
                return index
        return None

    def get(self, invoice_id: str) -> Optional[Invoice]:
        index = self.index_of(invoice_id)
        return None if index is None else self._items[index]

    def find(self, invoice_id: str) -> Optional[Invoice]:
        """Case-insensitive lookup, as used by the chatbot."""
        wanted = invoice_id.strip().lower()
        for invoice in self._items:
            if invoice.id.lower() == wanted:
                return invoice
        return None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def replace_all(self, invoices: Iterable[Invoice]) -> None:
        self._load(invoices)
        self._notify()

    def clear(self) -> None:
        self._items = []
        self._notify()

    def prepend(self, invoice: Invoice) -> None:
        if invoice.id in self:
            raise ValueError(f"Duplicate invoice id: {invoice.id}")
        self._items.insert(0, invoice)
        self._notify()

    def insert_at(self, index: int, invoice: Invoice) -> None:
        """Insert at a position, clamped to the current bounds."""
        if invoice.id in self:
            raise ValueError(f"Duplicate invoice id: {invoice.id}")
        index = max(0, min(index, len(self._items)))
        self._items.insert(index, invoice)
        self._notify()

    def replace(self, invoice: Invoice) -> Optional[Invoice]:
        """
        Replace the entry with the same id, in place.

        Returns the previous value, or None when the id is absent
        (in which case nothing changes).
        """
        index = self.index_of(invoice.id)
        if index is None:
            return None
        previous = self._items[index]
        self._items[index] = invoice
        self._notify()
        return previous

    def upsert(self, invoice: Invoice) -> bool:
        """
        Replace in place when the id exists, otherwise prepend.

        Returns True when the invoice was new.
        """
        if self.replace(invoice) is not None:
            return False
        self.prepend(invoice)
        return True

    def remove(self, invoice_id: str) -> Optional[tuple[int, Invoice]]:
        """Remove an entry. Returns its former index and value, or None if absent."""
        index = self.index_of(invoice_id)
        if index is None:
            return None
        invoice = self._items.pop(index)
        self._notify()
        return index, invoice

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: CollectionListener) -> Callable[[], None]:
        """
        Call listener with a snapshot after every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        """Tell every listener. A failing listener never undoes or blocks a write."""
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(
                    "collection_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                )
