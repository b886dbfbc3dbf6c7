"""Realtime package: the local invoice collection and the change feed."""

from notafacil.realtime.collection import CollectionListener, InvoiceCollection
from notafacil.realtime.feed import FeedState, RealtimeInvoiceFeed

__all__ = [
    "CollectionListener",
    "FeedState",
    "InvoiceCollection",
    "RealtimeInvoiceFeed",
]
