"""
In-Memory Backing Store

A local stand-in for the relational store, its auth service and its
realtime channel. Every write emits the same change event the real
store would push, so the whole optimistic/realtime loop can run
without a network.

Failure injection (fail_next) and call recording (calls) make it the
backend used throughout the test suite.
"""

import itertools
from collections import defaultdict, deque
from typing import Any, Optional
from uuid import uuid4

from notafacil.models.events import ChangeEvent, ChangeKind
from notafacil.models.mapping import MUTABLE_COLUMNS
from notafacil.services.storage.interface import (
    AuthUser,
    InvoiceBackend,
    StorageError,
)
from notafacil.services.storage.subscription import QueueSubscription


class InMemoryInvoiceBackend(InvoiceBackend):
    """
    InvoiceBackend kept entirely in process memory.

    Args:
        user: User signed in from the start, if any
        emit_events: Echo every write to open subscriptions
    """

    def __init__(
        self,
        user: Optional[AuthUser] = None,
        emit_events: bool = True,
    ):
        self._current_user = user
        self._users: dict[str, tuple[AuthUser, str]] = {}
        if user is not None:
            self._users[user.email or user.id] = (user, "")

        self._rows: dict[str, dict[str, Any]] = {}
        self._created_seq = itertools.count(1)
        self._subscriptions: list[tuple[str, QueueSubscription]] = []
        self._failures: dict[str, deque] = defaultdict(deque)
        self.emit_events = emit_events

        # (operation, payload) for every call, in order
        self.calls: list[tuple[str, Any]] = []
        self.magic_links: list[str] = []

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        """
        Make the next call of an operation raise.

        operation is one of: fetch, insert, update, delete, subscribe.
        """
        self._failures[operation].append(
            error or StorageError(f"simulated {operation} failure")
        )

    def _maybe_fail(self, operation: str) -> None:
        if self._failures[operation]:
            raise self._failures[operation].popleft()

    def calls_for(self, operation: str) -> list[Any]:
        return [payload for op, payload in self.calls if op == operation]

    def seed(self, record: dict[str, Any]) -> None:
        """Store a row directly, without events or call records."""
        row = dict(record)
        row.setdefault("created_at", next(self._created_seq))
        self._rows[row["id"]] = row

    def rows(self) -> dict[str, dict[str, Any]]:
        return {key: dict(row) for key, row in self._rows.items()}

    def push_event(self, event: ChangeEvent) -> None:
        """Deliver an event to every open subscription, as the server would."""
        for _, subscription in list(self._subscriptions):
            subscription.push(event)

    @property
    def open_subscriptions(self) -> int:
        return sum(1 for _, sub in self._subscriptions if not sub.closed)

    def _emit(self, owner_id: str, event: ChangeEvent) -> None:
        if not self.emit_events:
            return
        for sub_owner, subscription in list(self._subscriptions):
            if sub_owner == owner_id:
                subscription.push(event)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def set_user(self, user: Optional[AuthUser]) -> None:
        self._current_user = user

    async def get_current_user(self) -> Optional[AuthUser]:
        return self._current_user

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        entry = self._users.get(email)
        if entry is None or entry[1] != password:
            raise StorageError("Invalid login credentials")
        self._current_user = entry[0]
        return entry[0]

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> Optional[AuthUser]:
        if email in self._users:
            raise StorageError("User already registered")
        user = AuthUser(id=str(uuid4()), email=email, full_name=full_name)
        self._users[email] = (user, password)
        self._current_user = user
        return user

    async def sign_in_with_magic_link(
        self,
        email: str,
        redirect_to: Optional[str] = None,
    ) -> None:
        self.magic_links.append(email)

    async def sign_out(self) -> None:
        self._current_user = None

    # -------------------------------------------------------------------------
    # Invoice rows
    # -------------------------------------------------------------------------

    async def fetch_invoices(self, owner_id: str) -> list[dict[str, Any]]:
        self.calls.append(("fetch", owner_id))
        self._maybe_fail("fetch")
        owned = [row for row in self._rows.values() if row.get("user_id") == owner_id]
        owned.sort(key=lambda row: row["created_at"], reverse=True)
        return [dict(row) for row in owned]

    async def insert_invoice(self, record: dict[str, Any]) -> None:
        self.calls.append(("insert", dict(record)))
        self._maybe_fail("insert")
        if record["id"] in self._rows:
            raise StorageError(
                'duplicate key value violates unique constraint "invoices_pkey"'
            )
        row = dict(record, created_at=next(self._created_seq))
        self._rows[row["id"]] = row
        self._emit(row["user_id"], ChangeEvent(kind=ChangeKind.INSERT, new=dict(row)))

    async def update_invoice(
        self,
        invoice_id: str,
        owner_id: str,
        fields: dict[str, Any],
    ) -> None:
        self.calls.append(("update", {"id": invoice_id, **fields}))
        self._maybe_fail("update")
        row = self._rows.get(invoice_id)
        if row is None or row.get("user_id") != owner_id:
            return
        old = dict(row)
        row.update({k: v for k, v in fields.items() if k in MUTABLE_COLUMNS})
        self._emit(
            owner_id,
            ChangeEvent(kind=ChangeKind.UPDATE, new=dict(row), old=old),
        )

    async def delete_invoice(self, invoice_id: str, owner_id: str) -> None:
        self.calls.append(("delete", invoice_id))
        self._maybe_fail("delete")
        row = self._rows.get(invoice_id)
        if row is None or row.get("user_id") != owner_id:
            return
        del self._rows[invoice_id]
        # Default replica identity: the old side only carries the key
        self._emit(
            owner_id,
            ChangeEvent(kind=ChangeKind.DELETE, new={}, old={"id": invoice_id}),
        )

    # -------------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------------

    async def subscribe(self, owner_id: str) -> QueueSubscription:
        self.calls.append(("subscribe", owner_id))
        self._maybe_fail("subscribe")

        subscription: QueueSubscription

        async def _release() -> None:
            self._subscriptions = [
                entry for entry in self._subscriptions if entry[1] is not subscription
            ]

        subscription = QueueSubscription(on_close=_release)
        self._subscriptions.append((owner_id, subscription))
        return subscription
