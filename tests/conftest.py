"""
Shared fixtures for NotaFácil tests.

No test talks to Supabase or Gemini: storage is the in-memory backend
and the chatbot runs against scripted chat sessions.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from notafacil.audit import AuditLogger
from notafacil.models.invoice import Invoice, InvoiceStatus
from notafacil.realtime.collection import InvoiceCollection
from notafacil.services.gateway import InvoiceGateway
from notafacil.services.storage import AuthUser, InMemoryInvoiceBackend


TODAY = date(2024, 1, 2)
OWNER = AuthUser(id="user-1", email="ana@example.com", full_name="Ana")
OTHER_OWNER = AuthUser(id="user-2", email="bruno@example.com")


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture
def owner() -> AuthUser:
    return OWNER


@pytest.fixture
def other_owner() -> AuthUser:
    return OTHER_OWNER


@pytest.fixture
def make_invoice():
    """Build an Invoice with sensible defaults; override any field."""

    def _make(invoice_id: str = "inv-1", **overrides) -> Invoice:
        fields = {
            "id": invoice_id,
            "client_name": "Acme",
            "amount": Decimal("100.00"),
            "issue_date": TODAY,
            "due_date": date(2024, 2, 1),
            "status": InvoiceStatus.PENDING,
            "observations": "",
        }
        fields.update(overrides)
        return Invoice(**fields)

    return _make


@pytest.fixture
def make_row():
    """Build a storage row (snake_case, owned by OWNER)."""

    def _make(invoice_id: str = "inv-1", **overrides) -> dict:
        row = {
            "id": invoice_id,
            "user_id": OWNER.id,
            "client_name": "Acme",
            "amount": 100.0,
            "issue_date": "2024-01-02",
            "due_date": "2024-02-01",
            "status": "Pending",
            "observations": "",
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture
def backend() -> InMemoryInvoiceBackend:
    return InMemoryInvoiceBackend(user=OWNER)


@pytest.fixture
def collection() -> InvoiceCollection:
    return InvoiceCollection()


@pytest.fixture
def gateway(backend) -> InvoiceGateway:
    return InvoiceGateway(backend)


@pytest.fixture
def audit_events() -> list:
    return []


@pytest.fixture
def audit_logger(audit_events) -> AuditLogger:
    return AuditLogger(sink=audit_events.append)


@pytest.fixture
def settle():
    """Let pending tasks (the feed's event pump) run."""

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle
