"""
Core Invoice Models for NotaFácil

These models define the in-memory shape of an invoice and the rules
that every invoice must satisfy wherever it came from (the UI, the
chatbot, or a row pushed by the backing store).

DESIGN DECISION: Invoices are immutable pydantic models.
Every mutation produces a new instance via model_copy(), so a value
captured for rollback can never be changed behind our back.

Dates are plain calendar dates. The wire format is YYYY-MM-DD and is
parsed by its year/month/day components, never through a timestamp.
"""

import re
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class InvoiceStatus(str, Enum):
    """
    Payment status of an invoice.

    Closed set. Presentation (colours, labels) lives outside the core.
    """
    PAID = "Paid"
    PENDING = "Pending"
    OVERDUE = "Overdue"

    @classmethod
    def parse(cls, value: Any) -> "InvoiceStatus":
        """Accept a status value, enum name or legacy Portuguese label."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid invoice status: {value!r}")

        text = value.strip()
        legacy = _LEGACY_STATUS_LABELS.get(text.lower())
        if legacy is not None:
            return legacy
        for status in cls:
            if text.lower() in (status.value.lower(), status.name.lower()):
                return status
        raise ValueError(f"Invalid invoice status: {value!r}")


# Labels written by the original Portuguese UI
_LEGACY_STATUS_LABELS = {
    "pago": InvoiceStatus.PAID,
    "pendente": InvoiceStatus.PENDING,
    "vencido": InvoiceStatus.OVERDUE,
}


# =============================================================================
# CALENDAR DATES
# =============================================================================

_CALENDAR_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})")


def parse_calendar_date(value: Any) -> date:
    """
    Parse a YYYY-MM-DD value into a local calendar date.

    Year, month and day are read explicitly from the string. A trailing
    time or offset (e.g. "2024-01-02T00:00:00Z") is ignored rather than
    converted, so the calendar day never shifts with the host timezone.
    """
    if isinstance(value, date):
        # datetime is a date subclass; keep only its calendar part
        return date(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}")

    match = _CALENDAR_DATE.match(value)
    if not match:
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}")

    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def format_calendar_date(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def derive_status(due_date: date, today: date) -> InvoiceStatus:
    """Overdue when the due date is strictly before today, Pending otherwise."""
    if due_date < today:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


# =============================================================================
# INVOICE
# =============================================================================

Amount = Annotated[Decimal, Field(ge=0, description="Billed value")]


def _coerce_amount(v: Any) -> Any:
    """Floats go through their text form so 150.1 stays 150.1."""
    if isinstance(v, bool):
        raise ValueError("amount must be a number")
    if isinstance(v, float):
        return Decimal(str(v))
    return v


class Invoice(BaseModel):
    """
    A single invoice owned by the signed-in user.

    The owner is not part of the in-memory model: the local collection
    only ever holds the current owner's invoices, and ownership is
    attached to the wire record by the gateway.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True,
        extra="forbid",
    )

    id: str = Field(
        ...,
        min_length=1,
        description="Client-generated UUID, immutable after creation"
    )
    client_name: str = Field(
        ...,
        min_length=1,
        description="Client name (required)"
    )
    amount: Amount
    issue_date: date
    due_date: date
    status: InvoiceStatus
    observations: str = Field(
        default="",
        description="Free-text notes"
    )

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return _coerce_amount(v)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> date:
        return parse_calendar_date(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> InvoiceStatus:
        return InvoiceStatus.parse(v)

    @field_validator("observations", mode="before")
    @classmethod
    def default_observations(cls, v: Any) -> str:
        return "" if v is None else v

    @field_serializer("issue_date", "due_date")
    def serialize_dates(self, value: date) -> str:
        return format_calendar_date(value)

    def to_agent_dict(self) -> dict[str, Any]:
        """
        The camelCase shape handed to the conversational agent.

        Amounts are plain floats there; the agent's schema knows numbers,
        not decimals.
        """
        return {
            "id": self.id,
            "clientName": self.client_name,
            "amount": float(self.amount),
            "issueDate": format_calendar_date(self.issue_date),
            "dueDate": format_calendar_date(self.due_date),
            "status": self.status.value,
            "observations": self.observations,
        }


class InvoiceDraft(BaseModel):
    """
    Fields supplied by a caller creating an invoice.

    The id is synthesized by the orchestrator. Status and issue date are
    optional: a missing status is derived from the due date, a missing
    issue date becomes today.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    client_name: str = Field(..., min_length=1)
    amount: Amount
    due_date: date
    issue_date: Optional[date] = None
    status: Optional[InvoiceStatus] = None
    observations: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return _coerce_amount(v)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Optional[date]:
        if v is None:
            return None
        return parse_calendar_date(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> Optional[InvoiceStatus]:
        if v is None:
            return None
        return InvoiceStatus.parse(v)

    @field_validator("observations", mode="before")
    @classmethod
    def default_observations(cls, v: Any) -> str:
        return "" if v is None else v

    def build(self, invoice_id: str, today: date) -> Invoice:
        """Materialize the full invoice for a freshly generated id."""
        return Invoice(
            id=invoice_id,
            client_name=self.client_name,
            amount=self.amount,
            issue_date=self.issue_date or today,
            due_date=self.due_date,
            status=self.status or derive_status(self.due_date, today),
            observations=self.observations,
        )
