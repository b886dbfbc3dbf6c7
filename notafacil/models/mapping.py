"""
Invoice Entity Mapper

Translates between the wire/storage row shape (snake_case columns of
the invoices table) and the in-memory Invoice model.

Defaulting rules for inbound rows:
- due_date missing/null   -> today
- issue_date missing/null -> today
- observations missing    -> ""
- status missing/null     -> derived from due_date against today
- amount                  -> coerced to Decimal; non-numeric is an error

The only impure input is "today". Callers that need determinism pass it
in; otherwise the local wall-clock date is used.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from notafacil.models.invoice import (
    Invoice,
    InvoiceStatus,
    derive_status,
    format_calendar_date,
    parse_calendar_date,
)


# Columns written on update (everything except the key and the owner)
MUTABLE_COLUMNS = (
    "client_name",
    "amount",
    "issue_date",
    "due_date",
    "status",
    "observations",
)


class InvalidRecordError(ValueError):
    """A row could not be mapped to an Invoice."""

    def __init__(self, message: str, record: Optional[Mapping[str, Any]] = None):
        super().__init__(message)
        self.record = dict(record or {})


def _coerce_amount(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidRecordError(f"amount is not numeric: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidRecordError(f"amount is not numeric: {value!r}") from e


def record_to_invoice(
    record: Mapping[str, Any],
    today: Optional[date] = None,
) -> Invoice:
    """Map a storage row to an Invoice, applying the defaulting rules."""
    today = today or date.today()

    if not record or not record.get("id"):
        raise InvalidRecordError("record has no id", record)

    amount = _coerce_amount(record.get("amount"))

    try:
        due_date = (
            parse_calendar_date(record["due_date"])
            if record.get("due_date")
            else today
        )
        issue_date = (
            parse_calendar_date(record["issue_date"])
            if record.get("issue_date")
            else today
        )
        status = (
            InvoiceStatus.parse(record["status"])
            if record.get("status")
            else derive_status(due_date, today)
        )
        return Invoice(
            id=str(record["id"]),
            client_name=record.get("client_name") or "",
            amount=amount,
            issue_date=issue_date,
            due_date=due_date,
            status=status,
            observations=record.get("observations") or "",
        )
    except (ValueError, ValidationError) as e:
        raise InvalidRecordError(
            f"record {record.get('id')!r} is not a valid invoice: {e}",
            record,
        ) from e


def invoice_to_update_fields(invoice: Invoice) -> dict[str, Any]:
    """The mutable columns of an invoice, keyed for an update by id."""
    return {
        "client_name": invoice.client_name,
        "amount": float(invoice.amount),
        "issue_date": format_calendar_date(invoice.issue_date),
        "due_date": format_calendar_date(invoice.due_date),
        "status": invoice.status.value,
        "observations": invoice.observations,
    }


def invoice_to_record(
    invoice: Invoice,
    owner_id: Optional[str] = None,
) -> dict[str, Any]:
    """Map an Invoice to the full row written on insert."""
    record: dict[str, Any] = {"id": invoice.id}
    if owner_id is not None:
        record["user_id"] = owner_id
    record.update(invoice_to_update_fields(invoice))
    return record
