"""
Invoice Statistics

DESIGN DECISION: Statistics are DETERMINISTIC reductions over a snapshot
of the local collection. They never call the store, so the dashboard
and the calendar show exactly what the invoice list shows, optimistic
changes included.

Amounts are summed as Decimal; nothing is rounded here.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, Field

from notafacil.models.invoice import Invoice, InvoiceStatus


class InvoiceSummary(BaseModel):
    """Dashboard totals: everything billed, split by status."""

    total: Decimal = Decimal("0")
    invoice_count: int = 0

    paid: Decimal = Decimal("0")
    paid_count: int = 0
    pending: Decimal = Decimal("0")
    pending_count: int = 0
    overdue: Decimal = Decimal("0")
    overdue_count: int = 0


class MonthView(BaseModel):
    """One calendar month of due dates."""

    year: int
    month: int = Field(ge=1, le=12)
    days: dict[date, list[Invoice]] = Field(
        default_factory=dict,
        description="Due date -> invoices due that day, only days that have any"
    )

    @property
    def invoice_count(self) -> int:
        return sum(len(invoices) for invoices in self.days.values())


def summarize(invoices: Iterable[Invoice]) -> InvoiceSummary:
    summary = InvoiceSummary()
    for invoice in invoices:
        summary.total += invoice.amount
        summary.invoice_count += 1
        if invoice.status is InvoiceStatus.PAID:
            summary.paid += invoice.amount
            summary.paid_count += 1
        elif invoice.status is InvoiceStatus.PENDING:
            summary.pending += invoice.amount
            summary.pending_count += 1
        elif invoice.status is InvoiceStatus.OVERDUE:
            summary.overdue += invoice.amount
            summary.overdue_count += 1
    return summary


def status_counts(invoices: Iterable[Invoice]) -> dict[InvoiceStatus, int]:
    """Invoices per status; every status is present, zeros included."""
    counts = {status: 0 for status in InvoiceStatus}
    for invoice in invoices:
        counts[invoice.status] += 1
    return counts


def revenue_by_status(invoices: Iterable[Invoice]) -> dict[InvoiceStatus, Decimal]:
    """
    Amount billed per status.

    Statuses with nothing billed are left out, so a chart never draws
    an empty slice.
    """
    amounts = {status: Decimal("0") for status in InvoiceStatus}
    for invoice in invoices:
        amounts[invoice.status] += invoice.amount
    return {status: amount for status, amount in amounts.items() if amount > 0}


def group_by_due_date(invoices: Iterable[Invoice]) -> dict[date, list[Invoice]]:
    """Invoices keyed by calendar due date, in collection order within a day."""
    groups: dict[date, list[Invoice]] = {}
    for invoice in invoices:
        groups.setdefault(invoice.due_date, []).append(invoice)
    return groups


def invoices_due_in_month(invoices: Iterable[Invoice], year: int, month: int) -> MonthView:
    """
    The calendar page for one month.

    Raises:
        ValueError: If month is not 1-12
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")

    last_day = calendar.monthrange(year, month)[1]
    start, end = date(year, month, 1), date(year, month, last_day)

    days: dict[date, list[Invoice]] = {}
    for due_date, group in sorted(group_by_due_date(invoices).items()):
        if start <= due_date <= end:
            days[due_date] = group
    return MonthView(year=year, month=month, days=days)


def invoices_due_on(invoices: Iterable[Invoice], day: date) -> list[Invoice]:
    return [invoice for invoice in invoices if invoice.due_date == day]
