"""Queries package: deterministic statistics over the local collection."""

from notafacil.queries.stats import (
    InvoiceSummary,
    MonthView,
    group_by_due_date,
    invoices_due_in_month,
    invoices_due_on,
    revenue_by_status,
    status_counts,
    summarize,
)

__all__ = [
    "InvoiceSummary",
    "MonthView",
    "group_by_due_date",
    "invoices_due_in_month",
    "invoices_due_on",
    "revenue_by_status",
    "status_counts",
    "summarize",
]
