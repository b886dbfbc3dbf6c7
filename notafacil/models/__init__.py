"""
Data Models Package

This package contains all Pydantic models used in NotaFácil.
Every invoice, wherever it came from, must conform to these schemas.
"""

from notafacil.models.invoice import (
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    derive_status,
    format_calendar_date,
    parse_calendar_date,
)
from notafacil.models.events import ChangeEvent, ChangeKind
from notafacil.models.mapping import (
    MUTABLE_COLUMNS,
    InvalidRecordError,
    invoice_to_record,
    invoice_to_update_fields,
    record_to_invoice,
)
from notafacil.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Invoice models
    "Invoice",
    "InvoiceDraft",
    "InvoiceStatus",
    "derive_status",
    "format_calendar_date",
    "parse_calendar_date",
    # Change events
    "ChangeEvent",
    "ChangeKind",
    # Mapping
    "MUTABLE_COLUMNS",
    "InvalidRecordError",
    "invoice_to_record",
    "invoice_to_update_fields",
    "record_to_invoice",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
