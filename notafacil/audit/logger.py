"""
Audit Logger

DESIGN DECISION: Every mutation outcome is logged, including the ones
the user never sees succeed. An optimistic change that was rolled back
leaves a trail even though the local collection shows nothing.

The audit logger:
- Logs synchronously (it is called from the event-application path,
  which must not suspend)
- Never raises into the caller if a sink fails
- Supports correlation IDs to trace related events
"""

from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from notafacil.models.audit import AuditEvent, AuditEventBuilder


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


AuditSink = Callable[[AuditEvent], None]


class AuditLogger:
    """
    Central audit logging service.

    Logs events to:
    1. The structured local log
    2. An optional sink (a UI activity panel, a test recorder, ...)
    """

    def __init__(self, sink: Optional[AuditSink] = None):
        self._sink = sink
        self._logger = structlog.get_logger("notafacil.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the sink accepted it (or no sink is configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._sink:
            try:
                self._sink(event)
            except Exception as e:
                self._logger.error(
                    "audit_sink_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_invoice_created(
        self,
        invoice_id: str,
        client_name: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.invoice_created(
            invoice_id=invoice_id,
            client_name=client_name,
            amount=amount,
            correlation_id=correlation_id,
        ))

    def log_invoice_updated(self, invoice_id: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.invoice_updated(invoice_id, correlation_id))

    def log_invoice_deleted(self, invoice_id: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.invoice_deleted(invoice_id, correlation_id))

    def log_mutation_failed(
        self,
        operation: str,
        invoice_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a rejected remote write."""
        self.log(AuditEventBuilder.mutation_failed(
            operation=operation,
            invoice_id=invoice_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_rollback(
        self,
        operation: str,
        invoice_id: str,
        restored: bool,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.mutation_rolled_back(
            operation=operation,
            invoice_id=invoice_id,
            restored=restored,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., creating an invoice).
    Pass it through all subsequent operations.
    """
    return uuid4()
