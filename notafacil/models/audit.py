"""
Audit Models for NotaFácil

Every invoice mutation, rollback and realtime feed transition produces
an audit event. Together they answer "what happened to this invoice,
and did the local view ever disagree with the store?"

DESIGN DECISION: Events are correlated per user action. An optimistic
create, its gateway call and its rollback all share one correlation id.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Optimistic mutations
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    INVOICE_DELETED = "invoice_deleted"
    MUTATION_FAILED = "mutation_failed"
    MUTATION_ROLLED_BACK = "mutation_rolled_back"

    # Realtime feed
    FEED_LOADED = "feed_loaded"
    FEED_SETUP_FAILED = "feed_setup_failed"
    FEED_CLOSED = "feed_closed"
    CHANGE_EVENT_SKIPPED = "change_event_skipped"

    # Session
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"

    # Chatbot
    TOOL_CALL_EXECUTED = "tool_call_executed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    The core unit of the audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'invoice', 'feed', 'tool_call')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user (or the chatbot on their behalf)?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.invoice_created(invoice_id, client, amount, correlation_id)
        event = AuditEventBuilder.mutation_rolled_back("update", invoice_id, correlation_id)
    """

    @staticmethod
    def invoice_created(
        invoice_id: str,
        client_name: str,
        amount: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice created: {client_name} - {amount}",
            details={
                "client_name": client_name,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def invoice_updated(
        invoice_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_UPDATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice updated",
            is_user_action=True,
        )

    @staticmethod
    def invoice_deleted(
        invoice_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_DELETED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice deleted",
            is_user_action=True,
        )

    @staticmethod
    def mutation_failed(
        operation: str,
        invoice_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} failed",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def mutation_rolled_back(
        operation: str,
        invoice_id: str,
        restored: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=(
                f"Optimistic {operation} rolled back"
                if restored
                else f"Optimistic {operation} superseded; nothing to roll back"
            ),
            details={"operation": operation, "restored": restored},
        )

    @staticmethod
    def feed_loaded(
        owner_id: str,
        invoice_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEED_LOADED,
            entity_type="feed",
            entity_id=owner_id,
            description=f"Realtime feed live with {invoice_count} invoices",
            details={"invoice_count": invoice_count},
        )

    @staticmethod
    def feed_setup_failed(
        owner_id: Optional[str],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEED_SETUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="feed",
            entity_id=owner_id,
            description="Realtime feed setup failed",
            error_message=error_message,
        )

    @staticmethod
    def feed_closed(owner_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEED_CLOSED,
            entity_type="feed",
            entity_id=owner_id,
            description="Realtime feed closed",
        )

    @staticmethod
    def change_event_skipped(
        kind: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANGE_EVENT_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="change_event",
            description=f"Skipped {kind} event: {reason}",
            details={"kind": kind, "reason": reason},
        )

    @staticmethod
    def session_started(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            entity_type="user",
            entity_id=user_id,
            description="Session started",
            is_user_action=True,
        )

    @staticmethod
    def session_ended(user_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ENDED,
            entity_type="user",
            entity_id=user_id,
            description="Session ended",
            is_user_action=True,
        )

    @staticmethod
    def tool_call_executed(
        function_name: str,
        outcome: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_CALL_EXECUTED,
            entity_type="tool_call",
            entity_id=function_name,
            correlation_id=correlation_id,
            description=f"Tool call {function_name}: {outcome}",
            details={"outcome": outcome},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
