"""
Tool-Call Dispatch Bridge

Translates the chatbot model's function calls into orchestrator
operations and returns plain JSON-compatible results the model can read.

CRITICAL BOUNDARIES:
- The model CAN create, read, update and delete the signed-in user's
  invoices, and nothing else
- The model CANNOT reach the gateway directly; every write goes through
  the orchestrator, so the UI sees it optimistically and a failed write
  is rolled back
- Lookups are case-insensitive on the invoice id, because models tend
  to re-case UUIDs
- "Not found" is an ordinary result, not an exception

Asking the user before a delete is the model's job (its system
instruction says so). By the time deleteInvoice reaches this module the
decision has been made.
"""

from datetime import date
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notafacil.audit import AuditLogger, create_correlation_id
from notafacil.models.audit import AuditEventBuilder
from notafacil.models.invoice import Invoice, InvoiceDraft, InvoiceStatus, derive_status
from notafacil.orchestrator import InvoiceOrchestrator
from notafacil.realtime.collection import InvoiceCollection


logger = structlog.get_logger(__name__)


ToolResult = dict[str, Any]


def not_found_result(invoice_id: Any) -> ToolResult:
    """The result returned for an id that is not in the collection."""
    return {
        "error": f"Invoice with ID {invoice_id} not found.",
        "code": "not_found",
        "id": invoice_id,
    }


def error_result(message: str, code: str) -> ToolResult:
    return {"error": message, "code": code}


# =============================================================================
# ARGUMENT MODELS
# =============================================================================

class _ToolArgs(BaseModel):
    # Models occasionally send keys we did not declare; ignore them
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class InvoiceIdArgs(_ToolArgs):
    id: str = Field(..., min_length=1)


class CreateInvoiceArgs(_ToolArgs):
    client_name: str = Field(..., alias="clientName", min_length=1)
    amount: Any
    due_date: Any = Field(..., alias="dueDate")
    observations: Optional[str] = None


class UpdateInvoiceArgs(_ToolArgs):
    id: str = Field(..., min_length=1)
    client_name: Optional[str] = Field(default=None, alias="clientName")
    amount: Optional[Any] = None
    due_date: Optional[Any] = Field(default=None, alias="dueDate")
    status: Optional[str] = None
    observations: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Fields the model actually supplied, in invoice-model names."""
        return self.model_dump(exclude={"id"}, exclude_none=True)


# =============================================================================
# DISPATCHER
# =============================================================================

class InvoiceToolDispatcher:
    """
    Executes one named tool call against the invoice collection.

    Reads come from the local collection. Writes are delegated to the
    orchestrator; its failures (after rollback) propagate to the caller.
    """

    def __init__(
        self,
        orchestrator: InvoiceOrchestrator,
        collection: InvoiceCollection,
        clock: Callable[[], date] = date.today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._orchestrator = orchestrator
        self._collection = collection
        self._clock = clock
        self._audit = audit_logger or AuditLogger()
        self._handlers = {
            "createInvoice": self._create_invoice,
            "getInvoiceDetails": self._get_invoice_details,
            "updateInvoice": self._update_invoice,
            "deleteInvoice": self._delete_invoice,
        }

    async def dispatch(self, name: str, args: Optional[dict[str, Any]] = None) -> ToolResult:
        """
        Run a tool call and return its result.

        Unknown names and malformed arguments produce error results.
        Raises whatever the orchestrator raises for a rejected write.
        """
        correlation_id = create_correlation_id()
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("unknown_tool_call", function_name=name)
            result = error_result(f"Unknown function: {name}", "unknown_function")
            self._record(name, result, correlation_id)
            return result

        try:
            result = await handler(dict(args or {}))
        except ValidationError as e:
            logger.warning("invalid_tool_arguments", function_name=name, error=str(e))
            result = error_result(
                f"Invalid arguments for {name}: {_summarize(e)}", "invalid_arguments"
            )
        except Exception:
            self._record(name, error_result("Mutation failed", "mutation_failed"), correlation_id)
            raise

        self._record(name, result, correlation_id)
        return result

    def _record(self, name: str, result: ToolResult, correlation_id) -> None:
        outcome = result.get("code", "error") if "error" in result else "success"
        self._audit.log(AuditEventBuilder.tool_call_executed(name, outcome, correlation_id))

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _create_invoice(self, args: dict[str, Any]) -> ToolResult:
        parsed = CreateInvoiceArgs.model_validate(args)
        draft = InvoiceDraft(
            client_name=parsed.client_name,
            amount=parsed.amount,
            due_date=parsed.due_date,
            issue_date=self._clock(),
            observations=parsed.observations,
        )
        invoice = await self._orchestrator.create(draft)
        return {
            "success": True,
            "clientName": invoice.client_name,
            "amount": float(invoice.amount),
        }

    async def _get_invoice_details(self, args: dict[str, Any]) -> ToolResult:
        parsed = InvoiceIdArgs.model_validate(args)
        invoice = self._collection.find(parsed.id)
        if invoice is None:
            return not_found_result(parsed.id)
        return invoice.to_agent_dict()

    async def _update_invoice(self, args: dict[str, Any]) -> ToolResult:
        parsed = UpdateInvoiceArgs.model_validate(args)
        existing = self._collection.find(parsed.id)
        if existing is None:
            return not_found_result(parsed.id)

        updated = self._merge(existing, parsed.changes())
        await self._orchestrator.update(updated)
        return {"success": True, "id": updated.id}

    async def _delete_invoice(self, args: dict[str, Any]) -> ToolResult:
        parsed = InvoiceIdArgs.model_validate(args)
        existing = self._collection.find(parsed.id)
        if existing is None:
            return not_found_result(parsed.id)

        await self._orchestrator.delete(existing.id)
        return {"success": True, "id": existing.id}

    def _merge(self, existing: Invoice, changes: dict[str, Any]) -> Invoice:
        """
        Overlay the supplied fields on the existing invoice.

        A new due date without an explicit status re-derives the status
        of an unpaid invoice; a paid invoice stays paid.
        """
        merged = existing.model_dump()
        merged.update(changes)
        updated = Invoice.model_validate(merged)

        if (
            "due_date" in changes
            and "status" not in changes
            and updated.status is not InvoiceStatus.PAID
        ):
            status = derive_status(updated.due_date, self._clock())
            if status is not updated.status:
                updated = updated.model_copy(update={"status": status})
        return updated


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts)
