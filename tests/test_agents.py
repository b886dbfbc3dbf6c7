"""
Tests for the chatbot bridge: tool dispatch, the chat loop and the
observation writer. No Gemini calls; sessions and models are scripted.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from notafacil.agents.chatbot import (
    AIServiceUnavailable,
    ChatSession,
    FunctionCall,
    InvoiceChatAgent,
    ModelTurn,
)
from notafacil.agents.dispatch import InvoiceToolDispatcher, not_found_result
from notafacil.agents.observations import ObservationWriter
from notafacil.agents.tools import TOOL_DECLARATIONS, TOOL_NAMES
from notafacil.config import GeminiSettings
from notafacil.models.invoice import InvoiceStatus
from notafacil.orchestrator import InvoiceOrchestrator
from notafacil.realtime.collection import InvoiceCollection
from notafacil.services.storage import RemoteWriteError


@pytest.fixture
def invoices(make_invoice) -> InvoiceCollection:
    return InvoiceCollection([
        make_invoice("D290F1EE-6C54-4B01-90E6-D701748F0851", client_name="Acme"),
        make_invoice("b", client_name="Beta", status=InvoiceStatus.PAID),
    ])


@pytest.fixture
def dispatcher(invoices, gateway, owner, clock, audit_logger) -> InvoiceToolDispatcher:
    orchestrator = InvoiceOrchestrator(
        invoices,
        gateway,
        current_user=lambda: owner,
        clock=clock,
        id_factory=lambda: "new-id",
        notifier=lambda failure: None,
        audit_logger=audit_logger,
    )
    return InvoiceToolDispatcher(orchestrator, invoices, clock=clock, audit_logger=audit_logger)


def configured() -> GeminiSettings:
    return GeminiSettings(GEMINI_API_KEY="test-key", max_tool_iterations=5)


def unconfigured() -> GeminiSettings:
    return GeminiSettings(GEMINI_API_KEY=None)


class ScriptedSession(ChatSession):
    """Replays canned model turns and records what was sent."""

    def __init__(self, turns):
        self.turns = list(turns)
        self.sent: list[str] = []
        self.results: list[tuple[str, dict]] = []

    async def send_message(self, text):
        self.sent.append(text)
        return self.turns.pop(0)

    async def send_function_result(self, name, result):
        self.results.append((name, result))
        return self.turns.pop(0)


class TestToolDeclarations:
    """Tests for the declared tool surface."""

    def test_four_tools(self):
        assert TOOL_NAMES == {"createInvoice", "getInvoiceDetails", "updateInvoice", "deleteInvoice"}

    def test_update_status_enum_matches_model(self):
        update = next(d for d in TOOL_DECLARATIONS if d["name"] == "updateInvoice")
        assert update["parameters"]["properties"]["status"]["enum"] == ["Paid", "Pending", "Overdue"]
        assert update["parameters"]["required"] == ["id"]


class TestDispatcher:
    """Tests for InvoiceToolDispatcher."""

    @pytest.mark.asyncio
    async def test_create_invoice(self, dispatcher, invoices, backend):
        result = await dispatcher.dispatch(
            "createInvoice", {"clientName": "Acme", "amount": 150.00, "dueDate": "2099-01-01"}
        )

        assert result == {"success": True, "clientName": "Acme", "amount": 150.0}
        created = invoices.get("new-id")
        assert created.issue_date == date(2024, 1, 2)
        assert created.status is InvoiceStatus.PENDING
        assert invoices.ids()[0] == "new-id"
        assert len(backend.calls_for("insert")) == 1

    @pytest.mark.asyncio
    async def test_create_invoice_missing_due_date(self, dispatcher, backend):
        result = await dispatcher.dispatch("createInvoice", {"clientName": "Acme", "amount": 1})
        assert result["code"] == "invalid_arguments"
        assert "dueDate" in result["error"]
        assert backend.calls_for("insert") == []

    @pytest.mark.asyncio
    async def test_get_details_is_case_insensitive(self, dispatcher):
        result = await dispatcher.dispatch(
            "getInvoiceDetails", {"id": "d290f1ee-6c54-4b01-90e6-d701748f0851"}
        )
        assert result["id"] == "D290F1EE-6C54-4B01-90E6-D701748F0851"
        assert result["clientName"] == "Acme"
        assert result["amount"] == 100.0

    @pytest.mark.asyncio
    async def test_get_details_not_found(self, dispatcher):
        result = await dispatcher.dispatch("getInvoiceDetails", {"id": "nope"})
        assert result == not_found_result("nope")
        assert result["error"] == "Invoice with ID nope not found."

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, dispatcher, invoices, backend):
        result = await dispatcher.dispatch("updateInvoice", {"id": "B", "amount": 42.5})

        assert result == {"success": True, "id": "b"}
        updated = invoices.get("b")
        assert updated.amount == Decimal("42.5")
        assert updated.client_name == "Beta"
        assert updated.status is InvoiceStatus.PAID
        assert backend.calls_for("update")[0]["amount"] == 42.5

    @pytest.mark.asyncio
    async def test_update_due_date_rederives_unpaid_status(self, dispatcher, invoices):
        key = "D290F1EE-6C54-4B01-90E6-D701748F0851"
        await dispatcher.dispatch("updateInvoice", {"id": key, "dueDate": "2023-12-31"})
        assert invoices.get(key).status is InvoiceStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_update_due_date_keeps_paid_status(self, dispatcher, invoices):
        await dispatcher.dispatch("updateInvoice", {"id": "b", "dueDate": "2023-12-31"})
        assert invoices.get("b").status is InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_update_explicit_status_wins(self, dispatcher, invoices):
        key = "D290F1EE-6C54-4B01-90E6-D701748F0851"
        await dispatcher.dispatch(
            "updateInvoice", {"id": key, "dueDate": "2023-12-31", "status": "Paid"}
        )
        assert invoices.get(key).status is InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_update_not_found(self, dispatcher, backend):
        result = await dispatcher.dispatch("updateInvoice", {"id": "nope", "amount": 1})
        assert result["code"] == "not_found"
        assert backend.calls_for("update") == []

    @pytest.mark.asyncio
    async def test_update_invalid_status(self, dispatcher, backend):
        result = await dispatcher.dispatch("updateInvoice", {"id": "b", "status": "Cancelled"})
        assert result["code"] == "invalid_arguments"
        assert backend.calls_for("update") == []

    @pytest.mark.asyncio
    async def test_delete(self, dispatcher, invoices, backend):
        result = await dispatcher.dispatch("deleteInvoice", {"id": "b"})
        assert result == {"success": True, "id": "b"}
        assert "b" not in invoices
        assert backend.calls_for("delete") == ["b"]

    @pytest.mark.asyncio
    async def test_delete_missing_makes_no_store_call(self, dispatcher, invoices, backend):
        before = invoices.snapshot()
        result = await dispatcher.dispatch("deleteInvoice", {"id": "nope"})
        assert result == not_found_result("nope")
        assert backend.calls == []
        assert invoices.snapshot() == before

    @pytest.mark.asyncio
    async def test_unknown_function(self, dispatcher):
        result = await dispatcher.dispatch("payInvoice", {"id": "b"})
        assert result == {"error": "Unknown function: payInvoice", "code": "unknown_function"}

    @pytest.mark.asyncio
    async def test_missing_id(self, dispatcher):
        result = await dispatcher.dispatch("deleteInvoice", {})
        assert result["code"] == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_orchestrator_failure_propagates(self, dispatcher, invoices, backend):
        before = invoices.snapshot()
        backend.fail_next("delete")
        with pytest.raises(RemoteWriteError):
            await dispatcher.dispatch("deleteInvoice", {"id": "b"})
        assert invoices.snapshot() == before


class TestChatAgent:
    """Tests for the chat loop."""

    def _agent(self, dispatcher, session, settings=None, language="en"):
        return InvoiceChatAgent(
            dispatcher,
            settings or configured(),
            session_factory=lambda instruction: session,
            language=language,
            clock=lambda: date(2024, 1, 2),
        )

    @pytest.mark.asyncio
    async def test_plain_reply(self, dispatcher):
        session = ScriptedSession([ModelTurn(text="Hello!")])
        agent = self._agent(dispatcher, session)

        assert await agent.send("hi") == "Hello!"
        assert session.sent == ["hi"]
        assert [m.role for m in agent.history] == ["user", "model"]

    @pytest.mark.asyncio
    async def test_tool_call_round_trip(self, dispatcher, invoices):
        session = ScriptedSession([
            ModelTurn(function_calls=[FunctionCall(
                name="createInvoice",
                args={"clientName": "Acme", "amount": 150.0, "dueDate": "2099-01-01"},
            )]),
            ModelTurn(text="Invoice created for Acme."),
        ])
        agent = self._agent(dispatcher, session)

        reply = await agent.send("Create an invoice for Acme, 150, due 2099-01-01")

        assert reply == "Invoice created for Acme."
        assert session.results == [
            ("createInvoice", {"success": True, "clientName": "Acme", "amount": 150.0})
        ]
        assert "new-id" in invoices

    @pytest.mark.asyncio
    async def test_only_first_call_per_turn_runs(self, dispatcher, backend):
        session = ScriptedSession([
            ModelTurn(function_calls=[
                FunctionCall(name="getInvoiceDetails", args={"id": "b"}),
                FunctionCall(name="deleteInvoice", args={"id": "b"}),
            ]),
            ModelTurn(text="Here it is."),
        ])
        agent = self._agent(dispatcher, session)

        await agent.send("show b")

        assert [name for name, _ in session.results] == ["getInvoiceDetails"]
        assert backend.calls_for("delete") == []

    @pytest.mark.asyncio
    async def test_tool_loop_is_capped(self, dispatcher):
        looping = ModelTurn(function_calls=[FunctionCall(name="getInvoiceDetails", args={"id": "b"})])
        session = ScriptedSession([looping] * 20)
        settings = GeminiSettings(GEMINI_API_KEY="test-key", max_tool_iterations=3)
        agent = self._agent(dispatcher, session, settings=settings)

        reply = await agent.send("loop forever")

        assert len(session.results) == 3
        assert reply == "Sorry, I couldn't complete that request. Could you rephrase it?"

    @pytest.mark.asyncio
    async def test_model_error_becomes_friendly_message(self, dispatcher):
        class BrokenSession(ScriptedSession):
            async def send_message(self, text):
                raise RuntimeError("quota exceeded")

        agent = self._agent(dispatcher, BrokenSession([]))
        reply = await agent.send("hi")
        assert reply.startswith("Sorry, something went wrong")

    @pytest.mark.asyncio
    async def test_failed_mutation_becomes_friendly_message(self, dispatcher, backend, invoices):
        session = ScriptedSession([
            ModelTurn(function_calls=[FunctionCall(name="deleteInvoice", args={"id": "b"})]),
        ])
        agent = self._agent(dispatcher, session)
        backend.fail_next("delete")

        reply = await agent.send("yes, delete b")

        assert reply.startswith("Sorry, something went wrong")
        assert "b" in invoices

    @pytest.mark.asyncio
    async def test_unavailable_without_key(self, dispatcher):
        agent = self._agent(dispatcher, ScriptedSession([]), settings=unconfigured(), language="pt")

        assert agent.available is False
        assert agent.welcome() == "Serviço de IA indisponível. Por favor, configure a chave de API."
        with pytest.raises(AIServiceUnavailable):
            await agent.send("olá")

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, dispatcher):
        agent = self._agent(dispatcher, ScriptedSession([]))
        with pytest.raises(ValueError):
            await agent.send("   ")

    @pytest.mark.asyncio
    async def test_reset_starts_a_new_chat(self, dispatcher):
        sessions = []

        def factory(instruction):
            session = ScriptedSession([ModelTurn(text="ok")])
            sessions.append((instruction, session))
            return session

        agent = InvoiceChatAgent(
            dispatcher, configured(), session_factory=factory, clock=lambda: date(2024, 1, 2)
        )
        agent.welcome()
        await agent.send("one")
        agent.reset()
        await agent.send("two")

        assert len(sessions) == 2
        assert "The current date is 2024-01-02." in sessions[0][0]
        assert "MUST ask for user confirmation" in sessions[0][0]
        assert [m.text for m in agent.history] == ["two", "ok"]


class TestObservationWriter:
    """Tests for the Gemini observation writer."""

    class FakeModel:
        def __init__(self, text=None, error=None):
            self.text = text
            self.error = error
            self.prompts = []

        async def generate_content_async(self, prompt):
            self.prompts.append(prompt)
            if self.error:
                raise self.error
            return SimpleNamespace(text=self.text)

    @pytest.mark.asyncio
    async def test_generates_in_portuguese(self):
        model = self.FakeModel(text="  Serviço prestado conforme contrato.  ")
        writer = ObservationWriter(configured(), model=model)

        result = await writer.generate("Acme", Decimal("150"), "Consultoria", "pt")

        assert result == "Serviço prestado conforme contrato."
        assert 'Cliente: "Acme", Valor: R$ 150.00' in model.prompts[0]

    @pytest.mark.asyncio
    async def test_english_prompt(self):
        model = self.FakeModel(text="Consulting services rendered.")
        writer = ObservationWriter(configured(), model=model)

        await writer.generate("Acme", 99.5, "Consulting", "en")

        assert "Amount: $99.50" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_unavailable_without_key(self):
        writer = ObservationWriter(unconfigured())
        assert writer.available is False
        assert await writer.generate("Acme", 1, "x", "en") == (
            "AI Service unavailable. Please configure the API key."
        )

    @pytest.mark.asyncio
    async def test_failure_fallback(self):
        writer = ObservationWriter(configured(), model=self.FakeModel(error=RuntimeError("down")))
        assert await writer.generate("Acme", 1, "x", "pt") == (
            "Erro ao gerar observação. Tente novamente."
        )
