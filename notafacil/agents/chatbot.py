"""
Invoice Chatbot Agent

A Gemini chat with four invoice tools. The model talks to the user;
whenever it asks for a tool, the dispatcher runs it and the result is
fed back until the model answers in text.

FLOW (one user message):
1. User text -> model
2. While the reply carries function calls:
   run the FIRST call, send its result back
3. The final text reply goes to the user

DESIGN DECISION: Only the first function call of a reply is executed,
and at most `max_tool_iterations` calls per user message. A model stuck
in a tool loop gets a fixed apology instead of spinning forever.

The model is a TRANSLATOR between the user and the dispatcher. It never
touches storage; every write it asks for goes through the optimistic
orchestrator like a UI click would.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Literal, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from notafacil.agents.dispatch import InvoiceToolDispatcher
from notafacil.agents.tools import TOOL_DECLARATIONS
from notafacil.audit import AuditLogger
from notafacil.config import GeminiSettings


logger = structlog.get_logger(__name__)


MESSAGES = {
    "pt": {
        "welcome": "Olá! Sou o assistente do NotaFácil. Posso criar, consultar, "
                   "atualizar ou excluir notas fiscais. Como posso ajudar?",
        "unavailable": "Serviço de IA indisponível. Por favor, configure a chave de API.",
        "error": "Desculpe, ocorreu um erro ao processar sua mensagem. Tente novamente.",
        "loop_limit": "Desculpe, não consegui concluir essa solicitação. "
                      "Pode reformular o pedido?",
    },
    "en": {
        "welcome": "Hi! I'm the NotaFácil assistant. I can create, look up, "
                   "update or delete invoices. How can I help?",
        "unavailable": "AI Service unavailable. Please configure the API key.",
        "error": "Sorry, something went wrong while processing your message. Please try again.",
        "loop_limit": "Sorry, I couldn't complete that request. Could you rephrase it?",
    },
}


SYSTEM_INSTRUCTION = """You are a highly capable assistant for an invoice management app called {app_name}.
Your primary purpose is to help users manage their invoices. You can create, update, delete, or provide details about invoices.
You can also chat about any other topic, but if the conversation strays too far from invoices, gently guide the user back to the app's purpose.
Use the provided tools to perform invoice actions when requested by the user.
For destructive actions like deleting an invoice, you MUST ask for user confirmation before calling the 'deleteInvoice' function.
The current date is {today}.
Always respond in the user's language, be it Portuguese, English, or any other.
When creating an invoice, the issue date is always today; you only need to ask for the due date."""


class AIServiceUnavailable(Exception):
    """Raised when the chatbot is used without a Gemini API key."""
    pass


# =============================================================================
# MODEL TURNS
# =============================================================================

class FunctionCall(BaseModel):
    """A tool the model asked us to run."""
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ModelTurn(BaseModel):
    """One model reply: text, function calls, or both."""
    text: str = ""
    function_calls: list[FunctionCall] = Field(default_factory=list)


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: str


class ChatSession(ABC):
    """A multi-turn conversation with the model."""

    @abstractmethod
    async def send_message(self, text: str) -> ModelTurn:
        pass

    @abstractmethod
    async def send_function_result(self, name: str, result: dict[str, Any]) -> ModelTurn:
        pass


SessionFactory = Callable[[str], ChatSession]


class GeminiChatSession(ChatSession):
    """ChatSession backed by a google-generativeai chat."""

    def __init__(self, settings: GeminiSettings, system_instruction: str):
        genai.configure(api_key=settings.api_key)
        model = genai.GenerativeModel(
            model_name=settings.model_name,
            tools=[{"function_declarations": TOOL_DECLARATIONS}],
            system_instruction=system_instruction,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            },
        )
        self._chat = model.start_chat(enable_automatic_function_calling=False)

    async def send_message(self, text: str) -> ModelTurn:
        response = await self._chat.send_message_async(text)
        return self._to_turn(response)

    async def send_function_result(self, name: str, result: dict[str, Any]) -> ModelTurn:
        part = genai.protos.Part(
            function_response=genai.protos.FunctionResponse(
                name=name,
                response={"result": result},
            )
        )
        response = await self._chat.send_message_async(part)
        return self._to_turn(response)

    @staticmethod
    def _to_turn(response) -> ModelTurn:
        # response.text raises when the reply holds a function call; walk the parts
        texts: list[str] = []
        calls: list[FunctionCall] = []
        for part in response.parts:
            if fn := part.function_call:
                calls.append(FunctionCall(name=fn.name, args=dict(fn.args)))
            elif part.text:
                texts.append(part.text)
        return ModelTurn(text="".join(texts).strip(), function_calls=calls)


# =============================================================================
# AGENT
# =============================================================================

class InvoiceChatAgent:
    """
    The chatbot conversation.

    RESPONSIBILITIES:
    - Hold one chat with the model and its visible history
    - Resolve the model's tool calls through the dispatcher
    - Turn every failure into a friendly message

    BOUNDARIES:
    - Without an API key, send() raises AIServiceUnavailable
    - NEVER raises out of a turn for model or mutation errors
    """

    def __init__(
        self,
        dispatcher: InvoiceToolDispatcher,
        settings: GeminiSettings,
        session_factory: Optional[SessionFactory] = None,
        language: str = "pt",
        app_name: str = "NotaFácil",
        clock: Callable[[], date] = date.today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._dispatcher = dispatcher
        self._settings = settings
        self._session_factory = session_factory or (
            lambda instruction: GeminiChatSession(settings, instruction)
        )
        self._messages = MESSAGES.get(language, MESSAGES["en"])
        self._app_name = app_name
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

        self._session: Optional[ChatSession] = None
        self._history: list[ChatMessage] = []

    @property
    def available(self) -> bool:
        return self._settings.is_configured

    @property
    def history(self) -> list[ChatMessage]:
        return list(self._history)

    def system_instruction(self) -> str:
        return SYSTEM_INSTRUCTION.format(
            app_name=self._app_name,
            today=self._clock().isoformat(),
        )

    def welcome(self) -> str:
        """Open the conversation; the first model message shown to the user."""
        if not self.available:
            logger.warning("chatbot_disabled", reason="GEMINI_API_KEY not set")
            text = self._messages["unavailable"]
        else:
            text = self._messages["welcome"]
        if not self._history:
            self._history.append(ChatMessage(role="model", text=text))
        return text

    def reset(self) -> None:
        """Forget the conversation. The next message starts a new chat."""
        self._session = None
        self._history = []

    async def send(self, text: str) -> str:
        """
        Send one user message and return the model's final reply.

        Raises:
            AIServiceUnavailable: No Gemini API key is configured.
            ValueError: The message is blank.
        """
        if not self.available:
            raise AIServiceUnavailable(self._messages["unavailable"])
        if not text or not text.strip():
            raise ValueError("Message must not be empty")

        self._history.append(ChatMessage(role="user", text=text))
        try:
            reply = await self._run_turn(text)
        except Exception as e:
            logger.error("chatbot_turn_failed", error=str(e))
            self._audit.log_external_service_error("gemini", str(e))
            # A half-finished tool exchange cannot be continued
            self._session = None
            reply = self._messages["error"]

        if reply:
            self._history.append(ChatMessage(role="model", text=reply))
        return reply

    async def _run_turn(self, text: str) -> str:
        if self._session is None:
            self._session = self._session_factory(self.system_instruction())
        session = self._session

        turn = await session.send_message(text)
        iterations = 0
        while turn.function_calls:
            if iterations >= self._settings.max_tool_iterations:
                logger.warning(
                    "tool_loop_limit_reached",
                    iterations=iterations,
                    pending=turn.function_calls[0].name,
                )
                self._session = None
                return self._messages["loop_limit"]

            call = turn.function_calls[0]
            result = await self._dispatcher.dispatch(call.name, call.args)
            logger.info("tool_call_resolved", function_name=call.name, iteration=iterations + 1)
            turn = await session.send_function_result(call.name, result)
            iterations += 1

        return turn.text
