"""AI agents: the invoice chatbot and the observation writer."""

from notafacil.agents.chatbot import (
    AIServiceUnavailable,
    ChatMessage,
    ChatSession,
    FunctionCall,
    GeminiChatSession,
    InvoiceChatAgent,
    ModelTurn,
)
from notafacil.agents.dispatch import InvoiceToolDispatcher, not_found_result
from notafacil.agents.observations import ObservationWriter
from notafacil.agents.tools import TOOL_DECLARATIONS

__all__ = [
    "AIServiceUnavailable",
    "ChatMessage",
    "ChatSession",
    "FunctionCall",
    "GeminiChatSession",
    "InvoiceChatAgent",
    "InvoiceToolDispatcher",
    "ModelTurn",
    "ObservationWriter",
    "TOOL_DECLARATIONS",
    "not_found_result",
]
