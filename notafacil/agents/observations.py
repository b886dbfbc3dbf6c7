"""
Invoice observation writer.

Drafts the short, formal "observations" line of an invoice with Gemini.
The result is a suggestion for the form; nothing is saved here.

Never raises: a missing key or a failed call returns a fixed message in
the requested language.
"""

from decimal import Decimal
from typing import Literal, Optional, Union

import google.generativeai as genai
import structlog

from notafacil.audit import AuditLogger
from notafacil.config import GeminiSettings


logger = structlog.get_logger(__name__)


Language = Literal["pt", "en"]

PROMPTS = {
    "pt": (
        'Gere uma breve observação profissional para uma nota fiscal em português. '
        'Cliente: "{client_name}", Valor: R$ {amount:.2f}, Serviço: "{service}". '
        'A observação deve ser concisa e formal.'
    ),
    "en": (
        'Generate a brief, professional observation for an invoice in English. '
        'Client: "{client_name}", Amount: ${amount:.2f}, Service: "{service}". '
        'The observation should be concise and formal.'
    ),
}

UNAVAILABLE = {
    "pt": "Serviço de IA indisponível. Por favor, configure a chave de API.",
    "en": "AI Service unavailable. Please configure the API key.",
}

FAILED = {
    "pt": "Erro ao gerar observação. Tente novamente.",
    "en": "Error generating observation. Please try again.",
}


class ObservationWriter:
    """Gemini-backed drafting of invoice observations."""

    def __init__(
        self,
        settings: GeminiSettings,
        model: Optional[genai.GenerativeModel] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings
        self._audit = audit_logger or AuditLogger()
        self._model = model
        if self._model is None and settings.is_configured:
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": 0.5,
                "top_p": 0.95,
                "top_k": 64,
                "max_output_tokens": 100,  # One or two sentences
            },
        )

    @property
    def available(self) -> bool:
        return self._model is not None

    async def generate(
        self,
        client_name: str,
        amount: Union[Decimal, float],
        service: str,
        language: Language = "pt",
    ) -> str:
        """Return a drafted observation, or a fallback message."""
        if language not in PROMPTS:
            language = "en"

        if self._model is None:
            return UNAVAILABLE[language]

        prompt = PROMPTS[language].format(
            client_name=client_name,
            amount=float(amount),
            service=service,
        )

        try:
            response = await self._model.generate_content_async(prompt)
            return response.text.strip()
        except Exception as e:
            logger.error("observation_generation_failed", error=str(e))
            self._audit.log_external_service_error("gemini", str(e))
            return FAILED[language]
