"""
OpenAI Integration for Ventanilla Única
=======================================
Generates the assistant's replies.

The model only writes guidance. Provision figures come from the Python
calculator and arrive in the prompt as a structured block.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional

import openai
from openai import OpenAI

from config import get_settings

logger = logging.getLogger(__name__)


class AIProvider(Enum):
    OPENAI = "openai"
    MOCK = "mock"


class AIErrorKind(str, Enum):
    TIMEOUT = "timeout"
    AUTH = "auth"
    MODEL_NOT_FOUND = "model_not_found"
    UPSTREAM = "upstream"


@dataclass
class AIResponse:
    """Response from AI model."""
    content: str
    model: str
    provider: str
    duration_ms: int = 0
    tokens_used: Optional[int] = None
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[AIErrorKind] = None


def classify_openai_error(error: Exception) -> AIErrorKind:
    """Map an exception raised by the OpenAI SDK onto a coarse category."""
    message = str(error).lower()
    status = getattr(error, "status_code", None)

    if (
        isinstance(error, openai.APITimeoutError)
        or "timeout" in type(error).__name__.lower()
        or "timeout" in message
        or "timed out" in message
        or status == 408
    ):
        return AIErrorKind.TIMEOUT

    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)) or status in (401, 403):
        return AIErrorKind.AUTH

    if status == 404:
        code = getattr(error, "code", None)
        if "model" in message or code == "model_not_found":
            return AIErrorKind.MODEL_NOT_FOUND

    return AIErrorKind.UPSTREAM


MOCK_REPLY = """Hola, soy Ventanilla Única (modo demostración).

Para darte una respuesta personalizada necesito conexión con el modelo de IA.
Mientras tanto, recuerda el checklist mensual:
1) Revisar ingresos
2) Revisar gastos
3) Provisionar impuestos
4) Revisar flujo de caja
5) Evaluar estado financiero

⚠️ Configura OPENAI_API_KEY para activar las respuestas con IA."""


class AdvisorAIClient:
    """
    AI client for the Ventanilla Única assistant.

    Supports:
    - OpenAI chat completions (primary)
    - Mock responses (fallback when no API key)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.model = model or settings.openai_model
        self.provider = AIProvider.MOCK
        self.client = None

        api_key = api_key or settings.openai_api_key
        if api_key:
            self.client = OpenAI(
                api_key=api_key,
                timeout=timeout_seconds or settings.openai_timeout_seconds,
            )
            self.provider = AIProvider.OPENAI

    @property
    def is_connected(self) -> bool:
        """Check if connected to real AI provider."""
        return self.provider == AIProvider.OPENAI and self.client is not None

    def generate_reply(self, system_prompt: str, user_prompt: str) -> AIResponse:
        """
        Generate the assistant's reply.

        Args:
            system_prompt: Assistant persona and rules
            user_prompt: Conversation transcript plus provision context

        Returns:
            AIResponse; on failure success is False and error_kind is set
        """
        if self.provider == AIProvider.OPENAI:
            return self._call_openai(system_prompt, user_prompt)
        return AIResponse(content=MOCK_REPLY, model="mock", provider="mock")

    def _call_openai(self, system_prompt: str, user_prompt: str) -> AIResponse:
        """Make a call to OpenAI API."""
        logger.info("OpenAI request started (model=%s)", self.model)
        started = time.monotonic()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            kind = classify_openai_error(e)
            logger.error(
                "OpenAI request failed (model=%s, duration_ms=%d, error=%s, kind=%s): %s",
                self.model, duration_ms, type(e).__name__, kind.value, e,
            )
            return AIResponse(
                content="",
                model=self.model,
                provider="openai",
                duration_ms=duration_ms,
                success=False,
                error=str(e),
                error_kind=kind,
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        tokens_used = response.usage.total_tokens if response.usage else None
        logger.info(
            "OpenAI request completed (model=%s, duration_ms=%d, tokens=%s)",
            self.model, duration_ms, tokens_used,
        )

        content = response.choices[0].message.content if response.choices else None
        return AIResponse(
            content=(content or "").strip(),
            model=self.model,
            provider="openai",
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            success=True,
        )


@lru_cache(maxsize=1)
def get_ai_client() -> AdvisorAIClient:
    """Get or create the AI client singleton."""
    return AdvisorAIClient()
