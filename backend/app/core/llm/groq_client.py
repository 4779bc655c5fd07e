"""
Groq LLM Client

Generative provider for chat turns. Sends the assembled role-tagged units as a
chat completion. No streaming. No retries; retry policy belongs to the client.
"""

from __future__ import annotations

from typing import Optional, Sequence

from groq import APIError, Groq

from backend.app.conversation.models import Role, TextUnit
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import GenerationFailed
from backend.app.observability.logging import log_event

# Groq follows the OpenAI role names.
_PROVIDER_ROLES = {Role.USER: "user", Role.MODEL: "assistant"}


class GroqGenerativeProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.1-8b-instant",
        temperature: float = 0.7,
        system_instruction: str = "",
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.system_instruction = system_instruction
        self.timeout_seconds = timeout_seconds
        self._client: Groq | None = None

    def _get_client(self) -> Groq:
        if self._client is None:
            if not self.api_key:
                raise GenerationFailed("GROQ_API_KEY not found in environment variables")
            self._client = Groq(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client

    def to_messages(self, units: Sequence[TextUnit]) -> list[dict[str, str]]:
        messages = []
        if self.system_instruction:
            messages.append({"role": "system", "content": self.system_instruction})
        for unit in units:
            messages.append({"role": _PROVIDER_ROLES[unit.role], "content": unit.text})
        return messages

    def generate(self, units: Sequence[TextUnit]) -> str:
        """
        Send the ordered units to Groq and return the plain text reply.

        Raises:
            GenerationFailed: If the key is missing, the API call fails or the reply is empty.
        """
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=self.to_messages(units),
                temperature=self.temperature,
            )
        except APIError as exc:
            log_event("generation_failed", provider="groq", model=self.model, error=str(exc))
            raise GenerationFailed(f"Groq request failed: {exc}") from exc

        if not response or not response.choices:
            raise GenerationFailed("Empty response from Groq")

        content = response.choices[0].message.content
        if content is None or not content.strip():
            raise GenerationFailed("Empty response from Groq")

        return content.strip()


def get_generative_provider(settings: Settings | None = None) -> GroqGenerativeProvider:
    settings = settings or get_settings()
    return GroqGenerativeProvider(
        api_key=settings.groq_api_key,
        model=settings.groq_model,
        temperature=settings.generation_temperature,
        system_instruction=settings.generation_system_prompt,
        timeout_seconds=settings.llm_timeout_seconds,
    )
