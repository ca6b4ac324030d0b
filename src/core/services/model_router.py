"""
Generation backends and the router that picks one of them.

The backend is resolved once at startup from settings into a BackendConfig.
Every request goes to that backend with the same message sequence and output
budget. A transport failure is only retried on the other backend when
LLM_CROSS_BACKEND_FALLBACK is enabled.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
import openai
from openai import AsyncOpenAI
from src.config.settings import Settings, settings
from src.core.models.chat import ChatMessage, GenerationResult
from src.utils.errors import BackendUnavailableError, GenerationError
from src.utils.logging import logger


class ModelBackend(str, Enum):
    PREFERRED = "preferred"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class BackendConfig:
    backend: ModelBackend
    model_id: str
    api_key: str
    base_url: Optional[str] = None


def preferred_config(config: Settings) -> Optional[BackendConfig]:
    if not config.GOOGLE_API_KEY:
        return None
    return BackendConfig(
        backend=ModelBackend.PREFERRED,
        model_id=config.LLM_MODEL,
        api_key=config.GOOGLE_API_KEY,
    )


def fallback_config(config: Settings) -> BackendConfig:
    return BackendConfig(
        backend=ModelBackend.FALLBACK,
        model_id=config.FALLBACK_LLM_MODEL,
        api_key=config.FALLBACK_LLM_API_KEY,
        base_url=config.FALLBACK_LLM_BASE_URL,
    )


def resolve_backend_config(config: Settings = settings) -> BackendConfig:
    """Pick the generation backend for the lifetime of the process."""
    requested = ModelBackend(config.LLM_BACKEND.lower())
    if requested is ModelBackend.PREFERRED:
        preferred = preferred_config(config)
        if preferred is not None:
            return preferred
        logger.warning("Preferred backend requested but GOOGLE_API_KEY is not set; using fallback backend")
    return fallback_config(config)


class GeminiBackend:
    """Hosted Gemini chat model."""

    def __init__(self, config: BackendConfig):
        genai.configure(api_key=config.api_key)
        self.model_id = config.model_id

    @staticmethod
    def _to_contents(messages: List[ChatMessage]):
        system_parts = [m.content for m in messages if m.role == "system"]
        contents = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [m.content]}
            for m in messages
            if m.role != "system"
        ]
        return "\n\n".join(system_parts) or None, contents

    async def generate(self, messages: List[ChatMessage], max_output_tokens: int) -> str:
        system_instruction, contents = self._to_contents(messages)
        model = genai.GenerativeModel(self.model_id, system_instruction=system_instruction)
        try:
            response = await model.generate_content_async(
                contents,
                generation_config={"max_output_tokens": max_output_tokens}
            )
        except google_exceptions.GoogleAPIError as e:
            raise BackendUnavailableError(f"Gemini request failed: {e}") from e

        try:
            return response.text
        except ValueError:
            # Blocked or empty candidates
            return ""


class OpenAICompatibleBackend:
    """Any chat-completions endpoint speaking the OpenAI protocol (e.g. a local Llama server)."""

    def __init__(self, config: BackendConfig, client: Optional[AsyncOpenAI] = None):
        self.model_id = config.model_id
        self.client = client or AsyncOpenAI(base_url=config.base_url, api_key=config.api_key)

    async def generate(self, messages: List[ChatMessage], max_output_tokens: int) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model_id,
                messages=[m.model_dump() for m in messages],
                max_tokens=max_output_tokens,
            )
        except (openai.APIConnectionError, openai.APIStatusError) as e:
            raise BackendUnavailableError(f"{self.model_id} request failed: {e}") from e

        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""


def build_backend(config: BackendConfig):
    if config.backend is ModelBackend.PREFERRED:
        return GeminiBackend(config)
    return OpenAICompatibleBackend(config)


class ModelRouter:
    def __init__(self, primary, secondary=None, max_output_tokens: int = None):
        self.primary = primary
        self.secondary = secondary
        self.max_output_tokens = max_output_tokens or settings.LLM_MAX_OUTPUT_TOKENS

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ModelRouter":
        selected = resolve_backend_config(config)
        secondary = None
        if config.LLM_CROSS_BACKEND_FALLBACK:
            other = (
                fallback_config(config)
                if selected.backend is ModelBackend.PREFERRED
                else preferred_config(config)
            )
            if other is not None:
                secondary = build_backend(other)
        logger.info(f"Generation backend: {selected.backend.value} ({selected.model_id})")
        return cls(build_backend(selected), secondary, config.LLM_MAX_OUTPUT_TOKENS)

    @property
    def model_id(self) -> str:
        return self.primary.model_id

    async def _invoke(self, backend, messages: List[ChatMessage]) -> GenerationResult:
        text = await backend.generate(messages, self.max_output_tokens)
        if not text or not text.strip():
            raise GenerationError(f"{backend.model_id} returned no usable output")
        return GenerationResult(text=text, model=backend.model_id)

    async def generate(self, messages: List[ChatMessage]) -> GenerationResult:
        try:
            return await self._invoke(self.primary, messages)
        except BackendUnavailableError as e:
            if self.secondary is None:
                logger.error(f"Generation failed: {e}")
                raise
            logger.warning(f"{e}; retrying on {self.secondary.model_id}")
            return await self._invoke(self.secondary, messages)
