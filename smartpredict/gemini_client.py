from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import google.generativeai as genai

from .config import Settings
from .errors import GenerationError

logger = logging.getLogger("smartpredict.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]

ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


class GeminiClient:
    """Thin async wrapper around the Gemini SDK exposing whole and streamed completion."""

    def __init__(self, settings: Settings, temperature: float = 0.4, max_output_tokens: int = 2048) -> None:
        """Purpose: Configure the Gemini SDK for one hosting process.
        Inputs/Outputs: Input is Settings plus generation limits; no return value.
        Side Effects / State: Configures the SDK global API key.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Chat fallback, deals, and recommendations cannot call the model.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Configure API key and remember generation defaults.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._model_name = _normalize_model_name(settings.gemini_model)
        if not self._model_name:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }

    def _model(self, system_prompt: Optional[str]) -> genai.GenerativeModel:
        if system_prompt:
            return genai.GenerativeModel(self._model_name, system_instruction=system_prompt)
        return genai.GenerativeModel(self._model_name)

    async def complete(self, system_prompt: str, prompt: str) -> str:
        """Purpose: Generate a single whole text response for a prompt.
        Inputs/Outputs: Inputs are the system prompt and user prompt; returns text.
        Side Effects / State: One network call to the model.
        Dependencies: Uses GenerativeModel.generate_content_async.
        Failure Modes: SDK errors are re-raised as GenerationError.
        If Removed: Insight generation has no model behind it.
        Testing Notes: Replace with a fake in tests; never call the network.
        """
        try:
            response = await self._model(system_prompt).generate_content_async(
                prompt,
                generation_config=self._generation_config,
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )
        except Exception as exc:
            logger.error("model=%s call=complete status=error error=%s", self._model_name, exc)
            raise GenerationError("Model completion failed", details=str(exc)) from exc
        return _response_text(response).strip()

    async def stream_complete(self, system_prompt: str, messages: Sequence[Dict[str, Any]]) -> AsyncIterator[str]:
        """Purpose: Stream a reply to a conversation as in-order text fragments.
        Inputs/Outputs: Inputs are the system prompt and role/content messages;
            yields non-empty text fragments.
        Side Effects / State: One streaming network call; not restartable.
        Dependencies: Uses generate_content_async(stream=True) and to_contents.
        Failure Modes: SDK errors, before or during the stream, raise GenerationError.
        If Removed: The chat fallback has no reply.
        Testing Notes: Replace with a fake async generator in tests.
        """
        try:
            response = await self._model(system_prompt).generate_content_async(
                to_contents(messages),
                generation_config=self._generation_config,
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                stream=True,
            )
            async for chunk in response:
                text = _response_text(chunk)
                if text:
                    yield text
        except Exception as exc:
            logger.error("model=%s call=stream status=error error=%s", self._model_name, exc)
            raise GenerationError("Model stream failed", details=str(exc)) from exc


def to_contents(messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Purpose: Convert role/content chat turns into Gemini structured contents.
    Inputs/Outputs: Input is a list of message dicts; output is a list of content dicts.
    Side Effects / State: None.
    Dependencies: Uses ROLE_MAP; used by stream_complete.
    Failure Modes: Unknown roles and empty contents are skipped.
    If Removed: Conversation history cannot be sent to the model.
    Testing Notes: Verify "assistant" maps to "model".
    """
    contents: List[Dict[str, Any]] = []
    for message in messages:
        role = ROLE_MAP.get(str(message.get("role", "")).lower())
        text = str(message.get("content") or "").strip()
        if not role or not text:
            continue
        contents.append({"role": role, "parts": [{"text": text}]})
    return contents


def _response_text(response: Any) -> str:
    # `.text` raises ValueError when the candidate carries no text part.
    try:
        text: Optional[str] = response.text
    except (AttributeError, ValueError):
        return ""
    return text or ""


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
