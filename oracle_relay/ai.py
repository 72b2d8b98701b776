"""AI inference providers and the dispatcher that never fails a handler."""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional, Sequence

import httpx

from .errors import AIServiceError

LOGGER = logging.getLogger(__name__)

NAMESPACE_UUID = uuid.UUID("f7e8a6a0-8d5d-4f7d-8f8a-8c7d6e5f4a3b")
CHAINGPT_URL = "https://api.chaingpt.org/chat/stream"

Turn = Dict[str, str]


class AIProvider:
    """Protocol-like base for inference backends."""

    label = "AI"

    async def infer(self, history: Sequence[Turn], conversation_id: int | str) -> str:  # pragma: no cover - protocol helper
        raise NotImplementedError


class OllamaProvider(AIProvider):
    """DeepSeek served by a local Ollama instance."""

    label = "DeepSeek"

    def __init__(
        self,
        url: str,
        *,
        model: str = "deepseek-r1:1.5b",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def infer(self, history: Sequence[Turn], conversation_id: int | str) -> str:
        messages = [{"role": turn["role"], "content": turn["content"]} for turn in history]
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._url}/api/chat",
                json={"model": self._model, "messages": messages, "stream": False},
            )
        if response.status_code != 200:
            raise AIServiceError(f"Ollama server responded with status: {response.status_code}")
        content = ((response.json() or {}).get("message") or {}).get("content")
        return content or "Error: Malformed response from DeepSeek."


class ChainGPTProvider(AIProvider):
    label = "ChainGPT"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def session_id(conversation_id: int | str) -> str:
        return str(uuid.uuid5(NAMESPACE_UUID, str(conversation_id)))

    async def infer(self, history: Sequence[Turn], conversation_id: int | str) -> str:
        if not self._api_key:
            raise AIServiceError("CHAIN_GPT_API_KEY is not set")
        questions = [turn["content"] for turn in history if turn.get("role") == "user"]
        if not questions:
            raise AIServiceError("Cannot query ChainGPT with an empty prompt list")
        body = {
            "model": "general_assistant",
            "question": questions[-1],
            "chatHistory": "on",
            "sdkUniqueId": self.session_id(conversation_id),
            "aiTone": "PRE_SET_TONE",
            "selectedTone": "FRIENDLY",
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(CHAINGPT_URL, json=body, headers=headers)
        if response.status_code != 200:
            raise AIServiceError(f"ChainGPT API responded with status: {response.status_code}")
        return response.text.strip() or "Error: Malformed response from ChainGPT."


class AIDispatcher:
    """Route queries to the configured provider.

    Provider failures become a readable placeholder answer so that a request
    is still answered on-chain.
    """

    def __init__(self, provider: AIProvider) -> None:
        self._provider = provider

    @property
    def provider(self) -> AIProvider:
        return self._provider

    async def query(self, history: List[Turn], conversation_id: int | str) -> str:
        LOGGER.info("Querying AI model via %s", self._provider.label)
        try:
            return await self._provider.infer(history, conversation_id)
        except Exception as exc:
            LOGGER.error("Error querying %s: %s", self._provider.label, exc)
            return f"Error: Could not generate a response from the {self._provider.label} service."


def build_provider(name: str, *, ollama_url: str, ollama_model: str, chaingpt_api_key: Optional[str]) -> AIProvider:
    normalized = (name or "deepseek").lower()
    if normalized == "chaingpt":
        return ChainGPTProvider(chaingpt_api_key)
    if normalized != "deepseek":
        LOGGER.error('Unknown AI_PROVIDER "%s"; defaulting to DeepSeek', name)
    return OllamaProvider(ollama_url, model=ollama_model)


__all__ = [
    "AIDispatcher",
    "AIProvider",
    "ChainGPTProvider",
    "NAMESPACE_UUID",
    "OllamaProvider",
    "build_provider",
]
