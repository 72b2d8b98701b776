from __future__ import annotations

import asyncio
import json
import uuid

import httpx

from oracle_relay.ai import (
    NAMESPACE_UUID,
    AIDispatcher,
    ChainGPTProvider,
    OllamaProvider,
    build_provider,
)

HISTORY = [
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello!"},
    {"role": "user", "content": "What is a block?"},
]


def test_ollama_provider_posts_full_history() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "A batch of transactions."}})

    provider = OllamaProvider("http://ollama:11434/", model="deepseek-r1:1.5b", transport=httpx.MockTransport(handler))
    answer = asyncio.run(AIDispatcher(provider).query(HISTORY, 3))

    assert answer == "A batch of transactions."
    assert seen == [{"model": "deepseek-r1:1.5b", "messages": HISTORY, "stream": False}]


def test_provider_failure_becomes_placeholder_answer() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="model not loaded")

    provider = OllamaProvider("http://ollama:11434", transport=httpx.MockTransport(handler))
    answer = asyncio.run(AIDispatcher(provider).query(HISTORY, 3))

    assert answer == "Error: Could not generate a response from the DeepSeek service."


def test_transport_failure_becomes_placeholder_answer() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = ChainGPTProvider("key", transport=httpx.MockTransport(handler))
    answer = asyncio.run(AIDispatcher(provider).query(HISTORY, 3))

    assert answer == "Error: Could not generate a response from the ChainGPT service."


def test_chaingpt_sends_latest_question_with_stable_session() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.headers["Authorization"], json.loads(request.content)))
        return httpx.Response(200, text="  Blocks group transactions.  ")

    provider = ChainGPTProvider("secret", transport=httpx.MockTransport(handler))
    answer = asyncio.run(provider.infer(HISTORY, 42))

    assert answer == "Blocks group transactions."
    ((auth, body),) = seen
    assert auth == "Bearer secret"
    assert body["question"] == "What is a block?"
    assert body["sdkUniqueId"] == str(uuid.uuid5(NAMESPACE_UUID, "42"))
    assert ChainGPTProvider.session_id(42) == ChainGPTProvider.session_id("42")


def test_chaingpt_without_key_answers_with_placeholder() -> None:
    answer = asyncio.run(AIDispatcher(ChainGPTProvider(None)).query(HISTORY, 1))
    assert answer.startswith("Error: Could not generate a response")


def test_unknown_provider_falls_back_to_deepseek() -> None:
    kwargs = {"ollama_url": "http://ollama:11434", "ollama_model": "m", "chaingpt_api_key": None}
    assert isinstance(build_provider("mystery", **kwargs), OllamaProvider)
    assert isinstance(build_provider("ChainGPT", **kwargs), ChainGPTProvider)
