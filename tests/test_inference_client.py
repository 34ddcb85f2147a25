import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from vecinito.errors import UpstreamError
from vecinito.inference_client import GroqClient, OllamaClient, build_inference_client
from vecinito.models import ChatMessage

MESSAGES = [
    ChatMessage(role="system", content="Eres El Vecinito."),
    ChatMessage(role="user", content="hola"),
]


def _run(client, messages=MESSAGES):
    async def scenario():
        try:
            return await client.chat(messages)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_ollama_streams_and_concatenates_fragments():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["payload"] = json.loads(request.content)
        body = (
            b'{"message": {"content": "Hola"}, "done": false}\n'
            b"garbage\n"
            b'{"message": {"content": " veci"}, "done": false}\n'
            b'{"done": true}\n'
        )
        return httpx.Response(200, content=body)

    client = OllamaClient("http://ollama.test/api/chat", "vecinito-model", transport=httpx.MockTransport(handler))

    assert _run(client) == "Hola veci"
    assert captured["url"] == "http://ollama.test/api/chat"
    assert captured["payload"]["model"] == "vecinito-model"
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["messages"][0] == {"role": "system", "content": "Eres El Vecinito."}


def test_ollama_non_2xx_raises_upstream_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="model not found"))
    client = OllamaClient("http://ollama.test/api/chat", "vecinito-model", transport=transport)

    with pytest.raises(UpstreamError):
        _run(client)


def test_ollama_connection_error_raises_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = OllamaClient("http://ollama.test/api/chat", "vecinito-model", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError):
        _run(client)


def test_groq_sends_bearer_token_and_reads_choices():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("Authorization")
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "Buenas veci"}}]})

    client = GroqClient(
        "http://groq.test/openai/v1/chat/completions",
        "secret-key",
        "llama-test",
        transport=httpx.MockTransport(handler),
    )

    assert _run(client) == "Buenas veci"
    assert captured["auth"] == "Bearer secret-key"
    assert captured["payload"]["model"] == "llama-test"
    assert "stream" not in captured["payload"]


def test_groq_without_key_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = GroqClient("http://groq.test/chat", "", "llama-test", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as excinfo:
        _run(client)

    assert "GROQ_API_KEY" in excinfo.value.message
    assert calls == []


def test_groq_error_status_raises_upstream_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "invalid key"}))
    client = GroqClient("http://groq.test/chat", "bad", "llama-test", transport=transport)

    with pytest.raises(UpstreamError):
        _run(client)


def test_groq_empty_choices_returns_empty_text():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    client = GroqClient("http://groq.test/chat", "key", "llama-test", transport=transport)

    assert _run(client) == ""


def test_build_inference_client_selects_provider(settings):
    ollama = build_inference_client(settings)
    groq = build_inference_client(replace(settings, provider="groq"))

    assert isinstance(ollama, OllamaClient)
    assert ollama.model == "vecinito-model"
    assert isinstance(groq, GroqClient)
    assert groq.model == "llama-test"

    with pytest.raises(ValueError):
        build_inference_client(replace(settings, provider="openai"))
