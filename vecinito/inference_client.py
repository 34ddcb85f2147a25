from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import Settings
from .errors import UpstreamError
from .models import ChatMessage
from .response_parser import iter_content_fragments, join_fragments, parse_response_body

logger = logging.getLogger("vecinito.inference")


class InferenceClient:
    """Base wrapper around an HTTP chat-completion API with a pooled httpx client."""

    name = "inference"

    def __init__(
        self,
        url: str,
        model: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Purpose: Store endpoint configuration; the httpx client is created lazily.
        Inputs/Outputs: Inputs are URL, model, timeout seconds (None = unlimited), and an
            optional transport (tests pass httpx.MockTransport); no return value.
        Side Effects / State: None until the first request.
        Dependencies: Uses httpx.AsyncClient.
        Failure Modes: None at init.
        If Removed: The coordinator has no way to reach the model.
        Testing Notes: Inject MockTransport and assert on the captured request.
        """
        self._url = url
        self._model = model
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> httpx.AsyncClient:
        # Created on first use so it binds to the running event loop.
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        return {
            "model": self._model,
            "messages": [message.model_dump() for message in messages],
        }

    async def chat(self, messages: Sequence[ChatMessage]) -> str:
        """Send a full transcript and return the raw concatenated reply text."""
        raise NotImplementedError


class OllamaClient(InferenceClient):
    """Local Ollama `/api/chat` client reading the newline-delimited stream."""

    name = "ollama"

    async def chat(self, messages: Sequence[ChatMessage]) -> str:
        """Purpose: Stream a chat completion from Ollama and concatenate the fragments.
        Inputs/Outputs: Input is the transcript (system prompt first); output is raw text.
        Side Effects / State: One HTTP request; logs the call.
        Dependencies: Uses httpx streaming and iter_content_fragments.
        Failure Modes: Transport errors and non-2xx statuses raise UpstreamError;
            lines that are not JSON are skipped.
        If Removed: The default local provider stops working.
        Testing Notes: Feed an NDJSON body with a garbage line via MockTransport.
        """
        # Read the body line by line as Ollama emits one JSON object per chunk.
        payload = self._payload(messages)
        payload["stream"] = True
        logger.info("provider=%s model=%s messages=%s", self.name, self._model, len(messages))
        try:
            async with self._get_client().stream("POST", self._url, json=payload) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise UpstreamError(f"Error al comunicarse con Ollama (HTTP {response.status_code})")
                lines: List[str] = [line async for line in response.aiter_lines()]
        except httpx.HTTPError as exc:
            logger.error("provider=%s request failed: %s", self.name, exc)
            raise UpstreamError("Error al comunicarse con Ollama") from exc
        return join_fragments(iter_content_fragments(lines))


class GroqClient(InferenceClient):
    """Groq OpenAI-compatible chat-completions client."""

    name = "groq"

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(url, model, timeout=timeout, transport=transport)
        self._api_key = api_key

    async def chat(self, messages: Sequence[ChatMessage]) -> str:
        """Purpose: Request a chat completion from Groq and extract the reply text.
        Inputs/Outputs: Input is the transcript (system prompt first); output is raw text.
        Side Effects / State: One HTTP request; logs the call.
        Dependencies: Uses httpx and parse_response_body (object or NDJSON body).
        Failure Modes: Missing API key raises UpstreamError before any I/O; transport
            errors and non-2xx statuses raise UpstreamError.
        If Removed: The hosted provider stops working.
        Testing Notes: Assert the bearer header and the choices[0] extraction.
        """
        # The credential is only checked at call time so the server still starts.
        if not self._api_key:
            logger.error("provider=%s GROQ_API_KEY is not configured", self.name)
            raise UpstreamError("Error al comunicarse con Groq: falta GROQ_API_KEY")
        logger.info("provider=%s model=%s messages=%s", self.name, self._model, len(messages))
        try:
            response = await self._get_client().post(
                self._url,
                json=self._payload(messages),
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            logger.error("provider=%s request failed: %s", self.name, exc)
            raise UpstreamError("Error al comunicarse con Groq") from exc
        if response.status_code >= 400:
            logger.error("provider=%s status=%s body=%s", self.name, response.status_code, response.text[:500])
            raise UpstreamError(f"Error al comunicarse con Groq (HTTP {response.status_code})")
        return join_fragments(parse_response_body(response.text))


def build_inference_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> InferenceClient:
    """Purpose: Build the configured inference client.
    Inputs/Outputs: Input is Settings (and an optional transport); returns a client.
    Side Effects / State: None.
    Dependencies: Uses OllamaClient/GroqClient.
    Failure Modes: Unknown provider names raise ValueError at startup.
    If Removed: App cannot choose between Ollama and Groq.
    Testing Notes: provider="groq" returns a GroqClient with the configured model.
    """
    # Select the provider named in settings.
    if settings.provider == "ollama":
        return OllamaClient(
            settings.ollama_url, settings.ollama_model, timeout=settings.upstream_timeout, transport=transport
        )
    if settings.provider == "groq":
        return GroqClient(
            settings.groq_url,
            settings.groq_api_key,
            settings.groq_model,
            timeout=settings.upstream_timeout,
            transport=transport,
        )
    raise ValueError(f"Unknown INFERENCE_PROVIDER: {settings.provider}")
