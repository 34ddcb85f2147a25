from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from vecinito.chat_coordinator import ChatCoordinator
from vecinito.config import Settings
from vecinito.image_index import ImageIndex
from vecinito.inference_client import InferenceClient
from vecinito.models import ChatMessage
from vecinito.session_store import SessionStore

SYSTEM_PROMPT = "Eres El Vecinito."


class FakeClient(InferenceClient):
    """Inference client that records transcripts and replays canned replies."""

    name = "fake"

    def __init__(
        self,
        replies: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__("http://inference.test/api/chat", "fake-model")
        self.replies = list(replies or ["Hola veci"])
        self.error = error
        self.delay = delay
        self.calls: List[List[ChatMessage]] = []
        self.closed = False

    async def chat(self, messages: Sequence[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def aclose(self) -> None:
        self.closed = True


def _touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"img")


@pytest.fixture
def image_root(tmp_path: Path) -> Path:
    root = tmp_path / "public" / "imagenes"
    _touch(root / "productos" / "pequeño" / "a.jpg")
    _touch(root / "productos" / "pequeño" / "b.png")
    _touch(root / "productos" / "mediano" / "c.jpeg")
    (root / "productos" / "mediano" / "notas.txt").write_text("no es imagen", encoding="utf-8")
    _touch(root / "productos" / "grande" / "e.GIF")
    return root


@pytest.fixture
def prompts_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "prompts"
    directory.mkdir()
    (directory / "el-vecinito-ModelFile.txt").write_text(SYSTEM_PROMPT, encoding="utf-8")
    return directory


@pytest.fixture
def settings(tmp_path: Path, image_root: Path, prompts_dir: Path) -> Settings:
    public_dir = image_root.parent
    (public_dir / "index.html").write_text("<h1>El Vecinito</h1>", encoding="utf-8")
    return Settings(
        provider="ollama",
        ollama_url="http://inference.test/api/chat",
        ollama_model="vecinito-model",
        groq_api_key="",
        groq_url="http://groq.test/openai/v1/chat/completions",
        groq_model="llama-test",
        upstream_timeout=None,
        host="127.0.0.1",
        port=3000,
        public_dir=public_dir,
        images_dir=image_root,
        images_url_prefix="/imagenes",
        prompts_dir=prompts_dir,
        default_agent="el-vecinito",
        coalesce_window=0.0,
        product_reply_delay=0.0,
        random_image_count=2,
        max_sessions=None,
        cors_origins=("*",),
    )


@pytest.fixture
def buffered_settings(settings: Settings) -> Settings:
    return replace(settings, coalesce_window=0.05)


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def coordinator(image_root: Path, prompts_dir: Path, fake_client: FakeClient) -> ChatCoordinator:
    return ChatCoordinator(
        sessions=SessionStore(),
        images=ImageIndex(image_root, "/imagenes"),
        client=fake_client,
        prompts_dir=prompts_dir,
    )
