"""Chat routing between product-image replies and model conversation.

Role:
    Owns the per-message decision for the chat endpoint. Product inquiries are
    answered from the image tree without calling the model; everything else is
    appended to the user's transcript and forwarded, with the agent's system
    prompt, to the inference API.

Session contract:
    - transcript: user/assistant turns in chronological order; the system prompt
      is never stored, it is prepended on every call.
    - last_size: overwritten whenever a product inquiry names a size; reused
      by later inquiries that do not.
    - shown_images: per-user cycle of random suggestions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import EmptyModelResponse, MissingField
from .image_index import PRODUCT_CATEGORY, ImageIndex, Size, detect_size
from .inference_client import InferenceClient
from .models import ChatMessage
from .prompt_loader import load_agent_prompt
from .response_parser import clean_reply
from .session_store import SessionStore
from .utils import find_keyword

logger = logging.getLogger("vecinito.chat")

PRODUCT_KEYWORDS = ["kit", "kits", "botiquin", "botiquín", "botiquines", "producto", "productos"]

SIZE_REPLY_TEMPLATE = "Claro veci... Aquí tienes nuestros productos tamaño {size}:"
ALL_SIZES_REPLY = "Claro veci... Aquí tienes todos nuestros kits y botiquines disponibles:"


@dataclass
class ChatReply:
    """Outcome of one handled message, before HTTP serialization."""
    reply_text: str
    images: Optional[List[str]] = None
    imagenes: Optional[List[str]] = None
    superseded: bool = False
    degraded: bool = False


def validate_message(user_id: Optional[str], prompt: Optional[str]) -> None:
    """Raise MissingField unless both user_id and prompt are non-blank strings."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise MissingField()
    if not isinstance(prompt, str) or not prompt.strip():
        raise MissingField()


def is_product_request(prompt: str) -> bool:
    return find_keyword(prompt, PRODUCT_KEYWORDS) is not None


class ChatCoordinator:
    def __init__(
        self,
        sessions: SessionStore,
        images: ImageIndex,
        client: InferenceClient,
        prompts_dir: Path,
        default_agent: str = "el-vecinito",
        product_reply_delay: float = 0.0,
    ) -> None:
        """Purpose: Wire the session store, image index, and inference client together.
        Inputs/Outputs: Inputs are the collaborators, prompt directory, default agent
            id, and the pause in seconds before canned product replies; no return value.
        Side Effects / State: Stores references only.
        Dependencies: SessionStore, ImageIndex, InferenceClient, prompt_loader.
        Failure Modes: None at init.
        If Removed: The chat endpoint has no message handling.
        Testing Notes: Instantiate with a fake client and a tmp_path image tree.
        """
        self._sessions = sessions
        self._images = images
        self._client = client
        self._prompts_dir = Path(prompts_dir)
        self._default_agent = default_agent
        self._product_reply_delay = product_reply_delay

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def images(self) -> ImageIndex:
        return self._images

    async def handle_message(self, user_id: str, prompt: str, agent: Optional[str] = None) -> ChatReply:
        """Purpose: Answer one user message through the product or chat route.
        Inputs/Outputs: Inputs are user_id, raw prompt, and optional agent id; output is
            a ChatReply with reply text and any images.
        Side Effects / State: May update last_size or append transcript turns. Product
            replies are held for product_reply_delay seconds before returning.
        Dependencies: Uses is_product_request, reply_with_products, and chat.
        Failure Modes: MissingField before any mutation; ConfigLoadError, UpstreamError
            and EmptyModelResponse from the chat route propagate.
        If Removed: POST /chat cannot produce replies.
        Testing Notes: A "kits" prompt never reaches the fake client.
        """
        # Validate first so rejected requests leave sessions untouched.
        validate_message(user_id, prompt)
        logger.info("user=%s prompt=%s", user_id, prompt)
        if is_product_request(prompt):
            logger.info("user=%s route=products", user_id)
            reply = self.reply_with_products(user_id, prompt)
            if self._product_reply_delay > 0:
                await asyncio.sleep(self._product_reply_delay)
            return reply
        logger.info("user=%s route=chat agent=%s", user_id, agent or self._default_agent)
        reply_text = await self.chat(user_id, prompt, agent)
        return ChatReply(reply_text=reply_text)

    def resolve_size(self, user_id: str, prompt: str) -> Optional[Size]:
        """Purpose: Decide which size a product inquiry refers to.
        Inputs/Outputs: Inputs are user_id and prompt; output is a Size or None (all).
        Side Effects / State: Stores an explicitly mentioned size as last_size.
        Dependencies: Uses detect_size and SessionStore.
        Failure Modes: None.
        If Removed: Follow-up inquiries like "y los kits?" lose the remembered size.
        Testing Notes: "medium" then "kits" resolves to MEDIUM; "large" overwrites it.
        """
        # An explicit mention wins and is remembered; otherwise fall back to memory.
        size = detect_size(prompt)
        if size is not None:
            self._sessions.set_last_size(user_id, size)
            return size
        return self._sessions.get_last_size(user_id)

    def reply_with_products(self, user_id: str, prompt: str) -> ChatReply:
        size = self.resolve_size(user_id, prompt)
        images = self._images.list_images(PRODUCT_CATEGORY, size)
        logger.info("user=%s size=%s images=%s", user_id, size.value if size else "all", len(images))
        if size is not None:
            return ChatReply(reply_text=SIZE_REPLY_TEMPLATE.format(size=size.value), images=images)
        return ChatReply(reply_text=ALL_SIZES_REPLY, images=images)

    async def chat(self, user_id: str, prompt: str, agent: Optional[str] = None) -> str:
        """Purpose: Run one free-form exchange with the model and record it.
        Inputs/Outputs: Inputs are user_id, prompt, optional agent; output is the
            cleaned assistant reply.
        Side Effects / State: Appends the user turn, then the assistant turn on success.
        Dependencies: load_agent_prompt, InferenceClient.chat, clean_reply.
        Failure Modes: ConfigLoadError, UpstreamError, EmptyModelResponse; the user turn
            stays in the transcript when the call fails.
        If Removed: Non-product messages cannot be answered.
        Testing Notes: Transcript holds exactly [user, assistant] after one exchange.
        """
        # Record the user turn before loading config, matching the request order.
        agent_id = agent or self._default_agent
        self._sessions.add_message(user_id, "user", prompt)
        system_prompt = load_agent_prompt(self._prompts_dir, agent_id)
        messages = [ChatMessage(role="system", content=system_prompt)]
        messages.extend(self._sessions.get_messages(user_id))

        raw_reply = await self._client.chat(messages)
        if not raw_reply:
            logger.error("user=%s empty model response", user_id)
            raise EmptyModelResponse()
        reply = clean_reply(raw_reply)
        if not reply:
            logger.error("user=%s model response empty after cleaning", user_id)
            raise EmptyModelResponse()

        self._sessions.add_message(user_id, "assistant", reply)
        logger.info("user=%s reply_chars=%s", user_id, len(reply))
        logger.debug("user=%s reply=%s", user_id, reply)
        return reply

    def pick_random_images(self, user_id: str, category: str = PRODUCT_CATEGORY, count: int = 3) -> List[str]:
        """Pick random images the user has not seen in the current cycle."""
        shown = self._sessions.shown_images(user_id)
        return self._images.pick_random_images(shown, category, count)
