"""Per-user request coalescing in front of the chat coordinator.

Consecutive messages from one user are collected until the user has been quiet
for ``quiet_period`` seconds, then answered once as a single newline-joined
prompt. Only the most recent caller waits for that answer; an earlier caller
still waiting is released immediately with a "superseded" reply.

State per user::

    IDLE --message--> BUFFERING --quiet period--> FLUSHING --reply--> IDLE
                       ^   |                         |
                       +---+ message (timer reset)   +--message--> BUFFERING

The append / timer reset / future swap in ``submit`` has no ``await`` between
its steps, so it runs as one unit on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .chat_coordinator import ChatCoordinator, ChatReply, validate_message
from .errors import EmptyModelResponse, UpstreamError
from .image_index import PRODUCT_CATEGORY

logger = logging.getLogger("vecinito.buffer")

SUPERSEDED_REPLY = "Mensaje recibido, estoy respondiendo tu mensaje más reciente."
DEGRADED_REPLY = (
    "Lo siento veci, tuve un problema para responder. "
    "Mientras tanto, mira algunos de nuestros productos:"
)


class BufferState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    FLUSHING = "flushing"


@dataclass
class PendingBuffer:
    """Messages and the waiting caller for one user."""
    prompts: List[str] = field(default_factory=list)
    agent: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = None
    future: Optional["asyncio.Future[ChatReply]"] = None
    state: BufferState = BufferState.IDLE
    flushes: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def superseded_reply() -> ChatReply:
    return ChatReply(reply_text=SUPERSEDED_REPLY, superseded=True)


class CoalescingBuffer:
    def __init__(self, coordinator: ChatCoordinator, quiet_period: float = 8.0, suggestion_count: int = 3) -> None:
        """Purpose: Configure the buffer in front of a ChatCoordinator.
        Inputs/Outputs: Inputs are the coordinator, quiet period in seconds, and the
            number of images suggested in a degraded reply; no return value.
        Side Effects / State: Creates empty per-user buffers.
        Dependencies: ChatCoordinator, asyncio event loop (at submit time).
        Failure Modes: None at init.
        If Removed: POST /chat answers every message individually.
        Testing Notes: Use a quiet period of a few hundredths of a second in tests.
        """
        self._coordinator = coordinator
        self._quiet_period = quiet_period
        self._suggestion_count = suggestion_count
        self._buffers: Dict[str, PendingBuffer] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def quiet_period(self) -> float:
        return self._quiet_period

    def state(self, user_id: str) -> BufferState:
        pending = self._buffers.get(user_id)
        return pending.state if pending else BufferState.IDLE

    def pending_count(self, user_id: str) -> int:
        pending = self._buffers.get(user_id)
        return len(pending.prompts) if pending else 0

    async def submit(self, user_id: str, prompt: str, agent: Optional[str] = None) -> ChatReply:
        """Purpose: Queue a message and wait for the coalesced reply.
        Inputs/Outputs: Inputs are user_id, prompt, optional agent; output is the
            ChatReply for the merged prompt, or the superseded reply if a newer
            message from the same user arrives first.
        Side Effects / State: Appends to the user's buffer, restarts the quiet-period
            timer, and releases the previously waiting caller.
        Dependencies: Uses loop.call_later and _start_flush.
        Failure Modes: MissingField before buffering; errors raised during flush other
            than upstream failures are re-raised here.
        If Removed: Rapid messages each trigger their own model call.
        Testing Notes: Two quick submits give one upstream call and one superseded reply.
        """
        # No await until the future is swapped, so concurrent submits cannot interleave.
        validate_message(user_id, prompt)
        loop = asyncio.get_running_loop()
        pending = self._buffers.setdefault(user_id, PendingBuffer())
        pending.prompts.append(prompt)
        if agent:
            pending.agent = agent

        if pending.timer is not None:
            pending.timer.cancel()
        pending.timer = loop.call_later(self._quiet_period, self._start_flush, user_id)

        previous = pending.future
        if previous is not None and not previous.done():
            previous.set_result(superseded_reply())
            logger.info("user=%s earlier request superseded", user_id)

        future: "asyncio.Future[ChatReply]" = loop.create_future()
        pending.future = future
        pending.state = BufferState.BUFFERING
        logger.info("user=%s buffered=%s quiet_period=%.1fs", user_id, len(pending.prompts), self._quiet_period)
        return await future

    def _start_flush(self, user_id: str) -> None:
        # Timer callback: hand over to a task so the flush can await the model.
        task = asyncio.get_running_loop().create_task(self._flush(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _flush(self, user_id: str) -> None:
        """Purpose: Answer the buffered messages of one user as a single prompt.
        Inputs/Outputs: Input is user_id; no return value (result goes to the future).
        Side Effects / State: Empties the buffer, waits for any earlier flush of the
            same user, calls the coordinator, and resolves the future captured at
            flush start if it is still pending.
        Dependencies: ChatCoordinator.handle_message, _degraded_reply.
        Failure Modes: UpstreamError/EmptyModelResponse become a degraded reply; other
            exceptions are set on the future. A superseded future drops the result.
        If Removed: Buffered callers never receive a reply.
        Testing Notes: Failing fake client yields DEGRADED_REPLY with imagenes.
        """
        # Detach the current batch; messages arriving from here on start a new cycle.
        pending = self._buffers.get(user_id)
        if pending is None or not pending.prompts:
            return
        combined = "\n".join(pending.prompts)
        pending.prompts = []
        pending.timer = None
        pending.state = BufferState.FLUSHING
        pending.flushes += 1
        future = pending.future
        logger.info("user=%s flushing chars=%s", user_id, len(combined))

        try:
            # One model exchange per user at a time keeps transcript turns paired.
            async with pending.lock:
                reply = await self._coordinator.handle_message(user_id, combined, pending.agent)
        except (UpstreamError, EmptyModelResponse) as exc:
            logger.warning("user=%s degraded reply after %s: %s", user_id, type(exc).__name__, exc)
            reply = self._degraded_reply(user_id)
        except Exception as exc:
            if future is not None and not future.done():
                future.set_exception(exc)
            else:
                logger.exception("user=%s flush failed after caller left", user_id)
            self._finish(user_id, pending)
            return

        if future is not None and not future.done():
            future.set_result(reply)
        else:
            logger.info("user=%s reply discarded, caller superseded", user_id)
        self._finish(user_id, pending)

    def _finish(self, user_id: str, pending: PendingBuffer) -> None:
        # Back to IDLE only once no flush is in flight and no new message is queued.
        pending.flushes -= 1
        if pending.flushes == 0 and pending.state is BufferState.FLUSHING and not pending.prompts:
            pending.state = BufferState.IDLE
            if self._buffers.get(user_id) is pending:
                del self._buffers[user_id]

    def _degraded_reply(self, user_id: str) -> ChatReply:
        images = self._coordinator.pick_random_images(user_id, PRODUCT_CATEGORY, self._suggestion_count)
        return ChatReply(reply_text=DEGRADED_REPLY, imagenes=images, degraded=True)

    async def aclose(self) -> None:
        """Cancel timers and flushes; release every waiting caller."""
        for pending in self._buffers.values():
            if pending.timer is not None:
                pending.timer.cancel()
            if pending.future is not None and not pending.future.done():
                pending.future.set_result(superseded_reply())
        self._buffers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
