from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .image_index import Size
from .models import ChatMessage


@dataclass
class Session:
    """Per-user conversation state kept for the lifetime of the process."""
    user_id: str
    transcript: List[ChatMessage] = field(default_factory=list)
    last_size: Optional[Size] = None
    shown_images: Set[str] = field(default_factory=set)
    updated_at: float = field(default_factory=time.time)


class SessionStore:
    """In-memory session storage for transcripts, remembered sizes, and shown images."""

    def __init__(self, max_sessions: Optional[int] = None) -> None:
        """Purpose: Initialize an empty in-memory session store.
        Inputs/Outputs: Input is an optional max_sessions cap; no return value.
        Side Effects / State: Creates the session cache.
        Dependencies: Relies on Session and ChatMessage.
        Failure Modes: None.
        If Removed: Chat history and remembered sizes are lost between requests.
        Testing Notes: Verify max_sessions=None never evicts.
        """
        # Keep configuration; sessions are created lazily per user.
        self._max_sessions = max_sessions
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> Optional[Session]:
        """Return a session without creating it."""
        return self._sessions.get(user_id)

    def get_or_create(self, user_id: str) -> Session:
        """Purpose: Fetch a user's session, creating it on first contact.
        Inputs/Outputs: Input is user_id; output is the live Session.
        Side Effects / State: May add a session and prune the oldest ones.
        Dependencies: Uses _prune_sessions.
        Failure Modes: None; deterministic.
        If Removed: Every caller would need its own creation logic.
        Testing Notes: Second call returns the same object.
        """
        # Create lazily and enforce the optional cap.
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
            self._prune_sessions(keep=user_id)
        return session

    def add_message(self, user_id: str, role: str, content: str) -> ChatMessage:
        """Purpose: Append a message to a user's transcript.
        Inputs/Outputs: Inputs are user_id, role, and content; returns the stored message.
        Side Effects / State: Mutates the transcript and touches updated_at.
        Dependencies: Uses get_or_create and ChatMessage validation.
        Failure Modes: Invalid roles raise pydantic.ValidationError.
        If Removed: The model never sees earlier turns of the conversation.
        Testing Notes: Order of appended messages equals chronological order.
        """
        # Missing sessions are created implicitly.
        session = self.get_or_create(user_id)
        message = ChatMessage(role=role, content=content)
        session.transcript.append(message)
        session.updated_at = time.time()
        return message

    def get_messages(self, user_id: str) -> List[ChatMessage]:
        """Return a copy of the transcript; unknown users get an empty list."""
        session = self._sessions.get(user_id)
        return list(session.transcript) if session else []

    def set_last_size(self, user_id: str, size: Size) -> None:
        session = self.get_or_create(user_id)
        session.last_size = size
        session.updated_at = time.time()

    def get_last_size(self, user_id: str) -> Optional[Size]:
        session = self._sessions.get(user_id)
        return session.last_size if session else None

    def shown_images(self, user_id: str) -> Set[str]:
        """Return the live shown-image set for a user (mutations are kept)."""
        return self.get_or_create(user_id).shown_images

    def evict(self, user_id: str) -> bool:
        """Drop a session; returns True if one existed."""
        return self._sessions.pop(user_id, None) is not None

    def _prune_sessions(self, keep: Optional[str] = None) -> bool:
        """Purpose: Enforce max_sessions by dropping least recently updated sessions.
        Inputs/Outputs: Optional user_id to keep; returns True if any sessions were removed.
        Side Effects / State: Mutates the session cache.
        Dependencies: Uses _max_sessions and updated_at ordering.
        Failure Modes: None; no-op when max_sessions is unset or not exceeded.
        If Removed: Session map grows unbounded even when a cap is configured.
        Testing Notes: Set a low max_sessions and verify pruning order.
        """
        # Remove least-recent sessions when above the configured cap.
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._sessions) <= self._max_sessions:
            return False

        ordered = sorted(
            self._sessions.values(),
            key=lambda s: (s.user_id == keep, s.updated_at),
            reverse=True,
        )
        keep_ids = {session.user_id for session in ordered[: self._max_sessions]}
        removed = [user_id for user_id in list(self._sessions) if user_id not in keep_ids]
        for user_id in removed:
            self._sessions.pop(user_id, None)
        return bool(removed)
