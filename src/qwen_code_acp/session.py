"""Session state and registry.

A session is one ACP conversation bound to a working directory. It holds the
handles of the prompt currently in flight (cancellation event and child
process) plus the turn history. Sessions live for the lifetime of the agent
process; there is no delete.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from .errors import SessionNotFoundError

logger = logging.getLogger(__name__)


class PromptState(str, Enum):
    """Prompt lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class Turn:
    """One entry of the conversation log."""

    role: Literal["user", "assistant"]
    text: str


@dataclass
class QwenSession:
    """State of a single ACP session.

    ``process`` is only ever set while ``pending_prompt`` is set. Both are
    written by the prompt orchestrator, which serialises prompts on
    ``prompt_lock``, and by cancellation.
    """

    session_id: str
    cwd: str
    pending_prompt: asyncio.Event | None = None
    process: asyncio.subprocess.Process | None = None
    history: list[Turn] = field(default_factory=list)
    state: PromptState = PromptState.IDLE
    prompt_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_generating(self) -> bool:
        return self.pending_prompt is not None


class SessionRegistry:
    """Maps session ids to session state."""

    def __init__(self) -> None:
        self._sessions: dict[str, QwenSession] = {}

    def create(self, cwd: str) -> QwenSession:
        """Register a new session with an empty history."""
        session = QwenSession(session_id=str(uuid.uuid4()), cwd=cwd)
        self._sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id} (cwd={cwd})")
        return session

    def get(self, session_id: str) -> QwenSession:
        """Look up a session.

        Raises:
            SessionNotFoundError: No session has this id
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
