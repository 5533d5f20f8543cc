"""Per-prompt orchestration.

Coordinates one ACP prompt from request to stop reason:

    IDLE -> RUNNING -> COMPLETED | CANCELLED | FAILED

At most one prompt runs per session. A new prompt preempts the running one
(it is cancelled, not queued). The new prompt takes over the session's
cancellation handle immediately, then waits on the session's prompt lock until
the old prompt has unwound, so two processes never run on the same session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from .config import QwenCodeConfig, build_qwen_args
from .content_converter import AcpToQwenContentConverter
from .errors import NotGeneratingError, QwenCodeError
from .runner import QwenProcessRunner, terminate_process
from .session import PromptState, QwenSession, Turn

logger = logging.getLogger(__name__)

StopReason = Literal["end_turn", "cancelled"]
NotifyFn = Callable[[str, str], Awaitable[None]]


class PromptOrchestrator:
    """Runs prompts for sessions and streams output through ``notify``.

    Args:
        config: Adapter configuration
        runner: Process runner, built from ``config`` if omitted
        notify: Awaited as ``notify(session_id, text)`` for each chunk of
            visible output; failures are logged and ignored
    """

    def __init__(
        self,
        config: QwenCodeConfig,
        runner: QwenProcessRunner | None = None,
        notify: NotifyFn | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or QwenProcessRunner(config.executable_path)
        self._notify = notify
        self._converter = AcpToQwenContentConverter()

    async def handle_prompt(self, session: QwenSession, blocks: list[Any]) -> StopReason:
        """Run one prompt on a session and return its stop reason.

        Failures of the external process are reported to the client as an
        ``Error:`` message and still end with ``end_turn``.
        """
        if session.pending_prompt is not None:
            logger.info(f"Session {session.session_id}: new prompt preempts the running one")
            self.cancel(session)

        # Installed before waiting so cancel() reaches this prompt at once
        cancel_event = asyncio.Event()
        session.pending_prompt = cancel_event
        try:
            async with session.prompt_lock:
                if cancel_event.is_set():
                    # Cancelled or superseded while the previous prompt unwound
                    logger.info(f"Session {session.session_id}: prompt cancelled before start")
                    session.state = PromptState.CANCELLED
                    return "cancelled"

                session.state = PromptState.RUNNING
                return await self._run_prompt(session, blocks, cancel_event)
        finally:
            # A cancel() may already have cleared these
            if session.pending_prompt is cancel_event:
                session.pending_prompt = None
                session.process = None

    def cancel(self, session: QwenSession) -> None:
        """Cancel the prompt in flight on a session.

        Raises:
            NotGeneratingError: No prompt is running
        """
        if session.pending_prompt is None:
            raise NotGeneratingError(session.session_id)

        session.pending_prompt.set()
        session.pending_prompt = None

        if session.process is not None:
            terminate_process(session.process)
            session.process = None

        logger.info(f"Session {session.session_id}: cancelled")

    async def _run_prompt(
        self,
        session: QwenSession,
        blocks: list[Any],
        cancel_event: asyncio.Event,
    ) -> StopReason:
        session_id = session.session_id

        conversion = self._converter.convert(blocks)
        for warning in conversion.warnings:
            logger.warning(f"Session {session_id}: {warning}")

        prompt_text = conversion.text
        logger.info(f"Session {session_id}: Processing prompt {prompt_text[:100]!r}")
        session.history.append(Turn(role="user", text=prompt_text))

        permission_mode = conversion.permission_mode or self.config.permission_mode
        args = build_qwen_args(prompt_text, permission_mode)

        def register_process(process: asyncio.subprocess.Process) -> None:
            if session.pending_prompt is cancel_event:
                session.process = process

        async def forward_chunk(text: str) -> None:
            await self._send_text(session_id, text)

        try:
            response = await self.runner.run(
                args,
                cwd=session.cwd,
                cancel_event=cancel_event,
                on_chunk=forward_chunk,
                on_spawn=register_process,
            )
        except Exception as e:
            if cancel_event.is_set():
                session.state = PromptState.CANCELLED
                return "cancelled"

            if isinstance(e, QwenCodeError):
                logger.warning(f"Session {session_id}: {e}")
            else:
                logger.exception(f"Session {session_id}: Error processing prompt: {e}")

            session.state = PromptState.FAILED
            await self._send_text(session_id, f"Error: {e}\n")
            return "end_turn"

        if response is None or cancel_event.is_set():
            session.state = PromptState.CANCELLED
            return "cancelled"

        if response:
            session.history.append(Turn(role="assistant", text=response))
        session.state = PromptState.COMPLETED
        return "end_turn"

    async def _send_text(self, session_id: str, text: str) -> None:
        if self._notify is None:
            return
        try:
            await self._notify(session_id, text)
        except Exception as e:
            logger.warning(f"Failed to send session update for {session_id}: {e}")
