"""Exception types raised by the Qwen Code ACP adapter.

Session-level errors are converted to ``acp.RequestError`` by the agent.
``QwenCodeError`` subclasses describe problems with the external ``qwen``
process; during a prompt they are reported to the client as message content
rather than as protocol errors.
"""

from __future__ import annotations


class QwenAcpError(Exception):
    """Base class for all adapter errors."""


class SessionNotFoundError(QwenAcpError):
    """No session is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class NotGeneratingError(QwenAcpError):
    """Cancel was requested while no prompt was in flight."""

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__("Not currently generating")
        self.session_id = session_id


class QwenCodeError(QwenAcpError):
    """The Qwen Code CLI could not produce a result."""


class QwenSpawnError(QwenCodeError):
    """The executable could not be started (missing, not executable, bad cwd)."""


class QwenProcessError(QwenCodeError):
    """The process exited with a non-zero status."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class QwenTimeoutError(QwenCodeError):
    """The process produced no usable output before the timeout."""


class QwenProbeError(QwenCodeError):
    """The ``--version`` availability probe failed or timed out."""
