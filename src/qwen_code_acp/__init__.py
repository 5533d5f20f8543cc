"""Agent Client Protocol (ACP) adapter for the Qwen Code CLI.

Exposes the ``qwen`` command line tool as a session-oriented ACP agent so
editors like Zed can drive it. Each prompt runs one non-interactive ``qwen``
process whose filtered output is streamed back as ``agent_message_chunk``
session updates.

Protocol: JSON-RPC 2.0 over stdio, handled by the official
agent-client-protocol SDK.
See: https://agentclientprotocol.com
"""

__version__ = "0.1.0"

from .agent import AUTH_METHOD_ID, QwenCodeAgent, run_stdio_agent  # noqa: E402
from .config import PermissionMode, QwenCodeConfig, build_qwen_args  # noqa: E402
from .content_converter import AcpToQwenContentConverter, ConversionResult  # noqa: E402
from .errors import (  # noqa: E402
    NotGeneratingError,
    QwenAcpError,
    QwenCodeError,
    QwenProbeError,
    QwenProcessError,
    QwenSpawnError,
    QwenTimeoutError,
    SessionNotFoundError,
)
from .filters import (  # noqa: E402
    clean_output,
    clean_prompt_text,
    extract_permission_mode,
    is_noise_line,
)
from .orchestrator import PromptOrchestrator  # noqa: E402
from .runner import QwenProcessRunner, probe_qwen_code  # noqa: E402
from .session import PromptState, QwenSession, SessionRegistry, Turn  # noqa: E402

__all__ = [
    "__version__",
    # Agent
    "AUTH_METHOD_ID",
    "QwenCodeAgent",
    "run_stdio_agent",
    # Configuration
    "PermissionMode",
    "QwenCodeConfig",
    "build_qwen_args",
    # Content
    "AcpToQwenContentConverter",
    "ConversionResult",
    # Errors
    "NotGeneratingError",
    "QwenAcpError",
    "QwenCodeError",
    "QwenProbeError",
    "QwenProcessError",
    "QwenSpawnError",
    "QwenTimeoutError",
    "SessionNotFoundError",
    # Output filtering
    "clean_output",
    "clean_prompt_text",
    "extract_permission_mode",
    "is_noise_line",
    # Orchestration
    "PromptOrchestrator",
    "QwenProcessRunner",
    "probe_qwen_code",
    # Sessions
    "PromptState",
    "QwenSession",
    "SessionRegistry",
    "Turn",
]
