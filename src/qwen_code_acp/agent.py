"""ACP Agent implementation backed by the Qwen Code CLI.

Follows the official SDK pattern:
1. Agent stores the client connection via on_connect()
2. Prompts stream output with conn.session_update()
3. run_agent() handles the stdio transport
"""

from __future__ import annotations

import logging
from typing import Any

from acp import (  # type: ignore[import-untyped]
    PROTOCOL_VERSION,
    Agent,
    Client,
    RequestError,
    text_block,
    update_agent_message,
)
from acp.schema import (  # type: ignore[import-untyped]
    AgentCapabilities,
    AudioContentBlock,
    AuthenticateResponse,
    AuthMethod,
    ClientCapabilities,
    EmbeddedResourceContentBlock,
    HttpMcpServer,
    ImageContentBlock,
    Implementation,
    InitializeResponse,
    McpServerStdio,
    NewSessionResponse,
    PromptCapabilities,
    PromptResponse,
    ResourceContentBlock,
    SseMcpServer,
    TextContentBlock,
)

from . import __version__
from .config import QwenCodeConfig
from .errors import NotGeneratingError, QwenCodeError, SessionNotFoundError
from .orchestrator import PromptOrchestrator
from .runner import QwenProcessRunner, probe_qwen_code
from .session import SessionRegistry

logger = logging.getLogger(__name__)

AGENT_NAME = "qwen-code-acp"
AUTH_METHOD_ID = "qwen-code-auth"
AUTH_REQUIRED_MESSAGE = (
    "Qwen Code CLI is not available or not authenticated. Please run 'qwen auth' first."
)


class QwenCodeAgent(Agent):
    """ACP Agent that runs each prompt through the Qwen Code CLI.

    Usage:
        from acp import run_agent
        await run_agent(QwenCodeAgent())
    """

    def __init__(
        self,
        config: QwenCodeConfig | None = None,
        runner: QwenProcessRunner | None = None,
    ) -> None:
        self.config = config or QwenCodeConfig.from_env()
        self._conn: Client | None = None
        self._client_capabilities: ClientCapabilities | None = None
        self._sessions = SessionRegistry()
        self._orchestrator = PromptOrchestrator(
            self.config,
            runner=runner,
            notify=self._send_agent_message,
        )
        logger.info(f"QwenCodeAgent initialized: {self.config.model_dump(mode='json')}")

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def on_connect(self, conn: Client) -> None:
        """Store the connection used to send session updates."""
        self._conn = conn
        logger.info("ACP client connected")

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: ClientCapabilities | None = None,
        client_info: Implementation | None = None,
        **kwargs: Any,
    ) -> InitializeResponse:
        """Advertise the single auth method and prompt capabilities."""
        self._client_capabilities = client_capabilities

        client_name = "unknown"
        if client_info:
            if isinstance(client_info, dict):
                client_name = client_info.get("name", "unknown")
            elif hasattr(client_info, "name"):
                client_name = client_info.name

        logger.info(f"ACP initialized: protocol_version={protocol_version}, client={client_name}")

        return InitializeResponse(
            protocolVersion=PROTOCOL_VERSION,
            agentInfo=Implementation(name=AGENT_NAME, version=__version__),
            authMethods=[
                AuthMethod(
                    id=AUTH_METHOD_ID,
                    name="Qwen Code Authentication",
                    description="Verify Qwen Code CLI is available and authenticated",
                ),
            ],
            agentCapabilities=AgentCapabilities(
                loadSession=False,
                promptCapabilities=PromptCapabilities(
                    audio=False,
                    embeddedContext=True,
                    image=False,
                ),
            ),
        )

    async def authenticate(self, method_id: str, **kwargs: Any) -> AuthenticateResponse:
        """Succeed only if ``qwen --version`` runs cleanly."""
        logger.info(f"Auth requested: {method_id}")

        if method_id != AUTH_METHOD_ID:
            raise RequestError.invalid_params(f"Unknown authentication method: {method_id}")

        try:
            version = await probe_qwen_code(self.config.executable_path)
        except QwenCodeError as e:
            logger.warning(f"Qwen Code authentication failed: {e}")
            raise RequestError.auth_required(AUTH_REQUIRED_MESSAGE) from e

        logger.info(f"Qwen Code authentication successful ({version})")
        return AuthenticateResponse()

    async def new_session(
        self,
        cwd: str,
        mcp_servers: list[HttpMcpServer | SseMcpServer | McpServerStdio] | None = None,
        **kwargs: Any,
    ) -> NewSessionResponse:
        """Create a session bound to ``cwd``.

        MCP servers are not forwarded; the CLI uses its own configuration.
        """
        if mcp_servers:
            logger.debug(f"Ignoring {len(mcp_servers)} MCP server(s) for new session")

        session = self._sessions.create(cwd)
        return NewSessionResponse(sessionId=session.session_id)

    async def prompt(
        self,
        prompt: list[
            TextContentBlock
            | ImageContentBlock
            | AudioContentBlock
            | ResourceContentBlock
            | EmbeddedResourceContentBlock
        ],
        session_id: str,
        **kwargs: Any,
    ) -> PromptResponse:
        """Run a prompt through Qwen Code, streaming output as it arrives."""
        try:
            session = self._sessions.get(session_id)
        except SessionNotFoundError as e:
            logger.error(str(e))
            raise RequestError.invalid_params(str(e)) from e

        stop_reason = await self._orchestrator.handle_prompt(session, prompt)
        return PromptResponse(stopReason=stop_reason)

    async def cancel(self, session_id: str, **kwargs: Any) -> None:
        """Cancel the prompt in flight on a session."""
        logger.info(f"Cancel requested for session {session_id}")
        try:
            session = self._sessions.get(session_id)
            self._orchestrator.cancel(session)
        except (SessionNotFoundError, NotGeneratingError) as e:
            raise RequestError.invalid_params(str(e)) from e

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """No extension methods are supported."""
        raise RequestError.method_not_found(method)

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        """Extension notifications are ignored."""
        logger.debug(f"Ignoring extension notification: {method}")

    async def _send_agent_message(self, session_id: str, text: str) -> None:
        if self._conn is None:
            logger.debug(f"No client connected, dropping update for {session_id}")
            return
        await self._conn.session_update(
            session_id=session_id,
            update=update_agent_message(text_block(text)),
        )


async def run_stdio_agent(config: QwenCodeConfig | None = None) -> None:
    """Serve the Qwen Code agent over stdio using the official SDK.

    Usage:
        python -m qwen_code_acp
    """
    from acp import run_agent  # type: ignore[import-untyped]

    agent = QwenCodeAgent(config)
    logger.info("Starting Qwen Code ACP agent (stdio mode)")
    await run_agent(agent)
