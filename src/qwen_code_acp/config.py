"""Runtime configuration for the Qwen Code ACP adapter.

Configuration is read once at startup from environment variables:

    ACP_PATH_TO_QWEN_CODE_EXECUTABLE  path to the ``qwen`` binary (default: qwen)
    ACP_DEBUG                         "true" enables debug logging
    ACP_PERMISSION_MODE               default | acceptEdits | bypassPermissions
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENV_EXECUTABLE_PATH = "ACP_PATH_TO_QWEN_CODE_EXECUTABLE"
ENV_DEBUG = "ACP_DEBUG"
ENV_PERMISSION_MODE = "ACP_PERMISSION_MODE"

DEFAULT_EXECUTABLE = "qwen"


class PermissionMode(str, Enum):
    """How much autonomy the CLI gets for file and shell operations."""

    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS_PERMISSIONS = "bypassPermissions"


class QwenCodeConfig(BaseModel):
    """Adapter configuration."""

    executable_path: str = Field(default=DEFAULT_EXECUTABLE, min_length=1)
    debug: bool = False
    permission_mode: PermissionMode = PermissionMode.DEFAULT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> QwenCodeConfig:
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``

        Returns:
            Config with unset or empty variables left at their defaults
        """
        env = os.environ if environ is None else environ

        raw_mode = env.get(ENV_PERMISSION_MODE) or PermissionMode.DEFAULT.value
        try:
            permission_mode = PermissionMode(raw_mode)
        except ValueError:
            logger.warning(
                f"Unknown {ENV_PERMISSION_MODE}={raw_mode!r}, "
                f"falling back to '{PermissionMode.DEFAULT.value}'"
            )
            permission_mode = PermissionMode.DEFAULT

        return cls(
            executable_path=env.get(ENV_EXECUTABLE_PATH) or DEFAULT_EXECUTABLE,
            debug=env.get(ENV_DEBUG, "").lower() == "true",
            permission_mode=permission_mode,
        )


def build_qwen_args(prompt: str, permission_mode: PermissionMode) -> list[str]:
    """Build the ``qwen`` command line for a single non-interactive prompt."""
    args = ["--prompt", prompt]

    if permission_mode == PermissionMode.BYPASS_PERMISSIONS:
        args.append("--yolo")
    elif permission_mode == PermissionMode.ACCEPT_EDITS:
        args.extend(["--approval-mode", "auto_edit"])

    return args
