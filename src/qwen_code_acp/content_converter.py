"""ACP content block conversion to a Qwen Code prompt.

The CLI takes a single ``--prompt`` string, so ACP content blocks are
flattened to plain text. Embedded text resources become labelled code blocks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from acp.schema import (  # type: ignore[import-untyped]
    AudioContentBlock,
    EmbeddedResourceContentBlock,
    ImageContentBlock,
    ResourceContentBlock,
    TextContentBlock,
)

from .config import PermissionMode
from .filters import clean_prompt_text, extract_permission_mode

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Result of flattening ACP content blocks.

    Attributes:
        text: Prompt text to pass to ``--prompt``
        permission_mode: Mode requested by an ``[ACP:PERMISSION:...]`` marker
        warnings: Messages about content that was dropped
    """

    text: str = ""
    permission_mode: PermissionMode | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class AcpToQwenContentConverter:
    """Converts ACP content blocks to a flat prompt string.

    Supported content types:
    - TextContentBlock -> text, permission markers stripped
    - EmbeddedResourceContentBlock with text -> "File: <uri>" + fenced code block
    - EmbeddedResourceContentBlock with blob -> NOT SUPPORTED (warning generated)
    - ImageContentBlock, AudioContentBlock -> NOT SUPPORTED (warning generated)
    - ResourceContentBlock -> NOT SUPPORTED (warning generated)

    Usage:
        converter = AcpToQwenContentConverter()
        result = converter.convert(acp_blocks)
        run_qwen(result.text)
    """

    def convert(self, blocks: list[Any]) -> ConversionResult:
        """Flatten ACP content blocks.

        Args:
            blocks: List of ACP content blocks

        Returns:
            ConversionResult with the prompt text, requested mode and warnings
        """
        result = ConversionResult()
        pieces: list[str] = []

        for block in blocks:
            self._process_block(block, pieces, result)

        result.text = "".join(pieces).strip()
        return result

    def _process_block(self, block: Any, pieces: list[str], result: ConversionResult) -> None:
        if isinstance(block, TextContentBlock):
            self._add_text(block.text, pieces, result)

        elif isinstance(block, dict) and block.get("type") == "text":
            self._add_text(block.get("text", ""), pieces, result)

        elif isinstance(block, EmbeddedResourceContentBlock):
            resource = getattr(block, "resource", None)
            text = getattr(resource, "text", None)
            if text is not None:
                uri = getattr(resource, "uri", "") or ""
                pieces.append(f"\nFile: {uri}\n```\n{text}\n```\n")
            else:
                result.warnings.append("Binary embedded resources are not supported.")

        elif isinstance(block, ImageContentBlock):
            result.warnings.append("Image content is not supported.")

        elif isinstance(block, AudioContentBlock):
            result.warnings.append("Audio content is not supported.")

        elif isinstance(block, ResourceContentBlock):
            result.warnings.append(
                "External resource links cannot be fetched. Please embed content directly."
            )

        elif getattr(block, "type", None) == "text":
            self._add_text(getattr(block, "text", ""), pieces, result)

        else:
            logger.debug(f"Skipping unsupported block type: {getattr(block, 'type', block)!r}")

    @staticmethod
    def _add_text(text: str, pieces: list[str], result: ConversionResult) -> None:
        if result.permission_mode is None:
            result.permission_mode = extract_permission_mode(text)
        pieces.append(clean_prompt_text(text) + "\n")
