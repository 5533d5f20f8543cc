"""Stdio isolation for the ACP agent.

With stdio transport, stdout carries JSON-RPC messages only. Anything else
written there (stray prints, misconfigured log handlers) corrupts the protocol
and makes the client fail to parse the stream. This module keeps stdout
clean:

- ``JsonRpcStdoutFilter`` passes JSON object lines through to the real stdout
  and diverts everything else to stderr.
- ``configure_stdio_logging`` routes all logging to stderr.

Both must be installed before the agent starts.
"""

from __future__ import annotations

import io
import json
import logging
import sys
import threading
from typing import TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILTERED_PREFIX = "[stdout-filtered] "


class JsonRpcStdoutFilter(io.TextIOBase):
    """A stdout replacement that only lets JSON-RPC messages through.

    Output is split into lines. Lines holding a JSON object are written to
    the real stdout; blank lines are dropped; any other line goes to stderr
    with ``FILTERED_PREFIX``.
    """

    def __init__(self, real_stdout: TextIO, stderr: TextIO) -> None:
        super().__init__()
        self._real_stdout = real_stdout
        self._stderr = stderr
        self._lock = threading.Lock()
        self._buffer = ""

    def writable(self) -> bool:
        return True

    def write(self, data: str) -> int:
        if not data:
            return 0

        with self._lock:
            self._buffer += data
            while "\n" in self._buffer:
                line, self._buffer = self._buffer.split("\n", 1)
                self._route_line(line)

        return len(data)

    def _route_line(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return

        if stripped.startswith("{"):
            try:
                json.loads(stripped)
            except json.JSONDecodeError:
                pass
            else:
                self._real_stdout.write(stripped + "\n")
                self._real_stdout.flush()
                return

        self._stderr.write(f"{FILTERED_PREFIX}{line}\n")
        self._stderr.flush()

    def flush(self) -> None:
        with self._lock:
            # An unterminated line cannot be a complete message
            if self._buffer:
                self._stderr.write(f"{FILTERED_PREFIX}{self._buffer}\n")
                self._buffer = ""
            self._real_stdout.flush()
            self._stderr.flush()

    def fileno(self) -> int:
        return self._real_stdout.fileno()

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._real_stdout, "encoding", "utf-8")


def install_stdout_filter() -> None:
    """Replace ``sys.stdout`` with a ``JsonRpcStdoutFilter``."""
    if isinstance(sys.stdout, JsonRpcStdoutFilter):
        return
    if hasattr(sys.stdout, "buffer"):
        sys.stdout = JsonRpcStdoutFilter(sys.stdout, sys.stderr)  # type: ignore[assignment]


def configure_stdio_logging(debug: bool = False) -> None:
    """Send all logging to stderr.

    Removes every handler installed so far, so that no logger can write to
    stdout, and puts a single stderr handler on the root logger. The level is
    DEBUG in debug mode and WARNING otherwise.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for logger_name in list(logging.Logger.manager.loggerDict):
        logger_instance = logging.getLogger(logger_name)
        for handler in logger_instance.handlers[:]:
            logger_instance.removeHandler(handler)
        logger_instance.propagate = True

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.WARNING)
