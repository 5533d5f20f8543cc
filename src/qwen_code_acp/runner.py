"""Qwen Code process execution.

One ``QwenProcessRunner.run()`` call is one invocation of the CLI in
single-shot ``--prompt`` mode. Output is streamed through a callback while
the process runs; the call then resolves to the final text, ``None`` when
cancelled, or raises a ``QwenCodeError``.

Outcomes of a run:
- exit 0: cleaned stdout, or ``EMPTY_RESULT_TEXT`` when nothing is left
- cancel event set: ``None`` (the process gets a single SIGTERM)
- non-zero exit: ``QwenProcessError`` with cleaned stderr
- timeout: partial cleaned stdout if any, else ``QwenTimeoutError``
- spawn failure: ``QwenSpawnError``

Exit is detected from the process itself, not from its pipes; output still in
flight then gets ``EXIT_DRAIN_TIMEOUT`` seconds to arrive. Output is streamed
whole lines at a time, with any unterminated tail flushed at EOF.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Awaitable, Callable
from functools import partial

from .errors import QwenProbeError, QwenProcessError, QwenSpawnError, QwenTimeoutError
from .filters import clean_output, is_noise_line

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
PROBE_TIMEOUT = 5.0
READ_CHUNK_SIZE = 4096
EXIT_POLL_INTERVAL = 0.05
EXIT_DRAIN_TIMEOUT = 1.0

EMPTY_RESULT_TEXT = "Request completed successfully."
STDERR_PREFIX = "[INFO] "

ChunkCallback = Callable[[str], Awaitable[None]]
SpawnCallback = Callable[[asyncio.subprocess.Process], None]


def terminate_process(process: asyncio.subprocess.Process) -> bool:
    """Send SIGTERM to a process that is still running.

    Returns:
        True if a signal was sent
    """
    if process.returncode is not None:
        return False
    try:
        process.terminate()
    except ProcessLookupError:
        return False
    return True


class QwenProcessRunner:
    """Runs the Qwen Code CLI once per prompt and streams its output.

    Usage:
        runner = QwenProcessRunner("qwen")
        text = await runner.run(
            ["--prompt", "Fix the bug"],
            cwd="/path/to/project",
            cancel_event=asyncio.Event(),
            on_chunk=send_to_client,
        )
    """

    def __init__(self, executable_path: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.executable_path = executable_path
        self.timeout = timeout

    async def run(
        self,
        args: list[str],
        cwd: str,
        cancel_event: asyncio.Event,
        on_chunk: ChunkCallback,
        on_spawn: SpawnCallback | None = None,
    ) -> str | None:
        """Execute one invocation.

        Args:
            args: Command line arguments, without the executable
            cwd: Working directory for the process
            cancel_event: Set by the caller to cancel the invocation
            on_chunk: Awaited with each filtered piece of output
            on_spawn: Called with the process right after it starts

        Returns:
            Final output text, or None if cancelled

        Raises:
            QwenSpawnError: The executable could not be started
            QwenProcessError: The process exited with a non-zero status
            QwenTimeoutError: The timeout expired with no output
        """
        if cancel_event.is_set():
            return None

        logger.debug(f"Starting Qwen Code: {[self.executable_path, *args]!r} (cwd={cwd})")

        try:
            process = await asyncio.create_subprocess_exec(
                self.executable_path,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as e:
            logger.debug(f"Qwen Code failed to start: {e}")
            raise QwenSpawnError(f"Failed to start Qwen Code: {e}") from e

        # --prompt mode reads nothing from stdin
        if process.stdin is not None:
            process.stdin.close()

        if on_spawn is not None:
            on_spawn(process)

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        readers = [
            asyncio.create_task(
                self._pump(process.stdout, stdout_parts, partial(self._emit_stdout, on_chunk))
            ),
            asyncio.create_task(
                self._pump(process.stderr, stderr_parts, partial(self._emit_stderr, on_chunk))
            ),
        ]
        exited = asyncio.create_task(self._wait_for_exit(process))
        cancelled = asyncio.create_task(cancel_event.wait())

        try:
            done, _ = await asyncio.wait(
                {exited, cancelled},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if cancel_event.is_set():
                logger.debug(f"Qwen Code invocation cancelled (pid={process.pid})")
                return None

            if exited in done:
                returncode = exited.result()
                await self._drain(readers)
                logger.debug(
                    f"Qwen Code exited with code {returncode} "
                    f"(stdout={sum(map(len, stdout_parts))} chars, "
                    f"stderr={sum(map(len, stderr_parts))} chars)"
                )
                return self._exit_result(returncode, "".join(stdout_parts), "".join(stderr_parts))

            output = clean_output("".join(stdout_parts)).strip()
            logger.warning(
                f"Qwen Code timed out after {self.timeout}s, terminating. "
                f"Output so far: {output[:200]!r}"
            )
            terminate_process(process)
            if output:
                return output
            raise QwenTimeoutError("Timeout waiting for response from Qwen Code")

        finally:
            cancelled.cancel()
            exited.cancel()
            for reader in readers:
                reader.cancel()
            terminate_process(process)

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        parts: list[str],
        emit: Callable[[str], Awaitable[None]],
    ) -> None:
        """Read a pipe until EOF, accumulating and emitting decoded text."""
        if stream is None:
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        tail = ""
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                parts.append(text)
                tail += text
            if not data:
                if tail:
                    await emit(tail)
                return

            # Only whole lines are emitted; the unterminated tail waits for more data
            lines, newline, tail = tail.rpartition("\n")
            if newline:
                await emit(lines + newline)

    @staticmethod
    async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
        # Process.wait() also waits for pipe EOF, which a grandchild that
        # inherited stdout or stderr can hold off indefinitely
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        return process.returncode

    @staticmethod
    async def _drain(readers: list[asyncio.Task[None]]) -> None:
        """Give the readers a bounded grace period to reach EOF after exit."""
        done, pending = await asyncio.wait(readers, timeout=EXIT_DRAIN_TIMEOUT)
        if pending:
            logger.debug("Qwen Code exited but its output pipes are still open")
        for reader in done:
            reader.result()

    @staticmethod
    async def _emit_stdout(on_chunk: ChunkCallback, text: str) -> None:
        cleaned = clean_output(text)
        if cleaned.strip():
            await on_chunk(cleaned)

    @staticmethod
    async def _emit_stderr(on_chunk: ChunkCallback, text: str) -> None:
        # stderr is surfaced line by line and marked as informational
        for line in text.split("\n"):
            if line.strip() and not is_noise_line(line):
                await on_chunk(f"{STDERR_PREFIX}{line}\n")

    @staticmethod
    def _exit_result(returncode: int, stdout: str, stderr: str) -> str:
        if returncode == 0:
            return clean_output(stdout).strip() or EMPTY_RESULT_TEXT

        error_text = clean_output(stderr).strip() or f"Process exited with code {returncode}"
        raise QwenProcessError(
            f"Qwen Code failed: {error_text}",
            exit_code=returncode,
            stderr=stderr,
        )


async def probe_qwen_code(executable_path: str, timeout: float = PROBE_TIMEOUT) -> str:
    """Check that the Qwen Code CLI is installed and runnable.

    Runs ``<executable> --version``.

    Returns:
        The reported version text

    Raises:
        QwenSpawnError: The executable could not be started
        QwenProbeError: Non-zero exit or no answer within ``timeout``
    """
    try:
        process = await asyncio.create_subprocess_exec(
            executable_path,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise QwenSpawnError(f"Failed to execute Qwen Code: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        terminate_process(process)
        raise QwenProbeError("Qwen Code validation timeout") from e

    if process.returncode != 0:
        error_text = stderr.decode("utf-8", errors="replace") or "Unknown error"
        raise QwenProbeError(f"Qwen Code validation failed: {error_text}")

    version = stdout.decode("utf-8", errors="replace").strip()
    logger.debug(f"Qwen Code validation successful: {version}")
    return version
