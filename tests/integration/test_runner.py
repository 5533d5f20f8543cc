"""Integration tests for QwenProcessRunner against a fake qwen executable.

Each test spawns a real subprocess; FAKE_QWEN_MODE selects its behaviour
(see conftest.FAKE_QWEN_SOURCE).
"""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path

import pytest

from qwen_code_acp.errors import (
    QwenProbeError,
    QwenProcessError,
    QwenSpawnError,
    QwenTimeoutError,
)
from qwen_code_acp.runner import EMPTY_RESULT_TEXT, QwenProcessRunner, probe_qwen_code

pytestmark = pytest.mark.integration


class ChunkRecorder:
    """Collects on_chunk calls and can cancel after the first one."""

    def __init__(self, cancel_event: asyncio.Event | None = None) -> None:
        self.chunks: list[str] = []
        self._cancel_event = cancel_event

    async def __call__(self, text: str) -> None:
        self.chunks.append(text)
        if self._cancel_event is not None:
            self._cancel_event.set()

    @property
    def text(self) -> str:
        return "".join(self.chunks)


@pytest.fixture
def use_mode(monkeypatch: pytest.MonkeyPatch):
    def setter(mode: str) -> None:
        monkeypatch.setenv("FAKE_QWEN_MODE", mode)

    return setter


class TestSuccessfulRun:
    """Tests for processes that exit with status 0."""

    @pytest.mark.asyncio
    async def test_debug_lines_filtered_from_stream_and_result(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("echo")
        runner = QwenProcessRunner(str(fake_qwen))
        recorder = ChunkRecorder()

        result = await runner.run(
            ["--prompt", "hi"],
            cwd=str(tmp_path),
            cancel_event=asyncio.Event(),
            on_chunk=recorder,
        )

        assert recorder.text == "hello\nworld\n"
        assert result == "hello\nworld"

    @pytest.mark.asyncio
    async def test_empty_output_uses_fallback_text(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("empty")
        runner = QwenProcessRunner(str(fake_qwen))
        recorder = ChunkRecorder()

        result = await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), recorder)

        assert result == EMPTY_RESULT_TEXT == "Request completed successfully."
        assert recorder.chunks == []

    @pytest.mark.asyncio
    async def test_stderr_lines_marked_as_info(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("stderr")
        runner = QwenProcessRunner(str(fake_qwen))
        recorder = ChunkRecorder()

        result = await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), recorder)

        assert result == "done"
        assert "[INFO] careful now\n" in recorder.chunks
        assert "done\n" in recorder.chunks
        assert not any("hidden" in chunk for chunk in recorder.chunks)

    @pytest.mark.asyncio
    async def test_prompt_cwd_and_closed_stdin(
        self, fake_qwen: Path, tmp_path: Path, use_mode, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        use_mode("prompt")
        args_file = tmp_path / "args.jsonl"
        monkeypatch.setenv("FAKE_QWEN_ARGS_FILE", str(args_file))
        workdir = tmp_path / "project"
        workdir.mkdir()
        runner = QwenProcessRunner(str(fake_qwen))

        result = await runner.run(
            ["--prompt", "Fix bug", "--yolo"], str(workdir), asyncio.Event(), ChunkRecorder()
        )

        record = json.loads(args_file.read_text().splitlines()[0])
        assert result == "You said: Fix bug"
        assert record["args"] == ["--prompt", "Fix bug", "--yolo"]
        assert Path(record["cwd"]).resolve() == workdir.resolve()
        assert record["stdin"] == ""

    @pytest.mark.asyncio
    async def test_noise_line_split_across_reads_is_filtered(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("split")
        runner = QwenProcessRunner(str(fake_qwen))
        recorder = ChunkRecorder()

        result = await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), recorder)

        assert recorder.text == "hello\nworld\n"
        assert not any("DEB" in chunk or "UG]" in chunk for chunk in recorder.chunks)
        assert result == "hello\nworld"

    @pytest.mark.asyncio
    async def test_utf8_output(
self, fake_qwen: Path, tmp_path: Path, use_mode) -> None:
        use_mode("unicode")
        runner = QwenProcessRunner(str(fake_qwen))

        result = await runner.run(
            ["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder()
        )

        assert result == "héllo wörld ✓"


class TestFailedRun:
    """Tests for spawn failures and non-zero exits."""

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_stderr(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("fail")
        runner = QwenProcessRunner(str(fake_qwen))

        with pytest.raises(QwenProcessError) as exc_info:
            await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder())

        assert str(exc_info.value) == "Qwen Code failed: boom"
        assert exc_info.value.exit_code == 2

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_stderr(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("fail-silent")
        runner = QwenProcessRunner(str(fake_qwen))

        with pytest.raises(QwenProcessError, match="Process exited with code 3"):
            await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder())

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path) -> None:
        runner = QwenProcessRunner(str(tmp_path / "does-not-exist"))

        with pytest.raises(QwenSpawnError, match="Failed to start Qwen Code"):
            await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder())


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_already_cancelled_never_spawns(self, fake_qwen: Path, tmp_path: Path) -> None:
        runner = QwenProcessRunner(str(fake_qwen))
        cancel_event = asyncio.Event()
        cancel_event.set()
        spawned: list[asyncio.subprocess.Process] = []

        result = await runner.run(
            ["--prompt", "hi"], str(tmp_path), cancel_event, ChunkRecorder(), spawned.append
        )

        assert result is None
        assert spawned == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_terminates_process(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("hang")
        runner = QwenProcessRunner(str(fake_qwen), timeout=20)
        cancel_event = asyncio.Event()
        recorder = ChunkRecorder(cancel_event)
        spawned: list[asyncio.subprocess.Process] = []

        result = await runner.run(
            ["--prompt", "hi"], str(tmp_path), cancel_event, recorder, spawned.append
        )

        assert result is None
        assert recorder.chunks == ["partial answer\n"]
        returncode = await asyncio.wait_for(spawned[0].wait(), timeout=5)
        assert returncode == -signal.SIGTERM

        # Nothing is delivered after the runner has resolved
        await asyncio.sleep(0.2)
        assert recorder.chunks == ["partial answer\n"]


class TestTimeout:
    """Tests for the wall-clock timeout."""

    @pytest.mark.asyncio
    async def test_timeout_with_partial_output_succeeds(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("hang")
        runner = QwenProcessRunner(str(fake_qwen), timeout=1.0)
        spawned: list[asyncio.subprocess.Process] = []

        result = await runner.run(
            ["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder(), spawned.append
        )

        assert result == "partial answer"
        assert await asyncio.wait_for(spawned[0].wait(), timeout=5) == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_timeout_without_output_fails(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("hang-silent")
        runner = QwenProcessRunner(str(fake_qwen), timeout=1.0)

        with pytest.raises(QwenTimeoutError, match="Timeout waiting for response from Qwen Code"):
            await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder())


class TestExitWithOpenPipes:
    """Tests for a CLI that exits while a child it started keeps the pipes open."""

    @pytest.mark.asyncio
    async def test_failure_reported_at_exit(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("orphan-fail")
        runner = QwenProcessRunner(str(fake_qwen), timeout=10)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(QwenProcessError) as exc_info:
            await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), ChunkRecorder())

        assert loop.time() - started < 5
        assert str(exc_info.value) == "Qwen Code failed: boom"
        assert exc_info.value.exit_code == 2

    @pytest.mark.asyncio
    async def test_success_reported_at_exit(
        self, fake_qwen: Path, tmp_path: Path, use_mode
    ) -> None:
        use_mode("orphan")
        runner = QwenProcessRunner(str(fake_qwen), timeout=10)
        loop = asyncio.get_running_loop()
        started = loop.time()
        recorder = ChunkRecorder()

        result = await runner.run(["--prompt", "hi"], str(tmp_path), asyncio.Event(), recorder)

        assert loop.time() - started < 5
        assert result == "answer"
        assert recorder.chunks == ["answer\n"]


class TestProbe:
    """Tests for probe_qwen_code."""

    @pytest.mark.asyncio
    async def test_probe_returns_version(self, fake_qwen: Path) -> None:
        assert await probe_qwen_code(str(fake_qwen)) == "0.0.14"

    @pytest.mark.asyncio
    async def test_probe_nonzero_exit(self, fake_qwen: Path, use_mode) -> None:
        use_mode("broken")

        with pytest.raises(QwenProbeError, match="not logged in"):
            await probe_qwen_code(str(fake_qwen))

    @pytest.mark.asyncio
    async def test_probe_timeout(self, fake_qwen: Path, use_mode) -> None:
        use_mode("slow-version")

        with pytest.raises(QwenProbeError, match="timeout"):
            await probe_qwen_code(str(fake_qwen), timeout=0.5)

    @pytest.mark.asyncio
    async def test_probe_missing_executable(self, tmp_path: Path) -> None:
        with pytest.raises(QwenSpawnError):
            await probe_qwen_code(str(tmp_path / "nope"))
