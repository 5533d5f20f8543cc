"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import stat
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

# Stand-in for the qwen CLI. Behaviour is selected with FAKE_QWEN_MODE; when
# FAKE_QWEN_ARGS_FILE is set, each invocation appends its argv, cwd and stdin.
FAKE_QWEN_SOURCE = r'''
import json
import os
import subprocess
import sys
import time

mode = os.environ.get("FAKE_QWEN_MODE", "echo")
args = sys.argv[1:]

args_file = os.environ.get("FAKE_QWEN_ARGS_FILE")
if args_file:
    with open(args_file, "a") as f:
        record = {"args": args, "cwd": os.getcwd(), "stdin": sys.stdin.read()}
        f.write(json.dumps(record) + "\n")


def out(text):
    sys.stdout.buffer.write(text.encode("utf-8"))
    sys.stdout.flush()


def err(text):
    sys.stderr.buffer.write(text.encode("utf-8"))
    sys.stderr.flush()


if args == ["--version"]:
    if mode == "broken":
        err("not logged in\n")
        sys.exit(1)
    if mode == "slow-version":
        time.sleep(30)
    out("0.0.14\n")
    sys.exit(0)

prompt = args[args.index("--prompt") + 1] if "--prompt" in args else ""

if mode == "echo":
    out("hello\n[DEBUG] x\nworld\n")
elif mode == "prompt":
    out("You said: " + prompt + "\n")
elif mode == "empty":
    out("[DEBUG] nothing to say\nFlushing log events\n")
elif mode == "stderr":
    err("careful now\n[DEBUG] hidden\n")
    time.sleep(0.1)
    out("done\n")
elif mode == "unicode":
    out("héllo wörld ✓\n")
elif mode == "split":
    out("hello\n[DEB")
    time.sleep(0.2)
    out("UG] x\nworld\n")
elif mode in ("orphan", "orphan-fail"):
    # Leave a grandchild holding stdout and stderr open after exiting
    subprocess.Popen([sys.executable, "-c", "import time; time.sleep(10)"])
    if mode == "orphan":
        out("answer\n")
    else:
        err("boom\n")
        sys.exit(2)
elif mode == "fail":
    err("boom\n")
    sys.exit(2)
elif mode == "fail-silent":
    sys.exit(3)
elif mode == "hang":
    out("partial answer\n")
    time.sleep(30)
elif mode == "hang-silent":
    time.sleep(30)
'''


@pytest.fixture
def fake_qwen(tmp_path: Path) -> Path:
    """Write an executable fake ``qwen`` script and return its path."""
    script = tmp_path / "bin" / "qwen"
    script.parent.mkdir()
    script.write_text(f"#!{sys.executable}\n{FAKE_QWEN_SOURCE}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


RunHandler = Callable[..., Awaitable[str | None]]


class ScriptedRunner:
    """Stands in for QwenProcessRunner; each run() is delegated to a handler.

    The handler receives the same keyword arguments as ``run()``.
    """

    def __init__(self, handler: RunHandler) -> None:
        self.handler = handler
        self.calls: list[dict[str, Any]] = []

    async def run(
        self,
        args: list[str],
        cwd: str,
        cancel_event: asyncio.Event,
        on_chunk: Callable[[str], Awaitable[None]],
        on_spawn: Callable[[Any], None] | None = None,
    ) -> str | None:
        self.calls.append({"args": args, "cwd": cwd})
        return await self.handler(
            args=args,
            cwd=cwd,
            cancel_event=cancel_event,
            on_chunk=on_chunk,
            on_spawn=on_spawn,
        )


@pytest.fixture
def scripted_runner() -> type[ScriptedRunner]:
    return ScriptedRunner


def make_process(pid: int = 4242) -> MagicMock:
    """A running process double whose terminate() is observable."""
    process = MagicMock()
    process.pid = pid
    process.returncode = None
    return process


@pytest.fixture
def process_factory() -> Callable[..., MagicMock]:
    return make_process
