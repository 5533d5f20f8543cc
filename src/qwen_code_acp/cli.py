"""Qwen Code ACP command line.

Runs the ACP agent over stdio by default, for use as an editor's agent
server command.

Usage:
    qwen-code-acp                                  # Serve ACP over stdio
    qwen-code-acp --permission-mode acceptEdits    # Auto-accept file edits
    qwen-code-acp --executable /opt/qwen/bin/qwen  # Custom qwen binary
    qwen-code-acp --debug                          # Debug logging to stderr

    qwen-code-acp check                            # Verify the qwen CLI works
    qwen-code-acp config                           # Show resolved configuration

Each option falls back to its environment variable
(ACP_PATH_TO_QWEN_CODE_EXECUTABLE, ACP_PERMISSION_MODE, ACP_DEBUG).
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from . import __version__
from .config import PermissionMode, QwenCodeConfig
from .errors import QwenCodeError

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def resolve_config(
    executable_path: str | None,
    permission_mode: str | None,
    debug: bool | None,
) -> QwenCodeConfig:
    """Apply command line overrides on top of the environment config."""
    config = QwenCodeConfig.from_env()
    overrides: dict[str, object] = {}
    if executable_path:
        overrides["executable_path"] = executable_path
    if permission_mode:
        overrides["permission_mode"] = PermissionMode(permission_mode)
    if debug is not None:
        overrides["debug"] = debug
    return config.model_copy(update=overrides)


@click.group(invoke_without_command=True)
@click.option(
    "--executable",
    "-e",
    "executable_path",
    default=None,
    help="Path to the qwen executable",
)
@click.option(
    "--permission-mode",
    "-p",
    type=click.Choice([mode.value for mode in PermissionMode]),
    default=None,
    help="Permission mode passed to qwen",
)
@click.option("--debug/--no-debug", default=None, help="Enable debug logging to stderr")
@click.version_option(__version__, prog_name="qwen-code-acp")
@click.pass_context
def main(
    ctx: click.Context,
    executable_path: str | None,
    permission_mode: str | None,
    debug: bool | None,
) -> None:
    """Qwen Code ACP agent - use the Qwen Code CLI from ACP editors.

    Without a subcommand, serves the Agent Client Protocol over stdio.
    """
    config = resolve_config(executable_path, permission_mode, debug)
    ctx.obj = config

    if ctx.invoked_subcommand is not None:
        return

    _run_stdio_agent(config)


def _run_stdio_agent(config: QwenCodeConfig) -> None:
    """Serve ACP on stdin/stdout until the client disconnects."""
    from .agent import run_stdio_agent
    from .stdio import configure_stdio_logging, install_stdout_filter

    # Must happen before the transport writes its first message
    install_stdout_filter()
    configure_stdio_logging(config.debug)

    try:
        asyncio.run(run_stdio_agent(config))
    except KeyboardInterrupt:
        pass


@main.command("check")
@click.option("--timeout", default=5.0, show_default=True, help="Seconds to wait for qwen")
@click.pass_obj
def check(config: QwenCodeConfig, timeout: float) -> None:
    """Check that the qwen CLI can be executed.

    Examples:

        qwen-code-acp check
        qwen-code-acp --executable ~/bin/qwen check
    """
    from .runner import probe_qwen_code

    try:
        version = asyncio.run(probe_qwen_code(config.executable_path, timeout=timeout))
    except QwenCodeError as e:
        click.echo(f"{config.executable_path}: " + click.style("unavailable", fg="red"))
        click.echo(str(e), err=True)
        click.echo("Install Qwen Code and run 'qwen auth' to log in.", err=True)
        sys.exit(1)

    click.echo(f"{config.executable_path}: " + click.style("available", fg="green"))
    if version:
        click.echo(f"Version: {version}")


@main.command("config")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_obj
def show_config(config: QwenCodeConfig, output_format: str) -> None:
    """Show the resolved configuration.

    Examples:

        qwen-code-acp config
        qwen-code-acp --permission-mode bypassPermissions config --format json
    """
    data = config.model_dump(mode="json")

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("Qwen Code ACP Configuration")
    click.echo("-" * 40)
    click.echo(f"Executable:        {data['executable_path']}")
    click.echo(f"Permission mode:   {data['permission_mode']}")
    click.echo(f"Debug:             {data['debug']}")


if __name__ == "__main__":
    main()
