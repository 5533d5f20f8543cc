"""Entry point for ``python -m qwen_code_acp``.

Stdout is reserved for JSON-RPC when serving ACP; the CLI installs the stdout
filter and stderr logging before the agent starts.
"""

from .cli import main

if __name__ == "__main__":
    main()
