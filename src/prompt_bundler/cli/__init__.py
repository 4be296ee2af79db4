"""prompt-bundler CLI.

All commands emit response-v2 JSON envelopes for reliable parsing.
"""

from prompt_bundler.cli.config import CLIContext, create_context
from prompt_bundler.cli.logging import CLILogContext, cli_command, get_cli_logger
from prompt_bundler.cli.main import cli
from prompt_bundler.cli.output import emit, emit_error, emit_success
from prompt_bundler.cli.registry import get_context, set_context

__all__ = [
    # Entry point
    "cli",
    # Context
    "CLIContext",
    "create_context",
    "get_context",
    "set_context",
    # Output
    "emit",
    "emit_error",
    "emit_success",
    # Logging
    "CLILogContext",
    "cli_command",
    "get_cli_logger",
]
