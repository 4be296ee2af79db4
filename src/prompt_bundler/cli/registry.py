"""Command registry for the prompt-bundler CLI."""

from typing import Optional

import click

from prompt_bundler.cli.config import CLIContext

# Module-level storage for CLI context (for testing)
_cli_context: Optional[CLIContext] = None


def set_context(ctx: CLIContext) -> None:
    """Set the CLI context at module level (used when no Click context exists)."""
    global _cli_context
    _cli_context = ctx


def get_context(ctx: Optional[click.Context] = None) -> CLIContext:
    """Get CLI context from Click context or module-level storage.

    Raises:
        RuntimeError: If no context is available.
    """
    if ctx is not None:
        return ctx.obj["cli_context"]

    if _cli_context is not None:
        return _cli_context

    raise RuntimeError("No CLI context available. Call set_context() first.")


def register_all_commands(cli: click.Group) -> None:
    """Register all commands with the CLI.

    Command modules are imported lazily to avoid circular dependencies.
    """
    from prompt_bundler.cli.commands import (
        assemble_cmd,
        compact_cmd,
        config_group,
        estimate_cmd,
    )

    cli.add_command(assemble_cmd)
    cli.add_command(estimate_cmd)
    cli.add_command(compact_cmd)
    cli.add_command(config_group)
