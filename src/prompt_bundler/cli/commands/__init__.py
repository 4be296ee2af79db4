"""CLI commands."""

from prompt_bundler.cli.commands.bundle import assemble_cmd
from prompt_bundler.cli.commands.settings import config_group
from prompt_bundler.cli.commands.tokens import compact_cmd, estimate_cmd

__all__ = [
    "assemble_cmd",
    "compact_cmd",
    "config_group",
    "estimate_cmd",
]
