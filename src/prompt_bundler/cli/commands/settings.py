"""Configuration inspection commands."""

import click

from prompt_bundler.cli.logging import cli_command
from prompt_bundler.cli.output import emit_success
from prompt_bundler.cli.registry import get_context


@click.group("config")
def config_group() -> None:
    """Configuration inspection."""
    pass


@config_group.command("show")
@click.pass_context
@cli_command("config-show")
def config_show_cmd(ctx: click.Context) -> None:
    """Show the effective configuration (defaults < TOML < env)."""
    config = get_context(ctx).config
    emit_success(
        {
            **config.to_dict(),
            "policy": config.budget.to_policy().to_dict(),
            "model": config.budget.model_settings(),
        }
    )
