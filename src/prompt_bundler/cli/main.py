"""prompt-bundler CLI entry point.

JSON-only output.
"""

import click

from prompt_bundler.cli.config import create_context
from prompt_bundler.cli.registry import register_all_commands


@click.group()
@click.option(
    "--config",
    "config_file",
    envvar="PROMPT_BUNDLER_CONFIG_FILE",
    type=click.Path(exists=False),
    help="Path to a prompt-bundler TOML config file",
)
@click.pass_context
def cli(ctx: click.Context, config_file: str | None) -> None:
    """prompt-bundler - token-budgeted prompt assembly.

    All commands output JSON envelopes.
    """
    ctx.ensure_object(dict)
    ctx.obj["cli_context"] = create_context(config_file=config_file)


register_all_commands(cli)


if __name__ == "__main__":
    cli()
