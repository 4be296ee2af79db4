"""Bundle assembly command.

Builds a budget-fitted prompt bundle from a turn packet JSON file.
"""

import time
from typing import Optional

import click
from pydantic import ValidationError

from prompt_bundler.cli.commands.tokens import counter_or_exit
from prompt_bundler.cli.logging import cli_command, get_cli_logger
from prompt_bundler.cli.output import emit_error, emit_response_error, emit_success
from prompt_bundler.cli.registry import get_context
from prompt_bundler.core.assembler import AssemblyContext
from prompt_bundler.core.bundle import build_bundle
from prompt_bundler.core.errors import BundlerError
from prompt_bundler.core.providers import providers_for_packet
from prompt_bundler.core.responses import (
    ErrorCode,
    ErrorType,
    bundler_error_response,
    not_found_error,
    sanitize_error_message,
    validation_error,
)
from prompt_bundler.core.turn_packet import TurnPacket, load_turn_packet

logger = get_cli_logger()


def load_packet_or_exit(path: str) -> TurnPacket:
    """Load a turn packet, emitting an error envelope on failure."""
    try:
        return load_turn_packet(path)
    except FileNotFoundError:
        emit_response_error(not_found_error("Turn packet", path))
    except ValidationError as e:
        emit_response_error(
            validation_error(
                f"Invalid turn packet: {e.error_count()} validation error(s)",
                details={
                    "errors": [
                        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                        for err in e.errors()
                    ]
                },
                remediation="Fix the listed fields in the turn packet.",
            )
        )
    except (OSError, UnicodeDecodeError) as e:
        emit_error(
            sanitize_error_message(e, context="turn packet load"),
            code=ErrorCode.INVALID_FORMAT.value,
            error_type=ErrorType.VALIDATION.value,
        )


@click.command("assemble")
@click.argument("packet")
@click.option("--max-tokens", type=click.IntRange(min=0), default=None,
              help="Token budget (defaults to the configured prompt budget).")
@click.option("--no-scenario", is_flag=True, help="Leave scenario content out of the bundle.")
@click.option("--npc-hint", "npc_hints", multiple=True,
              help="NPC slug to keep preferentially when NPCs are dropped.")
@click.option("--render", is_flag=True, help="Include the rendered prompt text.")
@click.option("--encoding", default=None, help="Count tokens with a tiktoken encoding.")
@click.pass_context
@cli_command("assemble")
def assemble_cmd(
    ctx: click.Context,
    packet: str,
    max_tokens: Optional[int],
    no_scenario: bool,
    npc_hints: tuple[str, ...],
    render: bool,
    encoding: Optional[str],
) -> None:
    """Assemble a turn packet into a budget-fitted prompt bundle.

    Over-budget bundles are still a success; check data.within_budget and
    meta.warnings.
    """
    settings = get_context(ctx).config.budget
    turn_packet = load_packet_or_exit(packet)
    budget = settings.prompt_token_budget if max_tokens is None else max_tokens
    counter = counter_or_exit(encoding)

    providers = providers_for_packet(
        turn_packet,
        inline_summaries=settings.inline_slice_summaries,
        inline_summary_max_tokens=settings.inline_summary_max_tokens,
        counter=counter,
    )
    context = AssemblyContext(scenario_enabled=not no_scenario, npc_hints=tuple(npc_hints))

    start = time.perf_counter()
    try:
        bundle = build_bundle(
            providers,
            context,
            budget,
            policy=settings.to_policy(),
            counter=counter,
        )
    except BundlerError as e:
        logger.warning(f"Bundle assembly failed: {e}", error_code=e.code)
        emit_response_error(bundler_error_response(e))
    duration_ms = (time.perf_counter() - start) * 1000

    emit_success(
        bundle.to_dict(include_text=render),
        warnings=bundle.budget.warnings,
        telemetry={"duration_ms": round(duration_ms, 2)},
    )
