"""Token estimation and compaction commands."""

from typing import Optional

import click

from prompt_bundler.cli.logging import cli_command
from prompt_bundler.cli.output import emit_error, emit_response_error, emit_success
from prompt_bundler.core.compaction import compact
from prompt_bundler.core.responses import (
    ErrorCode,
    ErrorType,
    not_found_error,
    sanitize_error_message,
    validation_error,
)
from prompt_bundler.core.token_management import (
    TokenCounter,
    estimate_tokens,
    tiktoken_counter,
)


def read_text_or_exit(path: str) -> str:
    """Read a UTF-8 text file, emitting an error envelope on failure."""
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        emit_response_error(not_found_error("File", path))
    except (OSError, UnicodeDecodeError) as e:
        emit_error(
            sanitize_error_message(e, context="text load"),
            code=ErrorCode.INVALID_FORMAT.value,
            error_type=ErrorType.VALIDATION.value,
        )


def counter_or_exit(encoding: Optional[str]) -> Optional[TokenCounter]:
    """Build a tiktoken counter, emitting an error envelope for unknown encodings."""
    if not encoding:
        return None
    try:
        return tiktoken_counter(encoding)
    except ValueError:
        emit_response_error(
            validation_error(
                f"Unknown tiktoken encoding '{encoding}'",
                field="encoding",
                remediation="Use an encoding such as cl100k_base or o200k_base.",
            )
        )


@click.command("estimate")
@click.argument("file")
@click.option("--encoding", default=None,
              help="tiktoken encoding (e.g. cl100k_base); defaults to the byte heuristic.")
@cli_command("estimate")
def estimate_cmd(file: str, encoding: Optional[str]) -> None:
    """Estimate the token count of a text file."""
    text = read_text_or_exit(file)
    counter = counter_or_exit(encoding)
    emit_success(
        {
            "file": file,
            "tokens": estimate_tokens(text, counter),
            "bytes": len(text.encode("utf-8")),
            "chars": len(text),
            "counter": encoding or "heuristic",
        }
    )


@click.command("compact")
@click.argument("file")
@click.option("--max-tokens", type=click.IntRange(min=0), required=True,
              help="Token ceiling for the compacted text.")
@click.option("--name", default=None, help="Slice name recorded on the result.")
@click.option("--no-key-points", is_flag=True, help="Skip key point extraction.")
@cli_command("compact")
def compact_cmd(file: str, max_tokens: int, name: Optional[str], no_key_points: bool) -> None:
    """Compact a text file to fit within a token ceiling."""
    text = read_text_or_exit(file)
    summary = compact(
        text,
        max_tokens,
        name=name or file,
        preserve_key_points=not no_key_points,
    )
    warnings = ["exceeded_ceiling"] if summary.exceeded_ceiling else None
    emit_success(summary.to_dict(), warnings=warnings)
