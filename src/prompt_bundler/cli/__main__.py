"""CLI module entry point.

Enables running the CLI via: python -m prompt_bundler.cli
"""

from prompt_bundler.cli.main import cli

if __name__ == "__main__":
    cli()
