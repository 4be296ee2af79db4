"""Prompt Bundler - token-budgeted prompt assembly for LLM turns."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("prompt-bundler")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.1.0"

from prompt_bundler.core.bundle import PromptBundle, build_bundle

__all__ = ["__version__", "PromptBundle", "build_bundle"]
