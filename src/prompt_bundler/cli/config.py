"""CLI configuration context.

Holds the effective BundlerConfig for a CLI invocation.
"""

from typing import Optional

from prompt_bundler.config import BundlerConfig, get_config, set_config


class CLIContext:
    """CLI execution context with resolved configuration."""

    def __init__(self, config: Optional[BundlerConfig] = None):
        self._config = config or get_config()

    @property
    def config(self) -> BundlerConfig:
        return self._config


def create_context(config_file: Optional[str] = None) -> CLIContext:
    """Create a CLI context, loading configuration from ``config_file`` if given.

    Args:
        config_file: Optional TOML path from --config.

    Returns:
        CLIContext with logging configured.
    """
    config = BundlerConfig.from_env(config_file)
    set_config(config)
    config.setup_logging()
    return CLIContext(config)
