"""
Configuration for prompt-bundler.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (prompt-bundler.toml)
3. Default values (lowest priority)

Environment variables:
- PROMPT_BUNDLER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- PROMPT_BUNDLER_STRUCTURED_LOGGING: JSON-style log lines (true/false)
- PROMPT_TOKEN_BUDGET_DEFAULT: Default prompt token budget
- PROMPT_BUDGET_WARN_PCT: Usage fraction that triggers the policy warning
- PROMPT_SOFT_BUDGET_PER_SLOT_TOKENS: Per-section size warning threshold
- PROMPT_BUNDLER_EPISODIC_CAP: Memory entries kept when capping
- AWF_MAX_INPUT_TOKENS: Input token ceiling for the model call
- AWF_MAX_OUTPUT_TOKENS: Output token ceiling for the model call
- AWF_MODEL_TEMPERATURE: Sampling temperature for the model call
- AWF_INLINE_SLICE_SUMMARIES: Emit compacted world/adventure slices (true/false)
- PROMPT_BUNDLER_CONFIG_FILE: Path to TOML config file

The bundle core never reads this module; callers turn settings into a
BudgetPolicy and plain integers and pass them in.
"""

import os
import logging
from dataclasses import asdict, dataclass, field
from importlib.metadata import version as get_package_version, PackageNotFoundError
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from prompt_bundler.core.allocator import BudgetPolicy


logger = logging.getLogger(__name__)


def _get_version() -> str:
    """Get package version from metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("prompt-bundler")
    except PackageNotFoundError:
        return "0.1.0"  # Fallback for dev without install


_PACKAGE_VERSION = _get_version()


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _budget_value_error(attr: str, value: Any) -> Optional[str]:
    """Describe why ``value`` is out of range for ``attr``, or None if it is valid."""
    if attr == "warn_pct" and not 0.0 < value <= 1.0:
        return "must be in (0.0, 1.0]"
    if attr == "min_chars_guardrail_ratio" and not 0.0 <= value <= 1.0:
        return "must be in [0.0, 1.0]"
    if not isinstance(value, bool) and value < 0:
        return "must be non-negative"
    return None


@dataclass
class BudgetSettings:
    """Token budget and model call settings.

    Attributes:
        prompt_token_budget: Default budget for assembled prompts
        warn_pct: Usage fraction at which an in-budget bundle is flagged
        soft_budget_per_slot_tokens: Per-section size warning threshold
        min_chars_guardrail_ratio: Share of the budget min_chars may claim
        episodic_cap: Memory entries kept per episodic section when capping
        max_input_tokens: Input token ceiling for the model call
        max_output_tokens: Output token ceiling for the model call
        model_temperature: Sampling temperature for the model call
        inline_slice_summaries: Emit compacted world/adventure slices
        inline_summary_max_tokens: Ceiling per inline summary
    """

    prompt_token_budget: int = 8000
    warn_pct: float = 0.9
    soft_budget_per_slot_tokens: int = 2000
    min_chars_guardrail_ratio: float = 0.75
    episodic_cap: int = 10
    max_input_tokens: int = 6000
    max_output_tokens: int = 1200
    model_temperature: float = 0.4
    inline_slice_summaries: bool = False
    inline_summary_max_tokens: int = 50

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "BudgetSettings":
        """Create settings from a TOML ``[budget]`` table.

        Out-of-range values are logged and replaced by their defaults.
        """
        defaults = cls()
        settings = cls(
            prompt_token_budget=int(data.get("prompt_token_budget", defaults.prompt_token_budget)),
            warn_pct=float(data.get("warn_pct", defaults.warn_pct)),
            soft_budget_per_slot_tokens=int(
                data.get("soft_budget_per_slot_tokens", defaults.soft_budget_per_slot_tokens)
            ),
            min_chars_guardrail_ratio=float(
                data.get("min_chars_guardrail_ratio", defaults.min_chars_guardrail_ratio)
            ),
            episodic_cap=int(data.get("episodic_cap", defaults.episodic_cap)),
            max_input_tokens=int(data.get("max_input_tokens", defaults.max_input_tokens)),
            max_output_tokens=int(data.get("max_output_tokens", defaults.max_output_tokens)),
            model_temperature=float(data.get("model_temperature", defaults.model_temperature)),
            inline_slice_summaries=_parse_bool(
                data.get("inline_slice_summaries", defaults.inline_slice_summaries)
            ),
            inline_summary_max_tokens=int(
                data.get("inline_summary_max_tokens", defaults.inline_summary_max_tokens)
            ),
        )
        for attr, value in asdict(settings).items():
            if problem := _budget_value_error(attr, value):
                logger.warning(f"Ignoring invalid budget.{attr}={value!r}: {problem}")
                setattr(settings, attr, getattr(defaults, attr))
        return settings

    def to_policy(self) -> BudgetPolicy:
        """Build the allocator policy injected into the bundle core."""
        return BudgetPolicy(
            warn_pct=self.warn_pct,
            episodic_cap=self.episodic_cap,
            soft_budget_per_slot_tokens=self.soft_budget_per_slot_tokens,
            min_chars_guardrail_ratio=self.min_chars_guardrail_ratio,
        )

    def model_settings(self) -> Dict[str, Any]:
        """Output ceiling and temperature for the model call."""
        return {"max_tokens": self.max_output_tokens, "temperature": self.model_temperature}


# Environment variable -> (BudgetSettings attribute, parser)
_BUDGET_ENV_VARS = {
    "PROMPT_TOKEN_BUDGET_DEFAULT": ("prompt_token_budget", int),
    "PROMPT_BUDGET_WARN_PCT": ("warn_pct", float),
    "PROMPT_SOFT_BUDGET_PER_SLOT_TOKENS": ("soft_budget_per_slot_tokens", int),
    "PROMPT_BUNDLER_EPISODIC_CAP": ("episodic_cap", int),
    "AWF_MAX_INPUT_TOKENS": ("max_input_tokens", int),
    "AWF_MAX_OUTPUT_TOKENS": ("max_output_tokens", int),
    "AWF_MODEL_TEMPERATURE": ("model_temperature", float),
    "AWF_INLINE_SLICE_SUMMARIES": ("inline_slice_summaries", _parse_bool),
}


@dataclass
class BundlerConfig:
    """Bundler configuration with support for env vars and TOML overrides."""

    # Logging configuration
    log_level: str = "INFO"
    structured_logging: bool = False

    # Budget configuration
    budget: BudgetSettings = field(default_factory=BudgetSettings)

    version: str = field(default_factory=lambda: _PACKAGE_VERSION)

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "BundlerConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get("PROMPT_BUNDLER_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            for default_path in ["prompt-bundler.toml", ".prompt-bundler.toml"]:
                if Path(default_path).exists():
                    config._load_toml(Path(default_path))
                    break

        config._load_env()
        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if "logging" in data:
                log = data["logging"]
                if "level" in log:
                    self.log_level = str(log["level"]).upper()
                if "structured" in log:
                    self.structured_logging = _parse_bool(log["structured"])

            if "budget" in data:
                self.budget = BudgetSettings.from_toml_dict(data["budget"])

        except (OSError, ValueError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if level := os.environ.get("PROMPT_BUNDLER_LOG_LEVEL"):
            self.log_level = level.upper()

        if structured := os.environ.get("PROMPT_BUNDLER_STRUCTURED_LOGGING"):
            self.structured_logging = _parse_bool(structured)

        for env_var, (attr, parse) in _BUDGET_ENV_VARS.items():
            raw = os.environ.get(env_var)
            if raw is None or not raw.strip():
                continue
            try:
                value = parse(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {env_var}={raw!r}")
                continue
            if problem := _budget_value_error(attr, value):
                logger.warning(f"Ignoring invalid {env_var}={raw!r}: {problem}")
                continue
            setattr(self.budget, attr, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "logging": {"level": self.log_level, "structured": self.structured_logging},
            "budget": asdict(self.budget),
        }

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level, logging.INFO)

        if self.structured_logging:
            # JSON-style structured logging
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
                '"logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)

        root_logger = logging.getLogger("prompt_bundler")
        root_logger.setLevel(level)
        for existing in list(root_logger.handlers):
            if getattr(existing, "_prompt_bundler", False):
                root_logger.removeHandler(existing)
        handler._prompt_bundler = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)


# Global configuration instance
_config: Optional[BundlerConfig] = None


def get_config() -> BundlerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = BundlerConfig.from_env()
    return _config


def set_config(config: BundlerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
