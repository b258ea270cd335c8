# config.py
import argparse
import logging
import os
from dataclasses import MISSING, dataclass, field, fields
from pathlib import Path
from typing import Any, get_type_hints

import yaml

from investment_ledger.utils.type_utils import convert_type

logger: logging.Logger = logging.getLogger(__name__)


def get_env() -> str:
    # Tests always run against the test config, otherwise INVESTMENT_LEDGER_ENV or 'prod'
    is_test_environment: bool = bool(os.getenv("PYTEST_CURRENT_TEST"))
    env: str = "test" if is_test_environment else os.getenv("INVESTMENT_LEDGER_ENV", "prod").lower()
    logger.debug(f"Using environment: {env}")
    return env


@dataclass
class AppConfig:
    db_path: Path
    csv_path: Path
    log_config_path: Path
    log_file_path: Path
    log_level: str
    default_user_id: str = "default"
    default_currency: str = "BRL"
    base_currency: str = "BRL"
    price_lookback_days: int = 7
    fetch_missing_prices: bool = False
    yf_max_requests: int = 5
    yf_request_interval_seconds: float = 1.0
    yf_cache_path: Path | None = None
    yf_symbols: dict[str, str] = field(default_factory=dict)


class ConfigLoader:
    """Load and manage application configuration from multiple sources."""

    @staticmethod
    def _find_config_directory() -> Path:
        """Find a valid configuration directory from several possible locations."""
        possible_config_dirs: list[Path] = [
            Path("config"),  # Current directory
            Path.home() / ".investment-ledger" / "config",  # User's home directory
            Path(__file__).parent.parent / "config",  # Source checkout
        ]

        for directory in possible_config_dirs:
            if directory.exists():
                logger.debug(f"Using config directory: {directory}")
                return directory

        logger.warning("No config directory found, using 'config'")
        return Path("config")

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        if not path.exists():
            logger.debug(f"Config file not found: {path}")
            return {}
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping, got {type(loaded).__name__}")
        return loaded

    @staticmethod
    def _load_merged_yaml(
        env: str, config_dir: Path | None = None, file: Path | None = None
    ) -> dict[str, Any]:
        """Get appropriate config files as a dict, merging nested items."""
        if config_dir is None:
            config_dir = ConfigLoader._find_config_directory()

        base_config: dict[str, Any] = ConfigLoader._load_yaml(config_dir / "config.base.yaml")
        env_config: dict[str, Any] = ConfigLoader._load_yaml(config_dir / f"config.{env}.yaml")

        merged_config: dict[str, Any] = ConfigLoader._get_default_config()
        if not base_config and not env_config:
            logger.warning("No config files found. Using built-in defaults.")
        merged_config = ConfigLoader._deep_merge(merged_config, base_config)
        merged_config = ConfigLoader._deep_merge(merged_config, env_config)

        if file:
            if not file.exists():
                raise FileNotFoundError(f"Config file not found: {file}")
            merged_config = ConfigLoader._deep_merge(merged_config, ConfigLoader._load_yaml(file))

        return merged_config

    @staticmethod
    def _get_default_config() -> dict[str, Any]:
        """Built-in values, lowest precedence."""
        return {
            "db_path": "investment_ledger.db",
            "csv_path": "operations.csv",
            "log_config_path": "config/logging_config.yaml",
            "log_file_path": "investment_ledger.log",
            "log_level": "INFO",
        }

    @staticmethod
    def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries. Values in `override` take precedence."""
        result: dict[str, Any] = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigLoader._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @staticmethod
    def _dict_to_config(data: dict[str, Any], config_class: type[AppConfig]) -> AppConfig:
        """Build an AppConfig from a dict, coercing values to the declared field types."""
        type_hints: dict[str, Any] = get_type_hints(config_class)
        init_args: dict[str, Any] = {}

        for config_field in fields(config_class):
            name: str = config_field.name
            expected_type = type_hints.get(name, Any)
            value = data.get(name, MISSING)

            if value is MISSING:
                if config_field.default is not MISSING:
                    value = config_field.default
                elif config_field.default_factory is not MISSING:
                    value = config_field.default_factory()
                else:
                    raise ValueError(f"Missing required config value: '{name}'")

            try:
                init_args[name] = convert_type(value, expected_type)
            except (TypeError, ValueError) as e:
                raise TypeError(
                    f"Invalid type for '{name}': expected {expected_type}, got {type(value)}. Error: {e}"
                ) from e

        return config_class(**init_args)

    @staticmethod
    def load_app_config(
        env: str, overrides: dict[str, Any] | None = None, config_file: Path | None = None
    ) -> AppConfig:
        """
        Builds an AppConfig object with smart environment detection.

        The configuration is loaded in this order of precedence:
        1. Default built-in values
        2. Base config file (config.base.yaml)
        3. Environment-specific config file (config.{env}.yaml)
        4. Custom config file (if specified)
        5. CLI argument overrides

        Args:
            env: Environment name selecting config.{env}.yaml
            overrides: Optional dictionary of configuration overrides (typically from CLI)
            config_file: Optional path to a specific config file to use

        Returns:
            An AppConfig object with the merged configuration
        """
        merged_config: dict[str, Any] = ConfigLoader._load_merged_yaml(env, file=config_file)

        if overrides:
            merged_config = ConfigLoader._deep_merge(merged_config, overrides)

        return ConfigLoader._dict_to_config(merged_config, AppConfig)

    @staticmethod
    def args_to_overrides(args: argparse.Namespace) -> dict[str, Any]:
        """Convert argparse Namespace to a dictionary of overrides."""
        return {k: v for k, v in vars(args).items() if v is not None}
