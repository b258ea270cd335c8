import logging
import logging.config
import sys
from logging import Logger
from pathlib import Path

import yaml

PACKAGE_LOGGER = "investment_ledger"


def setup_logging(config_path: Path, log_level: str, log_file_path: Path | None = None) -> None:
    """
    Configure logging from a YAML dictConfig file, then apply the configured
    level to the package logger. Falls back to a basic console logger.
    """
    try:
        with open(file=config_path, mode="r") as f:
            config = yaml.safe_load(f)

        # Point file handlers at the configured log file
        if log_file_path is not None:
            for handler in (config.get("handlers") or {}).values():
                if "filename" in handler:
                    log_file_path.parent.mkdir(parents=True, exist_ok=True)
                    handler["filename"] = str(log_file_path)

        logging.config.dictConfig(config)

        override_level_str: str = log_level.upper()
        override_level: int | None = logging.getLevelNamesMapping().get(override_level_str)

        if override_level is None:
            logging.warning(
                f"Invalid log level '{log_level}' from AppConfig. Using default levels from YAML."
            )
            return

        package_logger: Logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.setLevel(override_level)
        logging.debug(f"Package logger '{PACKAGE_LOGGER}' level overridden to {override_level_str}")

    except FileNotFoundError:
        print(f"Error: Logging config file not found at {config_path}", file=sys.stderr)
        # Fallback: Configure a basic console logger so subsequent errors are seen
        logging.basicConfig(level=logging.INFO)
        logging.error(f"Failed to load logging config from {config_path}")
    except (yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        print(f"Error: Invalid logging config {config_path}: {e}", file=sys.stderr)
        logging.basicConfig(level=logging.INFO)
        logging.error(f"Invalid logging config in {config_path}: {e}")
