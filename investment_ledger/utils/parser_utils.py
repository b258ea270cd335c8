"""Utilities for working with argument parsers."""

import argparse
from dataclasses import fields
from typing import Any, ClassVar, get_origin, get_type_hints

from investment_ledger.config import AppConfig


def add_config_options(parser: Any, config_class: type[AppConfig] = AppConfig) -> None:
    """
    Dynamically add configuration options to a parser based on a dataclass.

    Args:
        parser: The argument parser or argument group to add options to
        config_class: The dataclass to extract fields from (default: AppConfig)
    """
    type_hints: dict[str, Any] = get_type_hints(config_class)

    for field in fields(config_class):
        field_type = type_hints.get(field.name, str)
        # Skip private fields, ClassVars and mappings, which only come from YAML
        if (
            field.name.startswith("_")
            or get_origin(field_type) is ClassVar
            or get_origin(field_type) is dict
        ):
            continue

        arg_name: str = f"--{field.name.replace('_', '-')}"  # eg. db_path -> --db-path
        help_text: str = f"Override {field.name} configuration value"

        if field_type is bool:
            # None default so an absent flag doesn't override the config files
            _ = parser.add_argument(
                arg_name, action=argparse.BooleanOptionalAction, default=None, help=help_text
            )
            continue

        _ = parser.add_argument(
            arg_name,
            type=str,  # Accept all as strings initially, convert later
            default=None,  # So we know if user passed it
            metavar=getattr(field_type, "__name__", "value").upper(),
            help=help_text,
        )
