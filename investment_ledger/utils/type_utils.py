import types
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union, get_args, get_origin

from investment_ledger.utils.dates import parse_date
from investment_ledger.utils.money import to_decimal


def convert_type(value: Any, expected_type: type | types.UnionType) -> Any:
    """Convert a value to the expected type with fallback handling and clear errors."""

    if value is None:
        return None

    origin = get_origin(expected_type)

    # Handle Union or `|` (e.g., int | None), trying members in declared order
    if origin is Union or origin is types.UnionType:
        for subtype in get_args(expected_type):
            if subtype is type(None):
                continue
            try:
                return convert_type(value, subtype)
            except Exception:
                continue
        raise ValueError(f"Cannot convert {value!r} to any of {get_args(expected_type)}")

    if expected_type is Path:
        return Path(value)

    if expected_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered: str = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
        raise ValueError(f"Cannot convert {value!r} to bool")

    if expected_type is datetime:
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))

    if expected_type is date:
        return parse_date(value)

    if expected_type is Decimal:
        return to_decimal(value)

    if isinstance(expected_type, type) and issubclass(expected_type, Enum):
        if isinstance(value, expected_type):
            return value
        try:
            return expected_type(value)
        except ValueError as e:
            raise ValueError(f"{value!r} is not a valid {expected_type.__name__}") from e

    if origin is dict or expected_type is dict:
        if isinstance(value, dict):
            return dict(value)
        raise ValueError(f"Cannot convert {value!r} to dict")

    # Default fallback: attempt direct type cast
    if isinstance(expected_type, type):
        try:
            return expected_type(value)
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"Invalid value: expected {expected_type.__name__}, "
                f"got {value!r} ({type(value).__name__})"
            ) from e

    raise TypeError(f"Expected a callable type, got {expected_type!r}")
