from collections.abc import Callable, Mapping
from dataclasses import fields
from sqlite3 import Row
from typing import Any, TypeVar, get_type_hints

from investment_ledger.utils.type_utils import convert_type

# Generic type for any model class
T = TypeVar("T")


class ModelFactory:
    """Factory class to create domain models from database rows"""

    @staticmethod
    def create_from_row(
        model_class: type[T],
        row: Row | Mapping[str, Any],
        converters: Mapping[str, Callable[[Any], Any]] | None = None,
    ) -> T:
        """
        Create a model instance from a database row.

        Columns are coerced to the model's annotated field types (dates, enums,
        decimals). `converters` overrides the coercion for specific columns, e.g.
        to unscale a stored integer. Columns without a matching field are dropped.
        """
        processed_data: dict[str, Any] = {key: row[key] for key in row.keys()}
        type_hints: dict[str, Any] = get_type_hints(model_class)
        field_names: set[str] = {f.name for f in fields(model_class)}  # type: ignore[arg-type]
        converters = converters or {}

        init_args: dict[str, Any] = {}
        for key, value in processed_data.items():
            if key not in field_names:
                continue
            if key in converters:
                init_args[key] = converters[key](value)
            elif key in type_hints:
                init_args[key] = convert_type(value, type_hints[key])
            else:
                init_args[key] = value

        return model_class(**init_args)

    @staticmethod
    def create_list_from_rows(
        model_class: type[T],
        rows: list[Row],
        converters: Mapping[str, Callable[[Any], Any]] | None = None,
    ) -> list[T]:
        """Create a list of model instances from database rows"""
        return [ModelFactory.create_from_row(model_class, row, converters) for row in rows]
