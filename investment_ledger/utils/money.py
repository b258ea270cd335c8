"""Integer minor-unit arithmetic shared by the replay and valuation code."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Currencies whose minor unit is not 1/100. Anything else uses two decimals.
MINOR_UNIT_EXPONENTS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "CLP": 0,
    "VND": 0,
    "ISK": 0,
    "KWD": 3,
    "BHD": 3,
    "OMR": 3,
}

# Quantities are stored as integers scaled by this factor (4 decimal places).
QUANTITY_SCALE = 10_000


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert to Decimal going through str for floats so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid decimal value: {value!r}") from e


def round_half_up(value: Decimal | int | float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(to_decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def to_minor_units(amount: Decimal | int | float | str, currency: str) -> int:
    """Convert a major-unit amount (e.g. 12.34 BRL) to minor units (1234)."""
    return round_half_up(to_decimal(amount) * (10 ** minor_unit_exponent(currency)))


def from_minor_units(amount: int, currency: str) -> Decimal:
    return Decimal(amount) / (10 ** minor_unit_exponent(currency))


def safe_percentage(numerator: int | float | Decimal, denominator: int | float | Decimal) -> float:
    """numerator / denominator * 100, or 0.0 when the denominator is not positive."""
    if denominator <= 0:
        return 0.0
    return float(numerator) / float(denominator) * 100


def scale_quantity(quantity: Decimal) -> int:
    return round_half_up(quantity * QUANTITY_SCALE)


def unscale_quantity(stored: int) -> Decimal:
    return Decimal(stored) / QUANTITY_SCALE
