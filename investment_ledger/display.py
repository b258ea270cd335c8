import json
import logging
from collections.abc import Sequence
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from investment_ledger.models import (
    InvestmentOperation,
    LotState,
    MonthlyEvolutionPoint,
    Position,
    RealizedProfit,
)
from investment_ledger.utils.money import from_minor_units, minor_unit_exponent

logger = logging.getLogger(__name__)


def format_money(amount: int | None, currency: str) -> str:
    if amount is None:
        return "n/a"
    return f"{from_minor_units(amount, currency):,.{minor_unit_exponent(currency)}f}"


def format_quantity(quantity: Decimal) -> str:
    # Drop trailing zeros without switching to exponent notation
    text: str = f"{quantity:f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def render_table(title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render rows as a box-drawn table. Numeric-looking cells are right aligned."""
    widths: list[int] = [len(header) for header in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(left: str, middle: str, right: str) -> str:
        return left + middle.join("═" * (width + 2) for width in widths) + right

    def cells(values: Sequence[str]) -> str:
        parts: list[str] = []
        for value, width in zip(values, widths, strict=True):
            numeric: bool = value[:1].isdigit() or value[:1] == "-"
            parts.append(f" {value:>{width}} " if numeric else f" {value:<{width}} ")
        return "║" + "║".join(parts) + "║"

    inner_width: int = sum(widths) + 3 * len(widths) - 1
    output: list[str] = [
        "╔" + "═" * inner_width + "╗",
        "║" + f" {title} ".center(inner_width) + "║",
        line("╠", "╦", "╣"),
        cells(headers),
        line("╠", "╬", "╣"),
    ]
    output.extend(cells(row) for row in rows)
    output.append(line("╚", "╩", "╝"))
    return "\n".join(output)


def display_positions(positions: list[Position], base_currency: str) -> None:
    if not positions:
        print("No open positions.")
        return

    rows: list[list[str]] = []
    for p in sorted(positions, key=lambda x: x.normalized_value, reverse=True):
        rows.append(
            [
                p.asset + (" *" if p.degraded else ""),
                str(p.asset_class),
                p.currency,
                format_quantity(p.quantity),
                format_money(p.average_price, p.currency),
                format_money(p.current_price, p.currency),
                format_money(p.current_value, p.currency),
                format_money(p.profit, p.currency),
                f"{p.profit_percentage:.2f}%",
                f"{p.portfolio_percentage:.2f}%",
                f"{p.average_holding_time}d",
            ]
        )
    print(
        render_table(
            "OPEN POSITIONS",
            ["Asset", "Class", "Ccy", "Qty", "Avg Price", "Price", "Value", "Profit", "Profit %", "% Port.", "Held"],
            rows,
        )
    )

    total: int = sum(p.normalized_value for p in positions)
    print(f"\nTotal value: {format_money(total, base_currency)} {base_currency}")
    _print_warnings([w.message for p in positions for w in p.warnings])


def display_evolution(points: list[MonthlyEvolutionPoint], base_currency: str) -> None:
    if not points:
        print("No operations recorded.")
        return

    rows: list[list[str]] = [
        [
            point.month + (" *" if point.degraded else ""),
            format_money(point.portfolio_value, base_currency),
            format_money(point.contributions, base_currency),
            format_money(point.withdrawals, base_currency),
            format_money(point.dividends, base_currency),
            f"{point.returns:.2f}%",
            format_money(point.cumulative_contributions, base_currency),
            format_money(point.cumulative_dividends, base_currency),
        ]
        for point in points
    ]
    print(
        render_table(
            f"MONTHLY EVOLUTION ({base_currency})",
            ["Month", "Value", "Contrib.", "Withdr.", "Dividends", "Return", "Cum. Contrib.", "Cum. Div."],
            rows,
        )
    )
    _print_warnings([w.message for point in points for w in point.warnings])


def display_operations(operations: list[InvestmentOperation], title: str = "OPERATIONS") -> None:
    if not operations:
        print("No operations found.")
        return

    rows: list[list[str]] = [
        [
            str(op.id),
            op.date.isoformat(),
            op.asset,
            str(op.type),
            format_quantity(op.quantity),
            format_money(op.price, op.currency),
            format_money(op.total_amount, op.currency),
            op.currency,
            op.broker or "",
        ]
        for op in operations
    ]
    print(render_table(title, ["ID", "Date", "Asset", "Type", "Qty", "Price", "Total", "Ccy", "Broker"], rows))


def display_lot_history(history: list[tuple[InvestmentOperation, LotState]]) -> None:
    if not history:
        print("No operations found for this asset.")
        return

    rows: list[list[str]] = [
        [
            op.date.isoformat(),
            str(op.type),
            format_quantity(op.quantity),
            format_money(op.price, op.currency),
            format_quantity(state.quantity),
            format_money(state.average_cost, op.currency),
            format_money(state.cost_basis, op.currency),
        ]
        for op, state in history
    ]
    print(
        render_table(
            f"HISTORY: {history[0][0].asset}",
            ["Date", "Type", "Qty", "Price", "Held", "Avg Cost", "Cost Basis"],
            rows,
        )
    )


def display_realized(report: list[RealizedProfit]) -> None:
    if not report:
        print("No operations recorded.")
        return

    rows: list[list[str]] = [
        [
            item.asset + (" *" if item.warnings else ""),
            item.currency,
            format_quantity(item.quantity),
            format_money(item.realized_profit, item.currency),
            format_money(item.dividends, item.currency),
            "closed" if item.closed else "open",
        ]
        for item in report
    ]
    print(render_table("REALIZED PROFIT", ["Asset", "Ccy", "Held", "Realized", "Income", "Status"], rows))
    _print_warnings([w.message for item in report for w in item.warnings])


def _print_warnings(messages: list[str]) -> None:
    if not messages:
        return
    print("\n* Degraded results:")
    for message in dict.fromkeys(messages):
        print(f"  - {message}")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(items: Any) -> str:
    """Serialize dataclasses (or lists of them) with money left in minor units."""
    if isinstance(items, list):
        payload: Any = [_to_plain(item) for item in items]
    else:
        payload = _to_plain(items)
    return json.dumps(payload, default=_json_default, indent=2, ensure_ascii=False)


def _to_plain(item: Any) -> Any:
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    if isinstance(item, tuple):
        return [_to_plain(part) for part in item]
    return item
