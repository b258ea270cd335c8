import logging
from collections.abc import Iterable, Mapping
from datetime import date

from investment_ledger.models import (
    Position,
    PriceRequest,
    ReplayWarning,
    ResolvedLot,
    WarningKind,
)
from investment_ledger.services.cost_basis import average_holding_days
from investment_ledger.services.currency import CurrencyConverter
from investment_ledger.utils.money import round_half_up, safe_percentage

logger: logging.Logger = logging.getLogger(__name__)


def price_requests_for(lots: Iterable[ResolvedLot], on_date: date) -> list[PriceRequest]:
    """One price request per lot that still holds a quantity."""
    return [
        PriceRequest(lot.asset, lot.currency, on_date) for lot in lots if lot.state.quantity != 0
    ]


def build_positions(
    lots: Iterable[ResolvedLot],
    prices: Mapping[PriceRequest, int | None],
    converter: CurrencyConverter,
    base_currency: str,
    as_of: date,
) -> list[Position]:
    """
    Turn resolved lots into valued positions.

    Lots with zero quantity are dropped. A lot without a market price is valued
    at its cost basis and flagged degraded. Portfolio percentages are computed
    over values normalized to the base currency, after every position is known.
    """
    positions: list[Position] = []

    for lot in lots:
        if lot.state.quantity == 0:
            continue

        warnings: list[ReplayWarning] = list(lot.warnings)
        degraded: bool = False
        total_invested: int = lot.state.cost_basis

        price: int | None = prices.get(PriceRequest(lot.asset, lot.currency, as_of))
        if price is None:
            current_value: int = total_invested
            degraded = True
            warnings.append(
                ReplayWarning(
                    kind=WarningKind.MISSING_VALUATION,
                    asset=lot.asset,
                    message=f"No price for {lot.asset} on {as_of}; valued at cost",
                    operation_date=as_of,
                )
            )
        else:
            current_value = round_half_up(lot.state.quantity * price)

        normalized: int | None = converter.convert(current_value, lot.currency, base_currency, as_of)
        if normalized is None:
            normalized = current_value
            degraded = True
            warnings.append(
                ReplayWarning(
                    kind=WarningKind.MISSING_FX_RATE,
                    asset=lot.asset,
                    message=f"No {lot.currency}->{base_currency} rate on {as_of}; value not converted",
                    operation_date=as_of,
                )
            )

        profit: int = current_value - total_invested
        positions.append(
            Position(
                asset=lot.asset,
                asset_class=lot.asset_class,
                currency=lot.currency,
                quantity=lot.state.quantity,
                average_price=lot.state.average_cost,
                current_price=price,
                current_value=current_value,
                total_invested=total_invested,
                profit=profit,
                profit_percentage=safe_percentage(profit, total_invested),
                portfolio_percentage=0.0,
                average_holding_time=average_holding_days(lot.acquisitions, as_of),
                realized_profit=lot.realized_profit,
                dividends_received=lot.dividends,
                broker=", ".join(lot.brokers) or None,
                normalized_value=normalized,
                degraded=degraded,
                warnings=warnings,
            )
        )

    total_value: int = sum(position.normalized_value for position in positions)
    for position in positions:
        position.portfolio_percentage = safe_percentage(position.normalized_value, total_value)

    degraded_count: int = sum(1 for position in positions if position.degraded)
    if degraded_count:
        logger.info(f"{degraded_count} of {len(positions)} positions are degraded")

    positions.sort(key=lambda p: (p.asset, p.currency))
    return positions
