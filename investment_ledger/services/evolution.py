"""
Monthly evolution of a portfolio, rebuilt from the ledger.

The replay is incremental: each (asset, currency) lot carries its state across
month boundaries and only the operations dated inside the next month are
applied, so one pass over the ledger yields the whole series. Each point is
the state after every operation dated on or before the month end.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import date

from investment_ledger.models import (
    InvestmentOperation,
    MonthlyEvolutionPoint,
    OperationType,
    PriceRequest,
    ReplayWarning,
    WarningKind,
)
from investment_ledger.services.cost_basis import LotKey, LotReplay, OperationEffect, canonical_type
from investment_ledger.services.currency import CurrencyConverter
from investment_ledger.services.valuation import ValuationProvider
from investment_ledger.utils.dates import iter_months, month_end
from investment_ledger.utils.money import round_half_up

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class _MonthFlows:
    contributions: int = 0
    withdrawals: int = 0
    dividends: int = 0
    other_cash_flows: int = 0
    realized_profit: int = 0
    degraded: bool = False
    warnings: list[ReplayWarning] = field(default_factory=list)


def money_weighted_return(
    value: int, previous_value: int, contributions: int, withdrawals: int
) -> float:
    """Period return in percent, net of cash moved in and out. Zero without a prior value."""
    if previous_value <= 0:
        return 0.0
    return (value - previous_value - contributions + withdrawals) / previous_value * 100


class MonthlyEvolutionReconstructor:
    def __init__(
        self,
        valuation: ValuationProvider,
        converter: CurrencyConverter,
        base_currency: str,
    ):
        self.valuation = valuation
        self.converter = converter
        self.base_currency = base_currency

    def iter_points(
        self,
        operations: Sequence[InvestmentOperation],
        last_month: tuple[int, int],
        today: date,
    ) -> Iterator[MonthlyEvolutionPoint]:
        """
        Yield one point per calendar month from the first operation's month to
        last_month inclusive, with no gaps.

        Args:
            operations: The user's operations in ledger order
            last_month: (year, month) of the final point
            today: Months not yet over are valued as of this day

        Callers may stop iterating at any month boundary.
        """
        if not operations:
            return

        first_date: date = min(op.date for op in operations)
        months: list[tuple[int, int]] = list(
            iter_months((first_date.year, first_date.month), last_month)
        )
        if not months:
            return

        valuation_dates: dict[tuple[int, int], date] = {
            month: min(month_end(*month), today) for month in months
        }
        prices: dict[PriceRequest, int | None] = self.valuation.prices_at(
            self._price_requests(operations, valuation_dates)
        )

        replays: dict[LotKey, LotReplay] = {}
        ordered: list[InvestmentOperation] = sorted(operations, key=lambda op: op.sort_key)
        index: int = 0
        previous_value: int = 0
        cumulative_contributions: int = 0
        cumulative_withdrawals: int = 0
        cumulative_dividends: int = 0

        for year, month in months:
            boundary: date = month_end(year, month)
            flows = _MonthFlows()

            while index < len(ordered) and ordered[index].date <= boundary:
                operation: InvestmentOperation = ordered[index]
                index += 1
                key: LotKey = (operation.asset, operation.currency)
                if key not in replays:
                    replays[key] = LotReplay(operation.asset, operation.currency, operation.asset_class)
                self._record_flows(flows, operation, replays[key].apply(operation))

            valued_on: date = valuation_dates[(year, month)]
            portfolio_value: int = self._portfolio_value(replays, prices, valued_on, flows)

            cumulative_contributions += flows.contributions
            cumulative_withdrawals += flows.withdrawals
            cumulative_dividends += flows.dividends

            yield MonthlyEvolutionPoint(
                month=f"{year:04d}-{month:02d}",
                month_end=boundary,
                portfolio_value=portfolio_value,
                contributions=flows.contributions,
                withdrawals=flows.withdrawals,
                dividends=flows.dividends,
                other_cash_flows=flows.other_cash_flows,
                realized_profit=flows.realized_profit,
                returns=money_weighted_return(
                    portfolio_value, previous_value, flows.contributions, flows.withdrawals
                ),
                cumulative_contributions=cumulative_contributions,
                cumulative_withdrawals=cumulative_withdrawals,
                cumulative_dividends=cumulative_dividends,
                degraded=flows.degraded,
                warnings=flows.warnings,
            )
            previous_value = portfolio_value

    def reconstruct(
        self,
        operations: Sequence[InvestmentOperation],
        today: date,
        from_month: tuple[int, int] | None = None,
        to_month: tuple[int, int] | None = None,
    ) -> list[MonthlyEvolutionPoint]:
        """
        The evolution series narrowed to [from_month, to_month].

        The replay always starts at the first operation; the window only
        filters output, so cumulative sums and returns are the same as in the
        full series.
        """
        last_month: tuple[int, int] = to_month or (today.year, today.month)
        points: list[MonthlyEvolutionPoint] = []
        for point in self.iter_points(operations, last_month, today):
            year, month = point.month_end.year, point.month_end.month
            if from_month and (year, month) < from_month:
                continue
            points.append(point)

        logger.debug(f"Reconstructed {len(points)} monthly points")
        return points

    def _price_requests(
        self,
        operations: Sequence[InvestmentOperation],
        valuation_dates: dict[tuple[int, int], date],
    ) -> list[PriceRequest]:
        first_seen: dict[LotKey, date] = {}
        for operation in operations:
            _ = first_seen.setdefault((operation.asset, operation.currency), operation.date)

        requests: list[PriceRequest] = []
        for month, valued_on in valuation_dates.items():
            boundary: date = month_end(*month)
            for (asset, currency), first_date in first_seen.items():
                if first_date <= boundary:
                    requests.append(PriceRequest(asset, currency, valued_on))
        return requests

    def _normalize(
        self, amount: int, currency: str, on_date: date, asset: str, flows: _MonthFlows
    ) -> int:
        converted: int | None = self.converter.convert(amount, currency, self.base_currency, on_date)
        if converted is not None:
            return converted

        flows.degraded = True
        flows.warnings.append(
            ReplayWarning(
                kind=WarningKind.MISSING_FX_RATE,
                asset=asset,
                message=f"No {currency}->{self.base_currency} rate on {on_date}; amount not converted",
                operation_date=on_date,
            )
        )
        return amount

    def _record_flows(
        self, flows: _MonthFlows, operation: InvestmentOperation, effect: OperationEffect
    ) -> None:
        if effect.warning:
            flows.degraded = True
            flows.warnings.append(effect.warning)
        if not effect.applied:
            return

        def normalize(amount: int) -> int:
            return self._normalize(amount, operation.currency, operation.date, operation.asset, flows)

        match canonical_type(operation.type):
            case OperationType.BUY:
                flows.contributions += normalize(operation.total_amount)
            case OperationType.SELL:
                flows.withdrawals += normalize(operation.total_amount)
                flows.realized_profit += normalize(effect.realized_profit)
            case OperationType.DIVIDEND | OperationType.INTEREST:
                flows.dividends += normalize(effect.dividends)
            case OperationType.STOCK_SPLIT:
                pass
            case _:
                flows.other_cash_flows += normalize(effect.other_cash_flow)

    def _portfolio_value(
        self,
        replays: dict[LotKey, LotReplay],
        prices: dict[PriceRequest, int | None],
        valued_on: date,
        flows: _MonthFlows,
    ) -> int:
        total: int = 0
        for (asset, currency), replay in replays.items():
            if replay.state.quantity == 0:
                continue

            price: int | None = prices.get(PriceRequest(asset, currency, valued_on))
            if price is None:
                value: int = replay.state.cost_basis
                flows.degraded = True
                flows.warnings.append(
                    ReplayWarning(
                        kind=WarningKind.MISSING_VALUATION,
                        asset=asset,
                        message=f"No price for {asset} on {valued_on}; valued at cost",
                        operation_date=valued_on,
                    )
                )
            else:
                value = round_half_up(replay.state.quantity * price)

            total += self._normalize(value, currency, valued_on, asset, flows)
        return total
