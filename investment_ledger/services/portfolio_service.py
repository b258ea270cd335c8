import logging
from collections import defaultdict
from collections.abc import Callable, Iterator
from datetime import date

from investment_ledger.models import (
    InvestmentOperation,
    LotState,
    MonthlyEvolutionPoint,
    Position,
    PriceRequest,
    RealizedProfit,
    ResolvedLot,
)
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.services.cost_basis import LotKey, resolve_all, resolve_lot
from investment_ledger.services.currency import CurrencyConverter
from investment_ledger.services.evolution import MonthlyEvolutionReconstructor
from investment_ledger.services.position_builder import build_positions, price_requests_for
from investment_ledger.services.valuation import ValuationProvider
from investment_ledger.utils.dates import parse_month

logger: logging.Logger = logging.getLogger(__name__)


class PortfolioService:
    """
    Read side of the ledger: positions, realized results and monthly history.

    Everything is derived from the operations on every call; nothing computed
    here is stored.
    """

    def __init__(
        self,
        operation_repo: OperationRepository,
        valuation: ValuationProvider,
        converter: CurrencyConverter,
        base_currency: str = "BRL",
        today: Callable[[], date] = date.today,
    ):
        self.operation_repo = operation_repo
        self.valuation = valuation
        self.converter = converter
        self.base_currency = base_currency
        self.today = today
        self.reconstructor = MonthlyEvolutionReconstructor(valuation, converter, base_currency)

    def get_current_positions(self, user_id: str, as_of: date | None = None) -> list[Position]:
        """Open positions as of a date (default today), valued at that date's prices."""
        as_of = as_of or self.today()
        operations: list[InvestmentOperation] = self.operation_repo.list_operations(
            user_id, until_date=as_of
        )
        lots: dict[LotKey, ResolvedLot] = resolve_all(operations, until=as_of)
        prices: dict[PriceRequest, int | None] = self.valuation.prices_at(
            price_requests_for(lots.values(), as_of)
        )
        positions: list[Position] = build_positions(
            lots.values(), prices, self.converter, self.base_currency, as_of
        )
        logger.debug(f"Built {len(positions)} positions for user {user_id} as of {as_of}")
        return positions

    def iter_monthly_evolution(
        self, user_id: str, to_month: str | None = None
    ) -> Iterator[MonthlyEvolutionPoint]:
        """Lazily yield the evolution from the first operation's month onwards."""
        today: date = self.today()
        last_month: tuple[int, int] = parse_month(to_month) if to_month else (today.year, today.month)
        operations: list[InvestmentOperation] = self.operation_repo.list_operations(user_id)
        return self.reconstructor.iter_points(operations, last_month, today)

    def get_monthly_evolution(
        self, user_id: str, from_month: str | None = None, to_month: str | None = None
    ) -> list[MonthlyEvolutionPoint]:
        """
        One point per month, first operation's month to to_month (default the
        current month), narrowed to months from from_month onwards.

        Raises:
            ValueError: If a month is not "YYYY-MM" or from_month is after to_month
        """
        start: tuple[int, int] | None = parse_month(from_month) if from_month else None
        end: tuple[int, int] | None = parse_month(to_month) if to_month else None
        if start and end and start > end:
            raise ValueError(f"from_month {from_month} is after to_month {to_month}")

        operations: list[InvestmentOperation] = self.operation_repo.list_operations(user_id)
        return self.reconstructor.reconstruct(operations, self.today(), start, end)

    def get_operation_history_for_asset(self, user_id: str, asset: str) -> list[InvestmentOperation]:
        return self.operation_repo.list_operations(user_id, asset=asset.upper())

    def get_lot_history(
        self, user_id: str, asset: str
    ) -> list[tuple[InvestmentOperation, LotState]]:
        """Every operation of an asset paired with the lot state right after it."""
        by_currency: dict[str, list[InvestmentOperation]] = defaultdict(list)
        for operation in self.get_operation_history_for_asset(user_id, asset):
            by_currency[operation.currency].append(operation)

        history: list[tuple[InvestmentOperation, LotState]] = []
        for operations in by_currency.values():
            lot: ResolvedLot | None = resolve_lot(operations, keep_history=True)
            if lot:
                history.extend(zip(operations, lot.history, strict=True))
        history.sort(key=lambda pair: pair[0].sort_key)
        return history

    def get_realized_profit_report(
        self, user_id: str, as_of: date | None = None
    ) -> list[RealizedProfit]:
        """
        Realized profit and income per (asset, currency), closed positions included.

        Replay warnings are carried on each item, so a warning on a lot with
        nothing held (e.g. a Sell of an asset never bought) is still reported.
        """
        operations: list[InvestmentOperation] = self.operation_repo.list_operations(
            user_id, until_date=as_of
        )
        lots: dict[LotKey, ResolvedLot] = resolve_all(operations, until=as_of)
        return [
            RealizedProfit(
                asset=lot.asset,
                currency=lot.currency,
                quantity=lot.state.quantity,
                realized_profit=lot.realized_profit,
                dividends=lot.dividends,
                closed=lot.state.quantity == 0,
                warnings=list(lot.warnings),
            )
            for _, lot in sorted(lots.items())
        ]
