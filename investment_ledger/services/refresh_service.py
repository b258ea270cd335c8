import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta

from investment_ledger.exceptions import ValuationError
from investment_ledger.models import FxRate, InvestmentOperation, PriceQuote
from investment_ledger.repositories.fx_rate_repository import FxRateRepository
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.repositories.price_repository import PriceRepository
from investment_ledger.services.valuation import YFinanceValuationProvider

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    records: int = 0


class MarketDataRefreshService:
    """Fills the local price and FX caches for the assets in a user's ledger."""

    def __init__(
        self,
        operation_repo: OperationRepository,
        price_repo: PriceRepository,
        fx_rate_repo: FxRateRepository,
        market_data: YFinanceValuationProvider,
        base_currency: str,
        today: Callable[[], date] = date.today,
    ):
        self.operation_repo = operation_repo
        self.price_repo = price_repo
        self.fx_rate_repo = fx_rate_repo
        self.market_data = market_data
        self.base_currency = base_currency
        self.today = today

    def _first_dates(self, user_id: str) -> dict[tuple[str, str], date]:
        first_dates: dict[tuple[str, str], date] = {}
        operations: list[InvestmentOperation] = self.operation_repo.list_operations(user_id)
        for operation in operations:
            _ = first_dates.setdefault((operation.asset, operation.currency), operation.date)
        return first_dates

    def _pause(self, index: int) -> None:
        if index and index % self.market_data.batch_size == 0:
            logger.info(f"Sleeping {self.market_data.batch_delay_seconds}s before next batch")
            time.sleep(self.market_data.batch_delay_seconds)

    def refresh_prices(self, user_id: str, asset: str | None = None) -> RefreshResult:
        """
        Download closes from the day after the latest cached one (or the first
        operation) up to today, for every asset or just one.
        """
        result = RefreshResult()
        end: date = self.today()
        targets = [
            (key, first_date)
            for key, first_date in self._first_dates(user_id).items()
            if asset is None or key[0] == asset.upper()
        ]

        for index, ((asset_name, currency), first_date) in enumerate(targets):
            latest: date | None = self.price_repo.get_latest_date(asset_name, currency)
            start: date = latest + timedelta(days=1) if latest else first_date
            if start > end:
                logger.debug(f"Prices for {asset_name} already up to date")
                result.updated.append(asset_name)
                continue

            self._pause(index)
            try:
                quotes: list[PriceQuote] = self.market_data.fetch_price_history(
                    asset_name, currency, start, end
                )
            except ValuationError as e:
                logger.error(f"Error refreshing prices for {asset_name}: {e}")
                result.failed.append(asset_name)
                continue

            result.records += self.price_repo.upsert_many(quotes)
            result.updated.append(asset_name)
            logger.info(f"Stored {len(quotes)} prices for {asset_name} ({currency})")

        return result

    def refresh_fx(self, user_id: str) -> RefreshResult:
        """Download rates into the base currency for every other currency in the ledger."""
        result = RefreshResult()
        end: date = self.today()

        first_by_currency: dict[str, date] = {}
        for (_, currency), first_date in self._first_dates(user_id).items():
            if currency.upper() == self.base_currency.upper():
                continue
            known: date | None = first_by_currency.get(currency)
            first_by_currency[currency] = min(known, first_date) if known else first_date

        for index, (currency, start) in enumerate(sorted(first_by_currency.items())):
            pair: str = f"{currency}/{self.base_currency}"
            self._pause(index)
            try:
                rates: list[FxRate] = self.market_data.fetch_fx_history(
                    currency, self.base_currency, start, end
                )
            except ValuationError as e:
                logger.error(f"Error refreshing FX rates for {pair}: {e}")
                result.failed.append(pair)
                continue

            result.records += self.fx_rate_repo.insert_many(rates)
            result.updated.append(pair)
            logger.info(f"Stored {len(rates)} FX rates for {pair}")

        return result
