"""
Valuation providers: the only place the engine asks for market prices.

The engine depends on the narrow `ValuationProvider` interface. Lookups are
batched through `prices_at` so one reconstruction issues one request for all
the (asset, currency, date) points it needs.
"""

import logging
import random
import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, timedelta
from pathlib import Path
from typing import Protocol

import pandas as pd
import yfinance as yf

from investment_ledger.exceptions import ValuationError
from investment_ledger.models import FxRate, PriceQuote, PriceRequest
from investment_ledger.repositories.price_repository import PriceRepository
from investment_ledger.utils.money import to_decimal, to_minor_units

logger: logging.Logger = logging.getLogger(__name__)


class ValuationProvider(Protocol):
    def price_at(self, asset: str, currency: str, on_date: date) -> int | None:
        """Price per unit in minor currency units, or None when unavailable."""
        ...

    def prices_at(self, requests: Iterable[PriceRequest]) -> dict[PriceRequest, int | None]:
        """Batched price_at. Every request appears in the result."""
        ...


def _group_dates(requests: Iterable[PriceRequest]) -> dict[tuple[str, str], list[date]]:
    by_asset: dict[tuple[str, str], list[date]] = defaultdict(list)
    for request in requests:
        by_asset[(request.asset, request.currency)].append(request.date)
    return by_asset


def _latest_on_or_before(
    quotes: list[PriceQuote], on_date: date, lookback_days: int
) -> PriceQuote | None:
    earliest: date = on_date - timedelta(days=lookback_days)
    candidates = [q for q in quotes if earliest <= q.date <= on_date]
    return max(candidates, key=lambda q: q.date) if candidates else None


class YFinanceValuationProvider:
    """
    Daily closing prices and FX rates from Yahoo Finance.

    Yahoo reports closes adjusted for every later split. Ledger quantities are
    the quantities actually held on each date, so closes are un-adjusted with
    the ticker's split history before use.
    """

    # Exchange suffix Yahoo expects for listings quoted in these currencies
    CURRENCY_SUFFIXES: dict[str, str] = {"BRL": ".SA"}

    def __init__(
        self,
        lookback_days: int = 7,
        max_retries: int = 3,
        batch_size: int = 5,
        batch_delay_seconds: float = 1.0,
        cache_path: Path | None = None,
        symbol_overrides: dict[str, str] | None = None,
    ):
        self.lookback_days = lookback_days
        self.max_retries = max_retries
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.symbol_overrides: dict[str, str] = symbol_overrides or {}
        if cache_path:
            cache_path.mkdir(parents=True, exist_ok=True)
            yf.set_tz_cache_location(str(cache_path))

    def symbol_for(self, asset: str, currency: str) -> str:
        """Yahoo symbol for a ledger asset."""
        if asset in self.symbol_overrides:
            return self.symbol_overrides[asset]
        suffix: str | None = self.CURRENCY_SUFFIXES.get(currency.upper())
        if suffix and "." not in asset:
            return f"{asset}{suffix}"
        return asset

    def price_at(self, asset: str, currency: str, on_date: date) -> int | None:
        request = PriceRequest(asset, currency, on_date)
        return self.prices_at([request])[request]

    def prices_at(self, requests: Iterable[PriceRequest]) -> dict[PriceRequest, int | None]:
        unique_requests: list[PriceRequest] = list(dict.fromkeys(requests))
        results: dict[PriceRequest, int | None] = dict.fromkeys(unique_requests)

        for index, ((asset, currency), dates) in enumerate(_group_dates(unique_requests).items()):
            if index and index % self.batch_size == 0:
                time.sleep(self.batch_delay_seconds)
            try:
                quotes: list[PriceQuote] = self.fetch_price_history(
                    asset, currency, min(dates), max(dates)
                )
            except ValuationError as e:
                logger.warning(str(e))
                continue
            for on_date in dates:
                quote = _latest_on_or_before(quotes, on_date, self.lookback_days)
                results[PriceRequest(asset, currency, on_date)] = quote.price if quote else None

        return results

    def fetch_price_history(
        self, asset: str, currency: str, start: date, end: date
    ) -> list[PriceQuote]:
        """
        Un-adjusted daily closes for an asset, including the lookback window before start.

        Raises:
            ValuationError: If Yahoo cannot be reached after retries or knows no such symbol
        """
        symbol: str = self.symbol_for(asset, currency)
        ticker, history = self._download(symbol, start - timedelta(days=self.lookback_days), end)
        closes: pd.Series = history["Close"].dropna()

        splits: pd.Series = ticker.splits
        if not splits.empty:
            factors = pd.Series(1.0, index=closes.index)
            for split_date, ratio in splits.items():
                if ratio > 0:
                    factors[closes.index < split_date] *= ratio
            closes = closes * factors

        quotes: list[PriceQuote] = [
            PriceQuote(
                asset=asset,
                currency=currency,
                date=timestamp.date(),
                price=to_minor_units(to_decimal(float(close)), currency),
            )
            for timestamp, close in closes.items()
        ]
        logger.debug(f"Fetched {len(quotes)} closes for {asset} as {symbol}")
        return quotes

    def fetch_fx_history(
        self, base_currency: str, target_currency: str, start: date, end: date
    ) -> list[FxRate]:
        """Daily rates quoting target_currency per unit of base_currency."""
        symbol: str = f"{base_currency.upper()}{target_currency.upper()}=X"
        _, history = self._download(symbol, start - timedelta(days=self.lookback_days), end)
        return [
            FxRate(
                base_currency=base_currency.upper(),
                target_currency=target_currency.upper(),
                date=timestamp.date(),
                rate=float(rate),
            )
            for timestamp, rate in history["Close"].dropna().items()
        ]

    def _download(self, symbol: str, start: date, end: date) -> tuple[yf.Ticker, pd.DataFrame]:
        retry_count = 0

        while True:
            try:
                # Don't pass a custom session
                ticker: yf.Ticker = yf.Ticker(symbol)
                history: pd.DataFrame = ticker.history(
                    start=start.isoformat(),
                    end=(end + timedelta(days=1)).isoformat(),
                    interval="1d",
                    auto_adjust=False,
                )
            except Exception as e:
                error_message: str = str(e).lower()
                if "rate limit" not in error_message and "too many requests" not in error_message:
                    raise ValuationError(f"Price download failed for {symbol}: {e}") from e

                retry_count += 1
                if retry_count > self.max_retries:
                    raise ValuationError(f"Rate limit exceeded for {symbol}") from e

                # Exponential backoff with jitter
                wait_time: float = min(60, (2**retry_count) + (random.randint(0, 1000) / 1000))
                logger.warning(f"Rate limited for {symbol}. Retrying in {wait_time:.2f} seconds")
                time.sleep(wait_time)
                continue

            if history.empty or "Close" not in history:
                raise ValuationError(f"No price data for {symbol} between {start} and {end}")
            return ticker, history


class CachedValuationProvider:
    """
    Serves prices from the local price history cache.

    Misses are fetched from the upstream provider, one history download per
    (asset, currency) covering every missing date, then stored. Upstream
    failures leave the price unavailable instead of failing the request.
    """

    def __init__(
        self,
        price_repo: PriceRepository,
        lookback_days: int = 7,
        upstream: YFinanceValuationProvider | None = None,
    ):
        self.price_repo = price_repo
        self.lookback_days = lookback_days
        self.upstream = upstream

    def price_at(self, asset: str, currency: str, on_date: date) -> int | None:
        request = PriceRequest(asset, currency, on_date)
        return self.prices_at([request])[request]

    def prices_at(self, requests: Iterable[PriceRequest]) -> dict[PriceRequest, int | None]:
        unique_requests: list[PriceRequest] = list(dict.fromkeys(requests))
        results: dict[PriceRequest, int | None] = {
            request: self._lookup(request) for request in unique_requests
        }

        missing: list[PriceRequest] = [r for r, price in results.items() if price is None]
        if missing and self.upstream is not None:
            self._fetch_missing(missing, self.upstream)
            for request in missing:
                results[request] = self._lookup(request)

        unavailable: int = sum(1 for price in results.values() if price is None)
        if unavailable:
            logger.info(f"{unavailable} of {len(results)} price lookups unavailable")
        return results

    def _lookup(self, request: PriceRequest) -> int | None:
        quote: PriceQuote | None = self.price_repo.get_price_on_or_before(
            request.asset, request.currency, request.date, self.lookback_days
        )
        return quote.price if quote else None

    def _fetch_missing(
        self, missing: list[PriceRequest], upstream: YFinanceValuationProvider
    ) -> None:
        for (asset, currency), dates in _group_dates(missing).items():
            try:
                quotes: list[PriceQuote] = upstream.fetch_price_history(
                    asset, currency, min(dates), max(dates)
                )
            except ValuationError as e:
                logger.warning(f"Failed to fetch prices for {asset} ({currency}): {e}")
                continue
            _ = self.price_repo.upsert_many(quotes)
