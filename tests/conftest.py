import itertools
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from investment_ledger.config import AppConfig, ConfigLoader
from investment_ledger.db import Database
from investment_ledger.models import AssetClass, InvestmentOperation, OperationType, PriceRequest
from investment_ledger.repositories.fx_rate_repository import FxRateRepository
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.repositories.price_repository import PriceRepository
from investment_ledger.services.currency import CurrencyConverter
from investment_ledger.utils.dates import parse_date
from investment_ledger.utils.money import round_half_up


@pytest.fixture
def app_config() -> AppConfig:
    """Load the AppConfig through the normal ConfigLoader using the test config files."""
    return ConfigLoader.load_app_config("test")


@pytest.fixture
def test_db():
    """Create an in-memory test database with the schema applied."""
    with Database(Path(":memory:")) as db:
        db.create_tables_if_not_exists()
        yield db


@pytest.fixture
def operation_repo(test_db: Database) -> OperationRepository:
    return OperationRepository(test_db)


@pytest.fixture
def price_repo(test_db: Database) -> PriceRepository:
    return PriceRepository(test_db)


@pytest.fixture
def fx_rate_repo(test_db: Database) -> FxRateRepository:
    return FxRateRepository(test_db)


@pytest.fixture
def make_operation() -> Callable[..., InvestmentOperation]:
    """
    Factory for InvestmentOperation with sequential ids.

    Prices are minor units; total_amount follows the ledger rules unless given.
    """
    ids = itertools.count(1)

    def _make(
        op_type: OperationType | str,
        on_date: str | date,
        quantity: int | str | Decimal = 0,
        price: int = 0,
        asset: str = "PETR4",
        currency: str = "BRL",
        **kwargs: Any,
    ) -> InvestmentOperation:
        qty = Decimal(str(quantity))
        if "total_amount" in kwargs:
            total_amount: int = kwargs.pop("total_amount")
        elif op_type in (OperationType.BUY, OperationType.SELL):
            total_amount = round_half_up(qty * price)
        elif op_type in (OperationType.DIVIDEND, OperationType.INTEREST):
            total_amount = price
        else:
            total_amount = 0

        return InvestmentOperation(
            id=kwargs.pop("id", next(ids)),
            user_id=kwargs.pop("user_id", "user-1"),
            asset=asset,
            asset_class=kwargs.pop("asset_class", AssetClass.STOCK_EXCHANGE),
            type=op_type,
            date=parse_date(on_date),
            quantity=qty,
            price=price,
            total_amount=total_amount,
            currency=currency,
            **kwargs,
        )

    return _make


@pytest.fixture
def identity_converter() -> MagicMock:
    """A CurrencyConverter that leaves every amount unchanged."""
    converter = MagicMock(spec=CurrencyConverter)
    converter.convert.side_effect = lambda amount, from_ccy, to_ccy, on_date: amount
    return converter


@pytest.fixture
def price_table() -> Callable[[dict[tuple[str, date], int | None]], MagicMock]:
    """Build a mocked ValuationProvider answering from an {(asset, date): price} table."""

    def _provider(table: dict[tuple[str, date], int | None]) -> MagicMock:
        provider = MagicMock()

        def prices_at(requests):
            return {r: table.get((r.asset, r.date)) for r in requests}

        provider.prices_at.side_effect = prices_at
        provider.price_at.side_effect = lambda asset, currency, on_date: table.get((asset, on_date))
        return provider

    return _provider


@pytest.fixture
def price_request() -> Callable[..., PriceRequest]:
    def _request(asset: str, on_date: str | date, currency: str = "BRL") -> PriceRequest:
        return PriceRequest(asset, currency, parse_date(on_date))

    return _request
