import sqlite3
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from investment_ledger.db import Database
from investment_ledger.exceptions import LedgerUnavailableError
from investment_ledger.models import AssetClass, FxRate, OperationType, PriceQuote
from investment_ledger.repositories.operation_repository import OperationRepository

BUY, SELL = OperationType.BUY, OperationType.SELL


class TestOperationRepository:
    def test_insert_assigns_id_and_round_trips_fields(self, operation_repo, make_operation):
        stored = operation_repo.insert(
            make_operation(BUY, "2024-01-05", "10.5", 3850, id=None, broker="XP", notes="first")
        )

        assert stored.id is not None
        assert stored.created_at is not None

        loaded = operation_repo.get_by_id(stored.id)
        assert loaded is not None
        assert loaded.quantity == Decimal("10.5")
        assert loaded.price == 3850
        assert loaded.total_amount == stored.total_amount
        assert loaded.type == OperationType.BUY
        assert loaded.asset_class == AssetClass.STOCK_EXCHANGE
        assert loaded.date == date(2024, 1, 5)
        assert loaded.broker == "XP"
        assert loaded.notes == "first"

    def test_unknown_type_label_is_preserved(self, operation_repo, make_operation):
        stored = operation_repo.insert(make_operation("Transfer", "2024-01-05", 1, 100, id=None))

        loaded = operation_repo.get_by_id(stored.id)

        assert loaded.type == "Transfer"
        assert not isinstance(loaded.type, OperationType)

    def test_list_is_ordered_by_date_then_insertion(self, operation_repo, make_operation):
        later = operation_repo.insert(make_operation(BUY, "2024-02-01", 1, 100, id=None))
        first_same_day = operation_repo.insert(make_operation(BUY, "2024-01-10", 1, 100, id=None))
        second_same_day = operation_repo.insert(make_operation(SELL, "2024-01-10", 1, 100, id=None))

        ids = [op.id for op in operation_repo.list_operations("user-1")]

        assert ids == [first_same_day.id, second_same_day.id, later.id]

    def test_list_filters(self, operation_repo, make_operation):
        for asset, on_date in [("PETR4", "2024-01-05"), ("VALE3", "2024-01-06"), ("PETR4", "2024-03-01")]:
            _ = operation_repo.insert(make_operation(BUY, on_date, 1, 100, asset=asset, id=None))
        _ = operation_repo.insert(make_operation(BUY, "2024-01-05", 1, 100, user_id="other", id=None))

        assert len(operation_repo.list_operations("user-1")) == 3
        assert len(operation_repo.list_operations("user-1", asset="PETR4")) == 2
        assert len(operation_repo.list_operations("user-1", until_date=date(2024, 1, 31))) == 2
        assert len(operation_repo.list_operations("other")) == 1

    def test_list_between(self, operation_repo, make_operation):
        for on_date in ["2024-01-31", "2024-02-01", "2024-02-29", "2024-03-01"]:
            _ = operation_repo.insert(make_operation(BUY, on_date, 1, 100, id=None))

        february = operation_repo.list_operations_between("user-1", date(2024, 2, 1), date(2024, 2, 29))

        assert [op.date.isoformat() for op in february] == ["2024-02-01", "2024-02-29"]

    def test_list_assets(self, operation_repo, make_operation):
        _ = operation_repo.insert(make_operation(BUY, "2024-01-05", 1, 100, asset="VALE3", id=None))
        _ = operation_repo.insert(make_operation(BUY, "2024-01-05", 1, 100, asset="BTC", currency="USD", id=None))
        _ = operation_repo.insert(make_operation(BUY, "2024-01-06", 1, 100, asset="VALE3", id=None))

        assert operation_repo.list_assets("user-1") == [("BTC", "USD"), ("VALE3", "BRL")]

    def test_get_missing_returns_none(self, operation_repo):
        assert operation_repo.get_by_id(999) is None

    def test_storage_failure_raises_ledger_unavailable(self, make_operation):
        db = MagicMock(spec=Database)
        db.query_all.side_effect = sqlite3.OperationalError("disk I/O error")
        db.execute.side_effect = sqlite3.OperationalError("database is locked")
        repo = OperationRepository(db)

        with pytest.raises(LedgerUnavailableError):
            _ = repo.list_operations("user-1")
        with pytest.raises(LedgerUnavailableError):
            _ = repo.insert(make_operation(BUY, "2024-01-05", 1, 100, id=None))


class TestPriceRepository:
    def test_lookup_on_or_before_within_lookback(self, price_repo):
        _ = price_repo.upsert_many(
            [
                PriceQuote("PETR4", "BRL", date(2024, 1, 26), 3800),
                PriceQuote("PETR4", "BRL", date(2024, 1, 29), 3850),
            ]
        )

        # Weekend month end picks the last trading day
        assert price_repo.get_price_on_or_before("PETR4", "BRL", date(2024, 1, 31), 7).price == 3850
        assert price_repo.get_price_on_or_before("PETR4", "BRL", date(2024, 1, 27), 7).price == 3800
        assert price_repo.get_price_on_or_before("PETR4", "BRL", date(2024, 2, 20), 7) is None
        assert price_repo.get_price_on_or_before("PETR4", "USD", date(2024, 1, 31), 7) is None

    def test_upsert_replaces_price(self, price_repo):
        _ = price_repo.upsert_many([PriceQuote("PETR4", "BRL", date(2024, 1, 29), 3850)])
        _ = price_repo.upsert_many([PriceQuote("PETR4", "BRL", date(2024, 1, 29), 3900)])

        assert price_repo.get_price_on_or_before("PETR4", "BRL", date(2024, 1, 29), 0).price == 3900

    def test_latest_date(self, price_repo):
        assert price_repo.get_latest_date("PETR4", "BRL") is None

        _ = price_repo.upsert_many(
            [
                PriceQuote("PETR4", "BRL", date(2024, 1, 26), 3800),
                PriceQuote("PETR4", "BRL", date(2024, 1, 29), 3850),
            ]
        )

        assert price_repo.get_latest_date("PETR4", "BRL") == date(2024, 1, 29)

    def test_empty_upsert(self, price_repo):
        assert price_repo.upsert_many([]) == 0


class TestFxRateRepository:
    def test_exact_and_on_or_before(self, fx_rate_repo):
        fx_rate_repo.insert(FxRate("USD", "BRL", date(2024, 1, 26), 4.91))
        _ = fx_rate_repo.insert_many([FxRate("USD", "BRL", date(2024, 1, 29), 4.95)])

        assert fx_rate_repo.get_rate("USD", "BRL", date(2024, 1, 26)).rate == pytest.approx(4.91)
        assert fx_rate_repo.get_rate("USD", "BRL", date(2024, 1, 27)) is None
        assert fx_rate_repo.get_rate_on_or_before("USD", "BRL", date(2024, 1, 31), 7).rate == pytest.approx(4.95)
        assert fx_rate_repo.get_rate_on_or_before("BRL", "USD", date(2024, 1, 31), 7) is None
