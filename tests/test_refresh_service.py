from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from investment_ledger.exceptions import ValuationError
from investment_ledger.models import FxRate, OperationType, PriceQuote
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.services.refresh_service import MarketDataRefreshService
from investment_ledger.services.valuation import YFinanceValuationProvider

TODAY = date(2024, 3, 31)


class TestMarketDataRefreshService:
    @pytest.fixture
    def mock_operation_repo(self, make_operation):
        repo = MagicMock(spec=OperationRepository)
        repo.list_operations.return_value = [
            make_operation(OperationType.BUY, "2024-01-05", 10, 3850),
            make_operation(OperationType.BUY, "2024-01-10", 1, 18000, asset="AAPL", currency="USD"),
            make_operation(OperationType.BUY, "2024-02-01", 5, 6800, asset="VALE3"),
        ]
        return repo

    @pytest.fixture
    def mock_market_data(self):
        market_data = MagicMock(spec=YFinanceValuationProvider)
        market_data.batch_size = 5
        market_data.batch_delay_seconds = 0
        return market_data

    @pytest.fixture
    def service(self, mock_operation_repo, price_repo, fx_rate_repo, mock_market_data):
        return MarketDataRefreshService(
            mock_operation_repo, price_repo, fx_rate_repo, mock_market_data, "BRL", today=lambda: TODAY
        )

    def test_refresh_prices_from_first_operation(self, service, mock_market_data, price_repo):
        mock_market_data.fetch_price_history.side_effect = lambda asset, currency, start, end: [
            PriceQuote(asset, currency, end, 1000)
        ]

        result = service.refresh_prices("user-1")

        assert result.updated == ["PETR4", "AAPL", "VALE3"]
        assert result.failed == []
        assert result.records == 3
        mock_market_data.fetch_price_history.assert_any_call("PETR4", "BRL", date(2024, 1, 5), TODAY)
        mock_market_data.fetch_price_history.assert_any_call("AAPL", "USD", date(2024, 1, 10), TODAY)
        assert price_repo.get_latest_date("VALE3", "BRL") == TODAY

    def test_refresh_prices_resumes_after_cached_date(self, service, mock_market_data, price_repo):
        _ = price_repo.upsert_many([PriceQuote("PETR4", "BRL", date(2024, 3, 15), 4000)])
        mock_market_data.fetch_price_history.return_value = []

        _ = service.refresh_prices("user-1", asset="petr4")

        mock_market_data.fetch_price_history.assert_called_once_with(
            "PETR4", "BRL", date(2024, 3, 16), TODAY
        )

    def test_refresh_prices_skips_up_to_date_asset(self, service, mock_market_data, price_repo):
        _ = price_repo.upsert_many([PriceQuote("PETR4", "BRL", TODAY, 4000)])

        result = service.refresh_prices("user-1", asset="PETR4")

        assert result.updated == ["PETR4"]
        mock_market_data.fetch_price_history.assert_not_called()

    def test_refresh_prices_records_failures(self, service, mock_market_data):
        mock_market_data.fetch_price_history.side_effect = ValuationError("No price data")

        result = service.refresh_prices("user-1", asset="AAPL")

        assert result.failed == ["AAPL"]
        assert result.updated == []

    def test_refresh_fx_for_non_base_currencies(self, service, mock_market_data, fx_rate_repo):
        mock_market_data.fetch_fx_history.return_value = [FxRate("USD", "BRL", date(2024, 3, 28), 4.98)]

        result = service.refresh_fx("user-1")

        mock_market_data.fetch_fx_history.assert_called_once_with("USD", "BRL", date(2024, 1, 10), TODAY)
        assert result.updated == ["USD/BRL"]
        assert result.records == 1
        assert fx_rate_repo.get_rate("USD", "BRL", date(2024, 3, 28)).rate == pytest.approx(4.98)

    @patch("investment_ledger.services.refresh_service.time.sleep")
    def test_pauses_between_batches(self, mock_sleep, service, mock_market_data):
        mock_market_data.batch_size = 2
        mock_market_data.batch_delay_seconds = 1.5
        mock_market_data.fetch_price_history.return_value = []

        _ = service.refresh_prices("user-1")

        mock_sleep.assert_called_once_with(1.5)
