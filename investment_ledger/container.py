"""
Service container for dependency injection.

Builds the repositories and services once per CLI invocation from the
AppConfig and an open Database.
"""

import logging
from typing import TypeVar, cast

from investment_ledger.config import AppConfig
from investment_ledger.db import Database
from investment_ledger.repositories.fx_rate_repository import FxRateRepository
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.repositories.price_repository import PriceRepository
from investment_ledger.services.currency import CurrencyConverter
from investment_ledger.services.ledger_service import LedgerService
from investment_ledger.services.portfolio_service import PortfolioService
from investment_ledger.services.refresh_service import MarketDataRefreshService
from investment_ledger.services.valuation import CachedValuationProvider, YFinanceValuationProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceContainer:
    """Container for application services and repositories."""

    def __init__(self, config: AppConfig, db: Database):
        self.config = config
        self.db = db
        self._repositories: dict[type, object] = {}
        self._services: dict[type, object] = {}

        self._init_repositories()
        self._init_services()

    def _init_repositories(self) -> None:
        self._repositories[OperationRepository] = OperationRepository(self.db)
        self._repositories[PriceRepository] = PriceRepository(self.db)
        self._repositories[FxRateRepository] = FxRateRepository(self.db)

    def _init_services(self) -> None:
        config: AppConfig = self.config
        operation_repo: OperationRepository = self.get_repository(OperationRepository)
        price_repo: PriceRepository = self.get_repository(PriceRepository)
        fx_rate_repo: FxRateRepository = self.get_repository(FxRateRepository)

        market_data = YFinanceValuationProvider(
            lookback_days=config.price_lookback_days,
            batch_size=config.yf_max_requests,
            batch_delay_seconds=config.yf_request_interval_seconds,
            cache_path=config.yf_cache_path,
            symbol_overrides=config.yf_symbols,
        )
        converter = CurrencyConverter(fx_rate_repo, config.price_lookback_days)
        valuation = CachedValuationProvider(
            price_repo,
            lookback_days=config.price_lookback_days,
            upstream=market_data if config.fetch_missing_prices else None,
        )

        self._services[CurrencyConverter] = converter
        self._services[YFinanceValuationProvider] = market_data
        self._services[CachedValuationProvider] = valuation
        self._services[LedgerService] = LedgerService(operation_repo, config.default_currency)
        self._services[PortfolioService] = PortfolioService(
            operation_repo, valuation, converter, config.base_currency
        )
        self._services[MarketDataRefreshService] = MarketDataRefreshService(
            operation_repo, price_repo, fx_rate_repo, market_data, config.base_currency
        )
        logger.debug(f"Services initialised (fetch_missing_prices={config.fetch_missing_prices})")

    def get_repository(self, repo_type: type[T]) -> T:
        """
        Get a repository instance by type.

        Raises:
            KeyError: If repository type is not registered
        """
        if repo_type not in self._repositories:
            raise KeyError(f"Repository {repo_type.__name__} not registered")

        return cast(T, self._repositories[repo_type])

    def get_service(self, service_type: type[T]) -> T:
        """
        Get a service instance by type.

        Raises:
            KeyError: If service type is not registered
        """
        if service_type not in self._services:
            raise KeyError(f"Service {service_type.__name__} not registered")

        return cast(T, self._services[service_type])
