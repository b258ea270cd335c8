"""Refresh command implementation."""

import argparse
import logging
from typing import override

from investment_ledger.commands.base import Command, CommandRegistry
from investment_ledger.services.refresh_service import MarketDataRefreshService, RefreshResult

logger = logging.getLogger(__name__)


@CommandRegistry.register
class RefreshCommand(Command):
    """Command to refresh cached market data."""

    name: str = "refresh"
    help: str = "Download prices and FX rates for the assets in the ledger"

    @override
    @classmethod
    def setup_parser(cls, subparser) -> None:
        parser: argparse.ArgumentParser = subparser.add_parser(cls.name, help=cls.help)
        _ = parser.add_argument(
            "type", choices=["prices", "fx", "all"], help="Type of data to refresh"
        )
        _ = parser.add_argument("--asset", help="Only refresh prices for this asset")
        _ = parser.add_argument("--user", help="User id (defaults to config)")

    @override
    def execute(self, args: argparse.Namespace) -> int:
        refresh_service: MarketDataRefreshService = self.container.get_service(
            MarketDataRefreshService
        )
        user_id: str = self.user_id(args)
        result = 0  # 0 = success, non-zero = at least one download failed

        if args.type in ["prices", "all"]:
            print("Refreshing prices...")
            prices: RefreshResult = refresh_service.refresh_prices(user_id, args.asset)
            result = self._report("price", prices) or result

        if args.type in ["fx", "all"]:
            print("Refreshing FX rates...")
            rates: RefreshResult = refresh_service.refresh_fx(user_id)
            result = self._report("FX rate", rates) or result

        return result

    @staticmethod
    def _report(kind: str, refresh: RefreshResult) -> int:
        print(f"Stored {refresh.records} {kind} records for {len(refresh.updated)} item(s).")
        if refresh.failed:
            print(f"Failed: {', '.join(refresh.failed)}")
            return 1
        return 0
