"""Report command implementation."""

import argparse
import logging
from datetime import date
from typing import override

from investment_ledger.commands.base import Command, CommandRegistry
from investment_ledger.display import (
    display_evolution,
    display_lot_history,
    display_operations,
    display_positions,
    display_realized,
    to_json,
)
from investment_ledger.services.ledger_service import LedgerService
from investment_ledger.services.portfolio_service import PortfolioService
from investment_ledger.utils.dates import parse_date

logger = logging.getLogger(__name__)


@CommandRegistry.register
class ReportCommand(Command):
    """Command to generate reports."""

    name: str = "report"
    help: str = "Generate reports"

    @override
    @classmethod
    def setup_parser(cls, subparser) -> None:
        parser: argparse.ArgumentParser = subparser.add_parser(cls.name, help=cls.help)
        _ = parser.add_argument(
            "type",
            choices=["positions", "evolution", "history", "realized", "month"],
            help="Type of report to generate",
        )
        _ = parser.add_argument("--as-of", help="Cutoff date YYYY-MM-DD (positions, realized)")
        _ = parser.add_argument("--from-month", help="First month YYYY-MM (evolution)")
        _ = parser.add_argument("--to-month", help="Last month YYYY-MM (evolution)")
        _ = parser.add_argument("--asset", help="Asset symbol (history)")
        _ = parser.add_argument("--month", help="Month YYYY-MM (month)")
        _ = parser.add_argument("--user", help="User id (defaults to config)")
        _ = parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    @override
    def execute(self, args: argparse.Namespace) -> int:
        report_type: str = str(args.type)
        user_id: str = self.user_id(args)
        portfolio_service: PortfolioService = self.container.get_service(PortfolioService)
        ledger_service: LedgerService = self.container.get_service(LedgerService)
        base_currency: str = self.config.base_currency

        try:
            as_of: date | None = parse_date(args.as_of) if args.as_of else None

            if report_type == "positions":
                positions = portfolio_service.get_current_positions(user_id, as_of)
                if args.json:
                    print(to_json(positions))
                else:
                    display_positions(positions, base_currency)

            elif report_type == "evolution":
                points = portfolio_service.get_monthly_evolution(
                    user_id, args.from_month, args.to_month
                )
                if args.json:
                    print(to_json(points))
                else:
                    display_evolution(points, base_currency)

            elif report_type == "history":
                if not args.asset:
                    print("Error: --asset is required for the history report")
                    return 1
                history = portfolio_service.get_lot_history(user_id, args.asset)
                if args.json:
                    print(to_json(history))
                else:
                    display_lot_history(history)

            elif report_type == "realized":
                report = portfolio_service.get_realized_profit_report(user_id, as_of)
                if args.json:
                    print(to_json(report))
                else:
                    display_realized(report)

            elif report_type == "month":
                month: str = args.month or date.today().strftime("%Y-%m")
                operations = ledger_service.get_operations_by_month(user_id, month)
                if args.json:
                    print(to_json(operations))
                else:
                    display_operations(operations, title=f"OPERATIONS {month}")

            return 0
        except ValueError as e:
            logger.error(f"Invalid report arguments: {e}")
            print(f"Error: {e}")
            return 1
