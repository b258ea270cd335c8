"""Record command implementation."""

import argparse
import logging
from typing import override

from investment_ledger.commands.base import Command, CommandRegistry
from investment_ledger.display import display_operations, to_json
from investment_ledger.exceptions import InvalidOperationError
from investment_ledger.models import AssetClass, InvestmentOperation, OperationDraft, OperationType
from investment_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@CommandRegistry.register
class RecordCommand(Command):
    """Append a single operation to the ledger."""

    name: str = "record"
    help: str = "Record a buy, sell, dividend, interest or split operation"

    @override
    @classmethod
    def setup_parser(cls, subparser) -> None:
        parser: argparse.ArgumentParser = subparser.add_parser(cls.name, help=cls.help)
        _ = parser.add_argument("type", choices=[t.value for t in OperationType])
        _ = parser.add_argument("asset", help="Asset symbol, e.g. PETR4 or AAPL")
        _ = parser.add_argument(
            "quantity", help="Units (for StockSplit the ratio, e.g. 2 for 2-for-1)"
        )
        _ = parser.add_argument(
            "price", help="Unit price in major units (for Dividend/Interest the total received)"
        )
        _ = parser.add_argument("--date", required=True, help="Operation date YYYY-MM-DD")
        _ = parser.add_argument("--currency", help="Currency code (defaults to config)")
        _ = parser.add_argument("--asset-class", choices=[c.value for c in AssetClass])
        _ = parser.add_argument("--broker")
        _ = parser.add_argument("--notes")
        _ = parser.add_argument("--user", help="User id (defaults to config)")
        _ = parser.add_argument("--json", action="store_true", help="Print the stored operation as JSON")

    @override
    def execute(self, args: argparse.Namespace) -> int:
        ledger_service: LedgerService = self.container.get_service(LedgerService)
        draft = OperationDraft(
            asset=args.asset,
            type=args.type,
            date=args.date,
            quantity=args.quantity,
            price=args.price,
            currency=args.currency,
            asset_class=args.asset_class,
            broker=args.broker,
            notes=args.notes,
        )

        try:
            operation: InvestmentOperation = ledger_service.record_operation(self.user_id(args), draft)
        except InvalidOperationError as e:
            logger.error(f"Invalid operation: {e}")
            print(f"Error: {e}")
            return 1

        if args.json:
            print(to_json(operation))
        else:
            display_operations([operation], title="RECORDED")
        return 0
