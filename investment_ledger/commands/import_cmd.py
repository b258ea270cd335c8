"""Import command implementation."""

import argparse
import logging
from pathlib import Path
from typing import override

from investment_ledger.commands.base import Command, CommandRegistry
from investment_ledger.importer import import_operations
from investment_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@CommandRegistry.register
class ImportCommand(Command):
    """Command to import operations from a CSV file."""

    name: str = "import"
    help: str = "Import operations from CSV"

    @override
    @classmethod
    def setup_parser(cls, subparser) -> None:
        parser: argparse.ArgumentParser = subparser.add_parser(cls.name, help=cls.help)
        _ = parser.add_argument(
            "file",
            nargs="?",
            help="CSV file to import (defaults to config.csv_path if not specified)",
        )
        _ = parser.add_argument("--user", help="User id (defaults to config)")

    @override
    def execute(self, args: argparse.Namespace) -> int:
        csv_path: Path = Path(args.file) if args.file else self.config.csv_path

        if not csv_path.exists():
            logger.error(f"CSV file not found: {csv_path}")
            print(f"Error: CSV file not found: {csv_path}")
            return 1

        ledger_service: LedgerService = self.container.get_service(LedgerService)

        logger.info(f"Importing operations from {csv_path}")
        print(f"Importing operations from {csv_path}...")
        imported: int = import_operations(csv_path, ledger_service, self.user_id(args))
        print(f"Import completed. {imported} operations added.")
        return 0
