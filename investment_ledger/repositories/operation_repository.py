import logging
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import date, datetime
from sqlite3 import Cursor, Row
from typing import Any

from investment_ledger.db import Database
from investment_ledger.exceptions import LedgerUnavailableError
from investment_ledger.models import InvestmentOperation
from investment_ledger.utils.model_utils import ModelFactory
from investment_ledger.utils.money import scale_quantity, unscale_quantity

logger: logging.Logger = logging.getLogger(__name__)

_CONVERTERS: Mapping[str, Callable[[Any], Any]] = {
    "quantity": lambda value: unscale_quantity(int(value)),
}


class OperationRepository:
    """
    Append-only store of investment operations: the system of record.

    There is no update or delete; corrections are new operations. Reads are
    always ordered by (date, id) so replays are deterministic.
    """

    def __init__(self, db: Database) -> None:
        self.db: Database = db

    def insert(self, operation: InvestmentOperation) -> InvestmentOperation:
        """Append an operation and return it with its id and created_at set."""
        created_at: datetime = operation.created_at or datetime.now().replace(microsecond=0)
        try:
            cursor: Cursor = self.db.execute(
                """
                INSERT INTO investment_operations (
                    user_id, asset, asset_class, type, date, quantity, price,
                    total_amount, currency, broker, notes, created_at
                )
                VALUES (
                    :user_id, :asset, :asset_class, :type, :date, :quantity, :price,
                    :total_amount, :currency, :broker, :notes, :created_at
                )
                """,
                {
                    "user_id": operation.user_id,
                    "asset": operation.asset,
                    "asset_class": str(operation.asset_class),
                    "type": str(operation.type),
                    "date": operation.date.isoformat(),
                    "quantity": scale_quantity(operation.quantity),
                    "price": operation.price,
                    "total_amount": operation.total_amount,
                    "currency": operation.currency,
                    "broker": operation.broker,
                    "notes": operation.notes,
                    "created_at": created_at.isoformat(sep=" "),
                },
            )
        except sqlite3.Error as e:
            raise LedgerUnavailableError(f"Failed to append operation: {e}") from e

        if not cursor.lastrowid:
            raise LedgerUnavailableError("Failed to obtain id of operation after inserting into db.")

        logger.debug(
            f"Appended operation {cursor.lastrowid}: {operation.type} {operation.asset} on {operation.date}"
        )
        return replace(operation, id=cursor.lastrowid, created_at=created_at)

    def list_operations(
        self, user_id: str, asset: str | None = None, until_date: date | None = None
    ) -> list[InvestmentOperation]:
        """Operations of a user, optionally for one asset and up to a date, in replay order."""
        query_parts: list[str] = ["SELECT * FROM investment_operations WHERE user_id = ?"]
        params: list[str] = [user_id]

        if asset:
            query_parts.append("AND asset = ?")
            params.append(asset)

        if until_date:
            query_parts.append("AND date <= ?")
            params.append(until_date.isoformat())

        query_parts.append("ORDER BY date ASC, id ASC")
        return self._query(" ".join(query_parts), params)

    def list_operations_between(
        self, user_id: str, start_date: date, end_date: date
    ) -> list[InvestmentOperation]:
        """Operations dated within [start_date, end_date], in replay order."""
        return self._query(
            """
            SELECT * FROM investment_operations
            WHERE user_id = ? AND date BETWEEN ? AND ?
            ORDER BY date ASC, id ASC
            """,
            [user_id, start_date.isoformat(), end_date.isoformat()],
        )

    def get_by_id(self, operation_id: int) -> InvestmentOperation | None:
        try:
            row: Row | None = self.db.query_one(
                "SELECT * FROM investment_operations WHERE id = ?", (operation_id,)
            )
        except sqlite3.Error as e:
            raise LedgerUnavailableError(f"Failed to read operation {operation_id}: {e}") from e
        if not row:
            return None
        return ModelFactory.create_from_row(InvestmentOperation, row, _CONVERTERS)

    def list_assets(self, user_id: str) -> list[tuple[str, str]]:
        """Distinct (asset, currency) pairs a user has ever operated on."""
        try:
            rows: list[Row] = self.db.query_all(
                """
                SELECT DISTINCT asset, currency FROM investment_operations
                WHERE user_id = ?
                ORDER BY asset, currency
                """,
                (user_id,),
            )
        except sqlite3.Error as e:
            raise LedgerUnavailableError(f"Failed to list assets for user {user_id}: {e}") from e
        return [(row["asset"], row["currency"]) for row in rows]

    def _query(self, query: str, params: list[str]) -> list[InvestmentOperation]:
        try:
            rows: list[Row] = self.db.query_all(query, params)
        except sqlite3.Error as e:
            raise LedgerUnavailableError(f"Failed to read operations: {e}") from e
        logger.debug(f"Loaded {len(rows)} operations")
        return ModelFactory.create_list_from_rows(InvestmentOperation, rows, _CONVERTERS)
