import logging
from datetime import date, timedelta
from sqlite3 import Row

from investment_ledger.db import Database
from investment_ledger.models import PriceQuote
from investment_ledger.utils.model_utils import ModelFactory

logger: logging.Logger = logging.getLogger(__name__)


class PriceRepository:
    """Cache of historical closing prices, in minor currency units."""

    def __init__(self, db: Database):
        self.db: Database = db

    def upsert_many(self, quotes: list[PriceQuote]) -> int:
        if not quotes:
            return 0
        _ = self.db.executemany(
            """
            INSERT INTO price_history (asset, currency, date, price)
            VALUES (:asset, :currency, :date, :price)
            ON CONFLICT(asset, currency, date) DO UPDATE SET price = excluded.price
            """,
            [
                {
                    "asset": quote.asset,
                    "currency": quote.currency,
                    "date": quote.date.isoformat(),
                    "price": quote.price,
                }
                for quote in quotes
            ],
        )
        logger.debug(f"Stored {len(quotes)} price quotes")
        return len(quotes)

    def get_price_on_or_before(
        self, asset: str, currency: str, on_date: date, lookback_days: int
    ) -> PriceQuote | None:
        """Latest quote dated on_date or up to lookback_days earlier."""
        row: Row | None = self.db.query_one(
            """
            SELECT * FROM price_history
            WHERE asset = ? AND currency = ? AND date <= ? AND date >= ?
            ORDER BY date DESC
            LIMIT 1
            """,
            (
                asset,
                currency,
                on_date.isoformat(),
                (on_date - timedelta(days=lookback_days)).isoformat(),
            ),
        )
        if not row:
            return None
        return ModelFactory.create_from_row(PriceQuote, row)

    def get_latest_date(self, asset: str, currency: str) -> date | None:
        row: Row | None = self.db.query_one(
            "SELECT MAX(date) AS latest FROM price_history WHERE asset = ? AND currency = ?",
            (asset, currency),
        )
        if not row or row["latest"] is None:
            return None
        return date.fromisoformat(row["latest"])
