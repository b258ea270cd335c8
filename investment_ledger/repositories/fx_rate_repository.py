import logging
from datetime import date, timedelta
from sqlite3 import Row

from investment_ledger.db import Database
from investment_ledger.models import FxRate
from investment_ledger.utils.model_utils import ModelFactory

logger: logging.Logger = logging.getLogger(__name__)


class FxRateRepository:
    def __init__(self, db: Database):
        self.db: Database = db

    def insert(self, fx_rate: FxRate) -> None:
        _ = self.db.execute(
            """
            INSERT INTO fx_rates (base_currency, target_currency, date, rate)
            VALUES (:base_currency, :target_currency, :date, :rate)
            ON CONFLICT(base_currency, target_currency, date) DO UPDATE SET rate = excluded.rate
            """,
            {
                "base_currency": fx_rate.base_currency,
                "target_currency": fx_rate.target_currency,
                "date": fx_rate.date.isoformat(),
                "rate": fx_rate.rate,
            },
        )

    def insert_many(self, fx_rates: list[FxRate]) -> int:
        if not fx_rates:
            return 0
        _ = self.db.executemany(
            """
            INSERT INTO fx_rates (base_currency, target_currency, date, rate)
            VALUES (:base_currency, :target_currency, :date, :rate)
            ON CONFLICT(base_currency, target_currency, date) DO UPDATE SET rate = excluded.rate
            """,
            [
                {
                    "base_currency": rate.base_currency,
                    "target_currency": rate.target_currency,
                    "date": rate.date.isoformat(),
                    "rate": rate.rate,
                }
                for rate in fx_rates
            ],
        )
        return len(fx_rates)

    def get_rate(self, base_currency: str, target_currency: str, date: date) -> FxRate | None:
        row: Row | None = self.db.query_one(
            "SELECT * FROM fx_rates WHERE base_currency = ? AND target_currency = ? AND date = ?",
            (base_currency, target_currency, date.isoformat()),
        )
        if not row:
            return None
        return ModelFactory.create_from_row(FxRate, row)

    def get_rate_on_or_before(
        self, base_currency: str, target_currency: str, on_date: date, lookback_days: int
    ) -> FxRate | None:
        """Most recent rate no older than lookback_days before on_date."""
        row: Row | None = self.db.query_one(
            """
            SELECT * FROM fx_rates
            WHERE base_currency = ? AND target_currency = ? AND date <= ? AND date >= ?
            ORDER BY date DESC
            LIMIT 1
            """,
            (
                base_currency,
                target_currency,
                on_date.isoformat(),
                (on_date - timedelta(days=lookback_days)).isoformat(),
            ),
        )
        if not row:
            return None
        return ModelFactory.create_from_row(FxRate, row)
