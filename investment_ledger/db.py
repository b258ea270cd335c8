import logging
import sqlite3
import traceback
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Self


class Database:
    # INFO: Example usage:
    # with Database(Path("ledger.db")) as db:
    #   db.execute("INSERT INTO price_history (asset, currency, date, price) VALUES (?, ?, ?, ?)", ...)
    #   No need to call db.commit(): it auto-commits if no exception occurs
    def __init__(self, db_path: Path) -> None:
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn: sqlite3.Connection = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row  # Allows dict-style access
        self.cursor: sqlite3.Cursor = self.conn.cursor()
        self.logger: logging.Logger = logging.getLogger(__name__)

    @staticmethod
    def _check_placeholders(query: str, params: Sequence[Any] | Mapping[str, Any]) -> None:
        # Confirm positional and named-placeholders are not being inter-mixed
        if "?" in query and isinstance(params, Mapping):
            raise ValueError("Positional placeholders (?) used with named parameters.")
        if ":" in query and isinstance(params, (list, tuple)) and params:
            raise ValueError("Named placeholders (:) used with positional parameters.")

    def execute(
        self,
        query: str,
        params: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> sqlite3.Cursor:
        """
        Executes a single write statement inside its own transaction.
        Supports both positional (?) and named (:param) placeholders.
        """
        if params is None:
            params = ()

        self.logger.debug(f"Preparing SQL execution:\n{query}")
        self.logger.debug(f"Parameters: {params}")
        self._check_placeholders(query, params)

        try:
            _ = self.conn.execute("BEGIN")
            result: sqlite3.Cursor = self.cursor.execute(query, params)
            self.commit()
            self.logger.debug(f"Query executed successfully. Rows affected: {self.cursor.rowcount}")
            return result
        except sqlite3.Error:
            self.conn.rollback()
            self.logger.error("Database error during execute:")
            self.logger.error(traceback.format_exc())
            raise

    def executemany(
        self,
        query: str,
        param_list: Sequence[Sequence[Any] | Mapping[str, Any]],
    ) -> sqlite3.Cursor:
        """Executes a write statement for multiple parameter sets in one transaction."""
        self.logger.debug(f"Preparing bulk execution of SQL:\n{query}")
        self.logger.debug(f"Number of entries: {len(param_list)}")

        if not param_list:
            self.logger.warning("executemany called with an empty parameter list.")
            return self.cursor

        for params in param_list:
            self._check_placeholders(query, params)

        try:
            _ = self.conn.execute("BEGIN")
            result = self.cursor.executemany(query, param_list)
            self.conn.commit()
            self.logger.debug(f"Successfully wrote {self.cursor.rowcount} records.")
            return result
        except sqlite3.Error:
            self.conn.rollback()
            self.logger.error("Database error during executemany:")
            self.logger.error(traceback.format_exc())
            raise

    def commit(self) -> None:
        """Commits active transaction to DB, saving changes."""
        try:
            self.conn.commit()
        except sqlite3.DatabaseError as e:
            self.logger.error(f"Error committing changes: {e}")
            raise

    def rollback(self) -> None:
        """Rolls back active transaction to DB, not saving changes (used if error)."""
        try:
            self.conn.rollback()
            self.logger.warning("Database changes rolled back.")
        except sqlite3.DatabaseError as e:
            self.logger.error(f"Error rolling back changes: {e}")
            raise

    def query_one(
        self, query: str, params: Sequence[Any] | Mapping[str, Any] | None = None
    ) -> sqlite3.Row | None:
        """Executes a SELECT query and returns a single result."""
        params = params if params is not None else ()
        self._check_placeholders(query, params)
        self.logger.debug(f"Querying one row:\n{query}\nParameters: {params}")
        return self.conn.execute(query, params).fetchone()

    def query_all(
        self, query: str, params: Sequence[Any] | Mapping[str, Any] | None = None
    ) -> list[sqlite3.Row]:
        """Executes a SELECT query and returns all results."""
        params = params if params is not None else ()
        self._check_placeholders(query, params)
        self.logger.debug(f"Querying rows:\n{query}\nParameters: {params}")
        return self.conn.execute(query, params).fetchall()

    def close(self) -> None:
        """Closes active DB connection."""
        self.conn.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        """If an error escaped the with block, rollback; otherwise commit. Always close."""
        if exc_type:
            self.rollback()
        else:
            self.commit()
        self.close()

    def create_tables_if_not_exists(self) -> None:
        # Append-only ledger: the triggers reject any UPDATE or DELETE
        self.conn.executescript("""
        CREATE TABLE IF NOT EXISTS investment_operations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,  -- insertion sequence, breaks same-day ties
            user_id TEXT NOT NULL,
            asset TEXT NOT NULL,
            asset_class TEXT NOT NULL,
            type TEXT NOT NULL,
            date TEXT NOT NULL,               -- YYYY-MM-DD, no time component
            quantity INTEGER NOT NULL,        -- scaled by 10000; split ratio for StockSplit
            price INTEGER NOT NULL,           -- minor currency units
            total_amount INTEGER NOT NULL,    -- minor currency units
            currency TEXT NOT NULL,
            broker TEXT,
            notes TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TRIGGER IF NOT EXISTS investment_operations_no_update
        BEFORE UPDATE ON investment_operations
        BEGIN
            SELECT RAISE(ABORT, 'investment_operations is append-only');
        END;

        CREATE TRIGGER IF NOT EXISTS investment_operations_no_delete
        BEFORE DELETE ON investment_operations
        BEGIN
            SELECT RAISE(ABORT, 'investment_operations is append-only');
        END;

        -- Cached historical closes per asset, minor currency units
        CREATE TABLE IF NOT EXISTS price_history (
            asset TEXT NOT NULL,
            currency TEXT NOT NULL,
            date TEXT NOT NULL,
            price INTEGER NOT NULL,
            PRIMARY KEY(asset, currency, date)
        );

        -- Currencies and conversion rates
        CREATE TABLE IF NOT EXISTS fx_rates (
            base_currency TEXT NOT NULL,
            target_currency TEXT NOT NULL,
            date TEXT NOT NULL,
            rate REAL NOT NULL,
            PRIMARY KEY(base_currency, target_currency, date)
        );

        CREATE INDEX IF NOT EXISTS idx_operations_user_date
            ON investment_operations(user_id, date, id);
        CREATE INDEX IF NOT EXISTS idx_operations_user_asset
            ON investment_operations(user_id, asset, date, id);
        CREATE INDEX IF NOT EXISTS idx_fx_rates_date ON fx_rates(date);
        """)
