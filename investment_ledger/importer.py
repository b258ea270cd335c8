import logging
from pathlib import Path

import pandas as pd

from investment_ledger.models import InvestmentOperation, OperationDraft
from investment_ledger.services.ledger_service import LedgerService

logger: logging.Logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: tuple[str, ...] = ("date", "asset", "type", "quantity", "price")
OPTIONAL_COLUMNS: tuple[str, ...] = ("currency", "asset_class", "broker", "notes")


def read_csv_file(csv_path: Path) -> pd.DataFrame | None:
    """
    Read an operations CSV with every column as text.

    Returns:
        DataFrame of the CSV rows, or None if the file is missing, unreadable,
        empty or lacks a required column
    """
    try:
        df: pd.DataFrame = pd.read_csv(csv_path, dtype=str).fillna("")
    except FileNotFoundError:
        logger.error(f"CSV file not found: {csv_path}")
        return None
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        logger.error(f"Error reading CSV file {csv_path}: {e}")
        return None

    if df.empty:
        logger.warning(f"CSV file is empty: {csv_path}")
        return None

    df.columns = [str(column).strip().lower() for column in df.columns]
    missing: list[str] = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        logger.error(f"CSV file {csv_path} is missing required columns: {', '.join(missing)}")
        return None
    return df


def draft_from_row(row_data: dict[str, str]) -> OperationDraft:
    return OperationDraft(
        asset=row_data.get("asset", ""),
        type=row_data.get("type", "").strip(),
        date=row_data.get("date", ""),
        quantity=row_data.get("quantity", "").strip() or "0",
        price=row_data.get("price", "").strip() or "0",
        currency=row_data.get("currency") or None,
        asset_class=row_data.get("asset_class") or None,
        broker=row_data.get("broker") or None,
        notes=row_data.get("notes") or None,
    )


def import_operations(csv_path: Path, ledger_service: LedgerService, user_id: str) -> int:
    """
    Append every valid CSV row to the ledger, in file order.

    Invalid rows are logged with their row number and skipped. Storage
    failures are not caught.

    Returns:
        Number of operations imported
    """
    df: pd.DataFrame | None = read_csv_file(csv_path)
    if df is None:
        return 0

    imported = 0
    for i in range(len(df)):
        row_number: int = i + 2  # header is line 1
        row_data: dict[str, str] = df.iloc[i].to_dict()

        try:
            operation: InvestmentOperation = ledger_service.record_operation(
                user_id, draft_from_row(row_data)
            )
        except ValueError as e:
            logger.error(f"Row {row_number}: Validation error: {e}. Skipping row: {row_data}")
            continue

        imported += 1
        logger.debug(f"Row {row_number}: Imported operation ID {operation.id} for {operation.asset}")

    logger.info(f"Finished importing operations. Successfully imported {imported} of {len(df)} rows")
    return imported
