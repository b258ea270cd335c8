import logging
from datetime import date
from decimal import Decimal

from investment_ledger.exceptions import InvalidOperationError, OperationNotFoundError
from investment_ledger.models import AssetClass, InvestmentOperation, OperationDraft, OperationType
from investment_ledger.repositories.operation_repository import OperationRepository
from investment_ledger.utils.dates import month_end, parse_date, parse_month
from investment_ledger.utils.money import QUANTITY_SCALE, round_half_up, to_decimal, to_minor_units

logger: logging.Logger = logging.getLogger(__name__)


def build_operation(user_id: str, draft: OperationDraft, default_currency: str) -> InvestmentOperation:
    """
    Validate a draft and turn it into an operation ready to append.

    Raises:
        InvalidOperationError: If any field is missing or out of range
    """
    asset: str = (draft.asset or "").strip().upper()
    if not asset:
        raise InvalidOperationError("Asset is required")

    try:
        op_type = OperationType(str(draft.type).strip())
    except ValueError as e:
        raise InvalidOperationError(f"Unknown operation type: {draft.type!r}") from e

    try:
        op_date: date = parse_date(draft.date)
        quantity: Decimal = to_decimal(draft.quantity if draft.quantity != "" else 0)
        unit_price: Decimal = to_decimal(draft.price if draft.price != "" else 0)
    except ValueError as e:
        raise InvalidOperationError(str(e)) from e

    if not quantity.is_finite() or not unit_price.is_finite():
        raise InvalidOperationError("Quantity and price must be finite numbers")
    if quantity < 0:
        raise InvalidOperationError(f"Quantity must not be negative, got {quantity}")
    if unit_price < 0:
        raise InvalidOperationError(f"Price must not be negative, got {unit_price}")
    if op_type == OperationType.STOCK_SPLIT and quantity <= 0:
        raise InvalidOperationError(f"Split ratio must be positive, got {quantity}")
    if op_type in (OperationType.BUY, OperationType.SELL) and quantity == 0:
        raise InvalidOperationError(f"{op_type} needs a positive quantity")
    # Stored as an integer number of 1/QUANTITY_SCALE units
    if (quantity * QUANTITY_SCALE) % 1 != 0:
        raise InvalidOperationError(
            f"Quantity supports at most 4 decimal places, got {quantity}"
        )

    currency: str = (draft.currency or default_currency).strip().upper()

    asset_class: AssetClass | str = AssetClass.OTHER
    if draft.asset_class:
        try:
            asset_class = AssetClass(str(draft.asset_class).strip())
        except ValueError as e:
            raise InvalidOperationError(f"Unknown asset class: {draft.asset_class!r}") from e

    price: int = to_minor_units(unit_price, currency)
    match op_type:
        case OperationType.BUY | OperationType.SELL:
            total_amount: int = round_half_up(quantity * price)
        case OperationType.DIVIDEND | OperationType.INTEREST:
            # The price field carries the total amount received
            total_amount = price
        case _:
            total_amount = 0

    return InvestmentOperation(
        id=None,
        user_id=user_id,
        asset=asset,
        asset_class=asset_class,
        type=op_type,
        date=op_date,
        quantity=quantity,
        price=price,
        total_amount=total_amount,
        currency=currency,
        broker=(draft.broker or "").strip() or None,
        notes=(draft.notes or "").strip() or None,
    )


class LedgerService:
    """Writes to and simple reads from the operation ledger."""

    def __init__(self, operation_repo: OperationRepository, default_currency: str = "BRL"):
        self.operation_repo = operation_repo
        self.default_currency = default_currency

    def record_operation(self, user_id: str, draft: OperationDraft) -> InvestmentOperation:
        """Validate and append a new operation. Existing operations are never changed."""
        operation: InvestmentOperation = build_operation(user_id, draft, self.default_currency)
        stored: InvestmentOperation = self.operation_repo.insert(operation)
        logger.info(
            f"Recorded {stored.type} of {stored.quantity} {stored.asset} on {stored.date} (id {stored.id})"
        )
        return stored

    def get_operation(self, user_id: str, operation_id: int) -> InvestmentOperation:
        operation: InvestmentOperation | None = self.operation_repo.get_by_id(operation_id)
        # Another user's operation is reported as missing
        if operation is None or operation.user_id != user_id:
            raise OperationNotFoundError(f"Operation {operation_id} not found")
        return operation

    def get_operations_by_month(self, user_id: str, month: str) -> list[InvestmentOperation]:
        """Operations dated within a "YYYY-MM" month, in ledger order."""
        year, month_number = parse_month(month)
        return self.operation_repo.list_operations_between(
            user_id, date(year, month_number, 1), month_end(year, month_number)
        )

    def list_assets(self, user_id: str) -> list[tuple[str, str]]:
        return self.operation_repo.list_assets(user_id)
