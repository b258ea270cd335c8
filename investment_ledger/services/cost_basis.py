"""
Cost-basis resolution for a single (asset, currency) pair.

The held lot is one merged lot: a running weighted-average cost, never
per-purchase lots. Everything here is a left-to-right fold over operations in
ledger order (date, then insertion sequence); nothing is persisted.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from investment_ledger.models import (
    Acquisition,
    AssetClass,
    InvestmentOperation,
    LotState,
    OperationType,
    ReplayWarning,
    ResolvedLot,
    WarningKind,
)
from investment_ledger.utils.money import round_half_up

logger: logging.Logger = logging.getLogger(__name__)

EMPTY_LOT = LotState(quantity=Decimal(0), average_cost=0)

LotKey = tuple[str, str]  # (asset, currency)


@dataclass(frozen=True)
class OperationEffect:
    """Outcome of applying one operation to a lot."""

    state: LotState
    realized_profit: int = 0
    dividends: int = 0
    other_cash_flow: int = 0
    warning: ReplayWarning | None = None

    @property
    def applied(self) -> bool:
        return self.warning is None or self.warning.kind == WarningKind.UNKNOWN_OPERATION_TYPE


def canonical_type(raw_type: OperationType | str) -> OperationType | None:
    """The OperationType for a stored label, or None when it is not one we replay."""
    if isinstance(raw_type, OperationType):
        return raw_type
    try:
        return OperationType(raw_type)
    except ValueError:
        return None


def _warning(kind: WarningKind, operation: InvestmentOperation, message: str) -> ReplayWarning:
    return ReplayWarning(
        kind=kind,
        asset=operation.asset,
        message=message,
        operation_id=operation.id,
        operation_date=operation.date,
    )


def apply_operation(state: LotState, operation: InvestmentOperation) -> OperationEffect:
    """Apply one operation to a lot state. Pure: never raises for bad history."""
    op_type: OperationType | None = canonical_type(operation.type)
    quantity: Decimal = operation.quantity

    match op_type:
        case OperationType.BUY:
            new_quantity: Decimal = state.quantity + quantity
            if new_quantity <= 0:
                return OperationEffect(state=LotState(new_quantity, 0))
            # Average from the exact cost so rounding never accumulates across buys
            new_cost: Decimal = state.cost + quantity * operation.price
            return OperationEffect(
                state=LotState(new_quantity, round_half_up(new_cost / new_quantity), new_cost)
            )

        case OperationType.SELL:
            if quantity > state.quantity:
                message = (
                    f"Sell of {quantity} {operation.asset} on {operation.date} exceeds "
                    f"held quantity {state.quantity}; operation ignored"
                )
                logger.warning(message)
                return OperationEffect(
                    state=state, warning=_warning(WarningKind.OVERDRAFT_SELL, operation, message)
                )
            realized: int = round_half_up(quantity * (operation.price - state.average_cost))
            remaining: Decimal = state.quantity - quantity
            if remaining == 0:
                return OperationEffect(state=LotState(remaining, 0), realized_profit=realized)
            return OperationEffect(
                state=LotState(
                    remaining, state.average_cost, state.cost * remaining / state.quantity
                ),
                realized_profit=realized,
            )

        case OperationType.DIVIDEND | OperationType.INTEREST:
            return OperationEffect(state=state, dividends=operation.total_amount)

        case OperationType.STOCK_SPLIT:
            if quantity <= 0:
                message = f"Split of {operation.asset} on {operation.date} has invalid ratio {quantity}"
                logger.warning(message)
                return OperationEffect(
                    state=state,
                    warning=_warning(WarningKind.INVALID_SPLIT_RATIO, operation, message),
                )
            split_quantity: Decimal = state.quantity * quantity
            if split_quantity == 0:
                return OperationEffect(state=state)
            return OperationEffect(
                state=LotState(
                    split_quantity, round_half_up(state.cost / split_quantity), state.cost
                )
            )

        case _:
            message = (
                f"Unknown operation type '{operation.type}' for {operation.asset} "
                f"on {operation.date}; treated as a cash flow only"
            )
            logger.warning(message)
            return OperationEffect(
                state=state,
                other_cash_flow=operation.total_amount or operation.price,
                warning=_warning(WarningKind.UNKNOWN_OPERATION_TYPE, operation, message),
            )


class LotReplay:
    """
    Incremental fold over the operations of one (asset, currency) pair.

    Feeding operations one month at a time gives the same result as replaying
    the whole prefix from scratch, which is what lets the monthly
    reconstruction run in a single pass over the ledger.
    """

    def __init__(
        self,
        asset: str,
        currency: str,
        asset_class: AssetClass | str = AssetClass.OTHER,
        keep_history: bool = False,
    ) -> None:
        self.asset: str = asset
        self.currency: str = currency
        self.asset_class: AssetClass | str = asset_class
        self.keep_history: bool = keep_history
        self.state: LotState = EMPTY_LOT
        self.realized_profit: int = 0
        self.dividends: int = 0
        self.other_cash_flows: int = 0
        self.brokers: list[str] = []
        self.history: list[LotState] = []
        self.acquisitions: list[Acquisition] = []
        self.warnings: list[ReplayWarning] = []
        self.first_date: date | None = None
        self.last_date: date | None = None

    def apply(self, operation: InvestmentOperation) -> OperationEffect:
        effect: OperationEffect = apply_operation(self.state, operation)

        if effect.applied:
            self._track_acquisitions(operation, effect)

        self.state = effect.state
        self.realized_profit += effect.realized_profit
        self.dividends += effect.dividends
        self.other_cash_flows += effect.other_cash_flow
        if effect.warning:
            self.warnings.append(effect.warning)
        if self.keep_history:
            self.history.append(effect.state)

        self.asset_class = operation.asset_class or self.asset_class
        if operation.broker and operation.broker not in self.brokers:
            self.brokers.append(operation.broker)
        if self.first_date is None:
            self.first_date = operation.date
        self.last_date = operation.date
        return effect

    def _track_acquisitions(self, operation: InvestmentOperation, effect: OperationEffect) -> None:
        op_type: OperationType | None = canonical_type(operation.type)

        if op_type == OperationType.BUY and operation.quantity > 0:
            self.acquisitions.append(Acquisition(operation.date, operation.quantity))

        elif op_type == OperationType.SELL:
            # Oldest first, for the holding-time estimate only
            remaining: Decimal = operation.quantity
            while remaining > 0 and self.acquisitions:
                oldest: Acquisition = self.acquisitions[0]
                if oldest.quantity <= remaining:
                    remaining -= oldest.quantity
                    self.acquisitions.pop(0)
                else:
                    oldest.quantity -= remaining
                    remaining = Decimal(0)

        elif op_type == OperationType.STOCK_SPLIT:
            for acquisition in self.acquisitions:
                acquisition.quantity *= operation.quantity

    def snapshot(self) -> ResolvedLot:
        """Copy of the current replay state, safe to hand out while replay continues."""
        return ResolvedLot(
            asset=self.asset,
            currency=self.currency,
            asset_class=self.asset_class,
            state=self.state,
            realized_profit=self.realized_profit,
            dividends=self.dividends,
            other_cash_flows=self.other_cash_flows,
            brokers=list(self.brokers),
            history=list(self.history),
            acquisitions=[Acquisition(a.date, a.quantity) for a in self.acquisitions],
            warnings=list(self.warnings),
            first_date=self.first_date,
            last_date=self.last_date,
        )


def resolve_lot(
    operations: Iterable[InvestmentOperation],
    until: date | None = None,
    keep_history: bool = False,
) -> ResolvedLot | None:
    """
    Replay the operations of a single (asset, currency) pair.

    Args:
        operations: Operations in ledger order, all for the same asset and currency
        until: Ignore operations dated after this day
        keep_history: Record the LotState after every applied operation

    Returns:
        The resolved lot, or None when no operation falls within the cutoff
    """
    replay: LotReplay | None = None
    for operation in operations:
        if until is not None and operation.date > until:
            continue
        if replay is None:
            replay = LotReplay(
                operation.asset, operation.currency, operation.asset_class, keep_history
            )
        elif (operation.asset, operation.currency) != (replay.asset, replay.currency):
            raise ValueError(
                f"resolve_lot got {operation.asset}/{operation.currency} while replaying "
                f"{replay.asset}/{replay.currency}"
            )
        _ = replay.apply(operation)

    return replay.snapshot() if replay else None


def resolve_all(
    operations: Iterable[InvestmentOperation], until: date | None = None
) -> dict[LotKey, ResolvedLot]:
    """Replay every (asset, currency) pair found in an ordered operation list."""
    replays: dict[LotKey, LotReplay] = {}
    for operation in operations:
        if until is not None and operation.date > until:
            continue
        key: LotKey = (operation.asset, operation.currency)
        if key not in replays:
            replays[key] = LotReplay(operation.asset, operation.currency, operation.asset_class)
        _ = replays[key].apply(operation)

    return {key: replay.snapshot() for key, replay in replays.items()}


def average_holding_days(acquisitions: Iterable[Acquisition], as_of: date) -> int:
    """Quantity-weighted mean age in days of the acquisitions still held."""
    total_quantity: Decimal = Decimal(0)
    weighted_days: Decimal = Decimal(0)
    for acquisition in acquisitions:
        if acquisition.quantity <= 0:
            continue
        age: int = max(0, (as_of - acquisition.date).days)
        total_quantity += acquisition.quantity
        weighted_days += acquisition.quantity * age

    if total_quantity == 0:
        return 0
    return round_half_up(weighted_days / total_quantity)
