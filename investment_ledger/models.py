from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from investment_ledger.utils.money import round_half_up


class AssetClass(StrEnum):
    STOCK_EXCHANGE = "StockExchange"
    TREASURY = "Treasury"
    FIXED_INCOME = "FixedIncome"
    FIXED_INCOME_USA = "FixedIncome_USA"
    FUND = "Fund"
    CRYPTOCURRENCY = "Cryptocurrency"
    ACCOUNT = "Account"
    OTHER = "Other"


class OperationType(StrEnum):
    BUY = "Buy"
    SELL = "Sell"
    DIVIDEND = "Dividend"
    INTEREST = "Interest"
    STOCK_SPLIT = "StockSplit"


class WarningKind(StrEnum):
    OVERDRAFT_SELL = "OverdraftSell"
    MISSING_VALUATION = "MissingValuation"
    MISSING_FX_RATE = "MissingFxRate"
    UNKNOWN_OPERATION_TYPE = "UnknownOperationType"
    INVALID_SPLIT_RATIO = "InvalidSplitRatio"


@dataclass(frozen=True)
class InvestmentOperation:
    """
    A single ledger entry. Never mutated once stored: corrections are appended
    as new operations.

    `type` holds the raw stored label when it is not a canonical OperationType.
    For Dividend/Interest, `price` carries the total amount received.
    """

    id: int | None
    user_id: str
    asset: str
    asset_class: AssetClass | str
    type: OperationType | str
    date: date
    quantity: Decimal
    price: int  # minor currency units
    total_amount: int  # minor currency units
    currency: str
    broker: str | None = None
    notes: str | None = None
    created_at: datetime | None = None

    @property
    def sort_key(self) -> tuple[date, int]:
        return (self.date, self.id if self.id is not None else 0)


@dataclass
class OperationDraft:
    """User input for a new ledger entry, quantity and price in major units."""

    asset: str
    type: OperationType | str
    date: date | str
    quantity: Decimal | float | str
    price: Decimal | float | str
    currency: str | None = None
    asset_class: AssetClass | str | None = None
    broker: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LotState:
    quantity: Decimal
    average_cost: int  # minor currency units
    cost: Decimal = Decimal(0)  # exact cost of the held quantity, unrounded

    @property
    def cost_basis(self) -> int:
        return round_half_up(self.quantity * self.average_cost)


@dataclass(frozen=True)
class ReplayWarning:
    kind: WarningKind
    asset: str
    message: str
    operation_id: int | None = None
    operation_date: date | None = None


@dataclass
class Acquisition:
    """Quantity still held from one Buy, used only for holding-time estimates."""

    date: date
    quantity: Decimal


@dataclass
class ResolvedLot:
    """Result of replaying the operations of one (asset, currency) pair."""

    asset: str
    currency: str
    asset_class: AssetClass | str
    state: LotState
    realized_profit: int = 0
    dividends: int = 0
    other_cash_flows: int = 0
    brokers: list[str] = field(default_factory=list)
    history: list[LotState] = field(default_factory=list)
    acquisitions: list[Acquisition] = field(default_factory=list)
    warnings: list[ReplayWarning] = field(default_factory=list)
    first_date: date | None = None
    last_date: date | None = None


@dataclass
class Position:
    """Snapshot of one held (asset, currency) pair at a cutoff date."""

    asset: str
    asset_class: AssetClass | str
    currency: str
    quantity: Decimal
    average_price: int
    current_price: int | None
    current_value: int
    total_invested: int
    profit: int
    profit_percentage: float
    portfolio_percentage: float
    average_holding_time: int  # days
    realized_profit: int
    dividends_received: int
    broker: str | None
    normalized_value: int  # current value in the base currency
    degraded: bool = False
    warnings: list[ReplayWarning] = field(default_factory=list)


@dataclass
class RealizedProfit:
    """Realized result of one (asset, currency) pair, open or closed."""

    asset: str
    currency: str
    quantity: Decimal
    realized_profit: int
    dividends: int
    closed: bool
    warnings: list[ReplayWarning] = field(default_factory=list)


@dataclass
class MonthlyEvolutionPoint:
    month: str  # "YYYY-MM"
    month_end: date
    portfolio_value: int
    contributions: int
    withdrawals: int
    dividends: int
    other_cash_flows: int
    realized_profit: int
    returns: float  # percent, money-weighted
    cumulative_contributions: int
    cumulative_withdrawals: int
    cumulative_dividends: int
    degraded: bool = False
    warnings: list[ReplayWarning] = field(default_factory=list)


@dataclass(frozen=True)
class PriceRequest:
    asset: str
    currency: str
    date: date


@dataclass
class PriceQuote:
    asset: str
    currency: str
    date: date
    price: int  # minor currency units


@dataclass
class FxRate:
    base_currency: str
    target_currency: str
    date: date
    rate: float
