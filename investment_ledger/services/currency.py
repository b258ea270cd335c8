import logging
from datetime import date
from decimal import Decimal

from investment_ledger.models import FxRate
from investment_ledger.repositories.fx_rate_repository import FxRateRepository
from investment_ledger.utils.money import from_minor_units, to_minor_units

logger: logging.Logger = logging.getLogger(__name__)


class CurrencyConverter:
    """Convert minor-unit amounts between currencies using stored FX rates."""

    def __init__(self, fx_rate_repo: FxRateRepository, lookback_days: int = 7):
        self.fx_rate_repo = fx_rate_repo
        self.lookback_days = lookback_days

    def rate(self, from_currency: str, to_currency: str, on_date: date) -> Decimal | None:
        """
        Units of to_currency per unit of from_currency on a date.

        Uses the latest stored rate within the lookback window, falling back to
        the inverse pair. Returns None when neither is known.
        """
        from_currency, to_currency = from_currency.upper(), to_currency.upper()
        if from_currency == to_currency:
            return Decimal(1)

        direct: FxRate | None = self.fx_rate_repo.get_rate_on_or_before(
            from_currency, to_currency, on_date, self.lookback_days
        )
        if direct and direct.rate > 0:
            return Decimal(str(direct.rate))

        inverse: FxRate | None = self.fx_rate_repo.get_rate_on_or_before(
            to_currency, from_currency, on_date, self.lookback_days
        )
        if inverse and inverse.rate > 0:
            return Decimal(1) / Decimal(str(inverse.rate))

        logger.debug(f"No FX rate for {from_currency}->{to_currency} on {on_date}")
        return None

    def convert(self, amount: int, from_currency: str, to_currency: str, on_date: date) -> int | None:
        """Convert a minor-unit amount, or None when no rate is available."""
        if amount == 0 or from_currency.upper() == to_currency.upper():
            return amount

        rate: Decimal | None = self.rate(from_currency, to_currency, on_date)
        if rate is None:
            return None
        return to_minor_units(from_minor_units(amount, from_currency) * rate, to_currency)
