"""Exceptions raised across the ledger and reporting layers."""


class LedgerError(Exception):
    """Base class for ledger errors."""


class LedgerUnavailableError(LedgerError):
    """The operation store could not be read or written. Fatal to the request."""


class InvalidOperationError(LedgerError, ValueError):
    """An operation failed validation and was not appended."""


class OperationNotFoundError(LedgerError, LookupError):
    """No operation with the given id exists for the user."""


class ValuationError(Exception):
    """A market data source failed in a way that is not just a missing price."""
