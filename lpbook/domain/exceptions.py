from __future__ import annotations


class DomainError(Exception):
    """Base for domain errors."""


class DataUnavailableError(DomainError):
    """Market data (oracle, bitmap, pool state) could not be read for this cycle."""


class InvalidPositionError(DomainError):
    """Position would violate bound, spacing or capital invariants."""


class CapitalExceededError(DomainError):
    """Opening the position would exceed the capital policy."""


class PersistenceFailureError(DomainError):
    """Durable write of the ledger or lifecycle records failed after retry."""


class LedgerHaltedError(DomainError):
    """State mutation is halted until the durable store is writable again."""


class RangeInputError(DomainError):
    """Invalid parameters for range recommendation."""
