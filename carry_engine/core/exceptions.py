"""Exception hierarchy for the cost-of-carry engine.

- CarryEngineError: base for all engine errors
- ValidationError: malformed input, rejected immediately, never retried
- ResolutionError: no listed instrument for a strike/expiry/type combination
- PersistenceError: storage unavailable, retried with backoff
- RetryBudgetExhaustedError: retries exhausted, fatal to the process
- NumericConvergenceError: implied volatility inversion did not converge
- StalenessError: a required leg is missing or too old for a cycle
- ConfigurationError: irrecoverable configuration problem, fatal
"""


class CarryEngineError(Exception):
    """Base exception for all cost-of-carry engine errors."""


class ValidationError(CarryEngineError):
    """Raised when a payload or instrument definition is malformed."""


class ResolutionError(CarryEngineError):
    """Raised when no listed instrument matches a strike/expiry/type."""

    def __init__(self, message: str, *, strike: float | None = None) -> None:
        super().__init__(message)
        self.strike = strike


class PersistenceError(CarryEngineError):
    """Raised when the storage layer is unavailable or a write fails."""


class RetryBudgetExhaustedError(PersistenceError):
    """Raised when a storage operation fails after all retry attempts."""


class NumericConvergenceError(CarryEngineError):
    """Raised when an iterative numerical method fails to converge."""


class StalenessError(CarryEngineError):
    """Raised when required market data is missing or older than allowed."""


class ConfigurationError(CarryEngineError):
    """Raised on configuration that makes the process unable to run."""
