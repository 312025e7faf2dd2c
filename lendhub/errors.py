"""Engine error taxonomy.

Each rejected operation raises exactly one of these; ``code`` is the stable
name integrating tooling matches on.
"""
from __future__ import annotations


class LendingError(Exception):
    """Base class for every rejected engine operation."""

    code: str = "ErrLending"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ZeroAmountError(LendingError):
    code = "ErrZeroAmount"


class InvalidTokenError(LendingError):
    code = "ErrInvalidToken"


class InsufficientBalanceError(LendingError):
    code = "ErrInsufficientBalance"


class InsufficientLiquidityError(LendingError):
    code = "ErrInsufficientLiquidity"


class HealthFactorTooLowError(LendingError):
    code = "ErrHealthFactorTooLow"


class UserHealthyError(LendingError):
    code = "ErrUserHealthy"


class ReentrantError(LendingError):
    code = "ErrReentrant"


class StalePriceError(LendingError):
    code = "ErrStalePrice"


class UnauthorizedError(LendingError):
    code = "ErrUnauthorized"


class PausedError(LendingError):
    code = "ErrPaused"


class InvalidParamsError(LendingError):
    code = "ErrInvalidParams"


class UnknownPoolError(LendingError):
    code = "ErrInvalidPool"


# Failures worth retrying later, as opposed to requests that can never succeed as-is.
RETRYABLE_ERRORS: tuple[type[LendingError], ...] = (
    InsufficientLiquidityError,
    StalePriceError,
    ReentrantError,
    PausedError,
)
