"""Ticket allocation, instant-win settlement, grand-prize draws and balances
for prize competitions."""

from .errors import (  # noqa: F401
    AlreadyDrawnError,
    CapacityExceededError,
    CompetitionClosedError,
    CompetitionCoreError,
    DrawFinalizedError,
    InsufficientFundsError,
    InvalidPolicyError,
    MalformedTicketDataError,
    NoEntriesError,
    NumberSpaceExhaustedError,
    PaymentMismatchError,
    PoolAlreadyInUseError,
    WithdrawalStateError,
)

__version__ = "0.1.0"
