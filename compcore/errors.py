"""Exceptions raised by the ticket, instant-win, draw and ledger operations.

Every error carries a message that can be shown to the person who triggered
the request as-is.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class CompetitionCoreError(Exception):
    """Base exception for all refused competition operations."""


class CapacityExceededError(CompetitionCoreError):
    """Raised when a purchase would push a competition past ``max_tickets``."""

    def __init__(self, requested: int, remaining: int, title: Optional[str] = None):
        self.requested = requested
        self.remaining = remaining
        self.title = title
        where = f' for "{title}"' if title else ""
        super().__init__(
            f"Not enough tickets available{where}: requested {requested}, "
            f"only {remaining} tickets remaining"
        )


class CompetitionClosedError(CompetitionCoreError):
    """Raised when a competition no longer accepts entries or pool changes."""


class InsufficientFundsError(CompetitionCoreError):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, kind: str, balance: Decimal, requested: Decimal):
        self.kind = kind
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient {kind} balance. You have £{balance:.2f}, "
            f"but need £{requested:.2f}"
        )


class PaymentMismatchError(CompetitionCoreError):
    """Raised when the authorized amounts do not cover the checkout cost."""


class PoolAlreadyInUseError(CompetitionCoreError):
    """Raised when regenerating a prize pool that already paid out a prize."""

    def __init__(self, claimed: int):
        self.claimed = claimed
        super().__init__(
            f"Cannot regenerate the prize pool: {claimed} instant win "
            f"ticket(s) have already been claimed"
        )


class NumberSpaceExhaustedError(CompetitionCoreError):
    """Raised when unique winning numbers cannot be drawn from the number space."""


class InvalidPolicyError(CompetitionCoreError, ValueError):
    """Raised for a prize pool policy outside the accepted bounds."""


class AlreadyDrawnError(CompetitionCoreError):
    """Raised when a draw is triggered for a competition that has a winner."""


class NoEntriesError(CompetitionCoreError):
    """Raised when a draw is triggered with no completed entries."""


class DrawFinalizedError(CompetitionCoreError):
    """Raised when clearing a winner whose result has already been announced."""


class MalformedTicketDataError(CompetitionCoreError):
    """Raised when a stored ticket-number list cannot be trusted."""


class WithdrawalStateError(CompetitionCoreError):
    """Raised for withdrawal transitions that are not allowed."""


class DuplicateClaimRace(CompetitionCoreError):
    """Another settlement claimed the instant-win ticket first.

    Internal only: the settler maps it to a non-winning result.
    """


__all__ = [
    "AlreadyDrawnError",
    "CapacityExceededError",
    "CompetitionClosedError",
    "CompetitionCoreError",
    "DrawFinalizedError",
    "DuplicateClaimRace",
    "InsufficientFundsError",
    "InvalidPolicyError",
    "MalformedTicketDataError",
    "NoEntriesError",
    "NumberSpaceExhaustedError",
    "PaymentMismatchError",
    "PoolAlreadyInUseError",
    "WithdrawalStateError",
]
