"""Utilities for generating instant-win prize pools."""

from .generator import PrizePoolGenerator, PrizePoolResult, draw_unique_numbers
from .policy import PlannedPrize, PrizePoolPolicy, PrizeTier, display_amount

__all__ = [
    "PlannedPrize",
    "PrizePoolGenerator",
    "PrizePoolPolicy",
    "PrizePoolResult",
    "PrizeTier",
    "display_amount",
    "draw_unique_numbers",
]
