"""Utilities for the grand-prize draw."""

from .engine import DrawEngine, DrawResult
from .roster import RosterTicket, build_roster, roster_digest

__all__ = [
    "DrawEngine",
    "DrawResult",
    "RosterTicket",
    "build_roster",
    "roster_digest",
]
