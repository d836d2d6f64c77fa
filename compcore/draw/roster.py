"""Roster of tickets taking part in a competition's grand-prize draw."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..models import Entry


@dataclass(frozen=True)
class RosterTicket:
    """One ticket number and the entry and user that own it."""

    entry_id: int
    ticket_number: int
    user_id: int

    def line(self) -> str:
        return f"{self.entry_id}:{self.ticket_number}:{self.user_id}"


def build_roster(session: Session, competition_id: int) -> list[RosterTicket]:
    """Return every ticket of every completed entry, one row per ticket.

    Entries are taken in id order and their numbers in stored order, so the
    same database state always yields the same roster.

    Raises
    ------
    MalformedTicketDataError
        If any entry's stored ticket list is corrupt.
    """

    roster: list[RosterTicket] = []
    for entry in Entry.completed_for(session, competition_id):
        for number in entry.ticket_number_list():
            roster.append(
                RosterTicket(
                    entry_id=entry.id, ticket_number=number, user_id=entry.user_id
                )
            )
    return roster


def roster_digest(roster: list[RosterTicket]) -> str:
    """SHA-256 hex digest over the ordered roster lines."""

    digest = hashlib.sha256()
    for ticket in roster:
        digest.update(ticket.line().encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


__all__ = ["RosterTicket", "build_roster", "roster_digest"]
