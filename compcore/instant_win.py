"""Settlement of pre-placed instant-win tickets against a purchase.

Every ticket number of an entry is settled once. Per-number outcomes are
stored on the entry, so a call that covers only some numbers leaves the rest
for a later call. The call that completes the entry stamps
``Entry.settled_at`` through a conditional update; any later call finds the
stamp already set and returns the stored outcome without touching a balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import CompetitionCoreError, DuplicateClaimRace
from .ledger import get_ledger
from .models import Competition, Entry, InstantPrize, InstantWinTicket
from .models.utils import to_money

logger = logging.getLogger(__name__)

WIN = "WIN"
NONE = "NONE"


@dataclass(frozen=True)
class WinResult:
    """Outcome for one ticket number of an entry."""

    ticket_number: int
    result: str = NONE
    prize_id: Optional[int] = None
    prize_name: Optional[str] = None
    value: Optional[Decimal] = None
    prize_type: Optional[str] = None

    @property
    def is_win(self) -> bool:
        return self.result == WIN

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ticket_number": self.ticket_number, "result": self.result}
        if self.is_win:
            data.update(
                prize_id=self.prize_id,
                prize_name=self.prize_name,
                value=str(self.value),
                prize_type=self.prize_type,
            )
        return data

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "WinResult":
        value = data.get("value")
        return cls(
            ticket_number=int(data["ticket_number"]),
            result=str(data.get("result", NONE)),
            prize_id=data.get("prize_id"),
            prize_name=data.get("prize_name"),
            value=to_money(value) if value is not None else None,
            prize_type=data.get("prize_type"),
        )


@dataclass
class WinSummary:
    """Per-ticket results of one entry plus the amounts won per balance.

    ``replayed`` is ``True`` when the results were read back from an entry
    that had already been settled.
    """

    entry_id: int
    results: list[WinResult] = field(default_factory=list)
    replayed: bool = False

    @property
    def wins(self) -> list[WinResult]:
        return [r for r in self.results if r.is_win]

    @property
    def total_cash_won(self) -> Decimal:
        return self._total("cash")

    @property
    def total_credit_won(self) -> Decimal:
        return self._total("credit")

    def _total(self, prize_type: str) -> Decimal:
        return to_money(
            sum(
                (r.value for r in self.wins if r.prize_type == prize_type and r.value),
                Decimal("0.00"),
            )
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "results": [r.to_json() for r in self.results],
            "total_cash_won": str(self.total_cash_won),
            "total_credit_won": str(self.total_credit_won),
            "has_win": bool(self.wins),
        }


class InstantWinSettler:
    """Match an entry's ticket numbers against its competition's winning tickets."""

    def __init__(
        self,
        session: Session,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def settle(
        self, entry_id: int, ticket_numbers: Optional[Iterable[int]] = None
    ) -> WinSummary:
        """Settle ``entry_id`` and credit any instant wins exactly once.

        Parameters
        ----------
        entry_id : int
            Entry to settle. It doubles as the idempotency key.
        ticket_numbers : Optional[Iterable[int]], default: None
            Numbers to check. Defaults to every number of the entry; any other
            value must be a subset of them. Numbers left out stay unsettled
            until a later call covers them.

        Returns
        -------
        WinSummary
            Results for the requested numbers. Numbers settled by an earlier
            call report their stored outcome; ``replayed`` is set when every
            requested number had been settled before.

        Raises
        ------
        ValueError
            If the entry does not exist, is not paid, or ``ticket_numbers``
            names a number the entry does not own.
        MalformedTicketDataError
            If the entry's stored ticket list is corrupt.
        """

        session = self._session
        entry = session.get(Entry, entry_id)
        if entry is None:
            raise ValueError(f"Entry {entry_id} not found")
        if entry.payment_status != "completed":
            raise ValueError(f"Entry {entry_id} is not paid (status {entry.payment_status})")

        owned = entry.ticket_number_list()
        if ticket_numbers is None:
            numbers = owned
        else:
            numbers = list(dict.fromkeys(ticket_numbers))
            unknown = sorted(set(numbers) - set(owned))
            if unknown:
                raise ValueError(f"Entry {entry_id} does not own ticket(s) {unknown}")

        session.refresh(entry, ["settled_at", "instant_win_results"])
        stored = self._stored_results(entry)
        pending = [n for n in numbers if n not in stored]
        if entry.settled_at is not None or not pending:
            logger.debug(f"Entry {entry_id} already settled; replaying stored results")
            return WinSummary(
                entry_id=entry_id,
                results=[stored[n] for n in numbers if n in stored],
                replayed=True,
            )

        now = self._clock()
        completes_entry = set(owned) <= set(stored) | set(pending)
        if completes_entry:
            claim = session.execute(
                update(Entry)
                .where(Entry.id == entry_id, Entry.settled_at.is_(None))
                .values(settled_at=now)
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 0:
                session.refresh(entry, ["settled_at", "instant_win_results"])
                stored = self._stored_results(entry)
                logger.debug(f"Entry {entry_id} settled concurrently; replaying stored results")
                return WinSummary(
                    entry_id=entry_id,
                    results=[stored[n] for n in numbers if n in stored],
                    replayed=True,
                )
            session.refresh(entry, ["settled_at"])

        competition = session.get(Competition, entry.competition_id)
        assert competition is not None

        fresh: dict[int, WinResult] = {}
        if not competition.has_instant_wins:
            fresh = {n: WinResult(ticket_number=n) for n in pending}
        else:
            tickets = session.scalars(
                select(InstantWinTicket).where(
                    InstantWinTicket.competition_id == competition.id,
                    InstantWinTicket.ticket_number.in_(pending),
                    InstantWinTicket.prize_id.isnot(None),
                )
                .execution_options(populate_existing=True)
            ).all()
            candidates = {t.ticket_number: t for t in tickets}
            for number in pending:
                ticket = candidates.get(number)
                if ticket is None:
                    fresh[number] = WinResult(ticket_number=number)
                elif ticket.winner_id is not None:
                    if ticket.entry_id == entry.id:
                        # paid by an earlier call whose stored outcome was lost
                        fresh[number] = self._claimed_result(ticket)
                    else:
                        fresh[number] = WinResult(ticket_number=number)
                else:
                    try:
                        fresh[number] = self._claim(entry, competition, ticket, now)
                    except DuplicateClaimRace:
                        logger.info(
                            f"Ticket {number} in competition {competition.id} was "
                            f"claimed concurrently; recording no win for entry {entry_id}"
                        )
                        fresh[number] = WinResult(ticket_number=number)

        stored.update(fresh)
        merged = [stored[n] for n in owned if n in stored]
        entry.instant_win_results = [r.to_json() for r in merged]
        entry.has_instant_win = any(r.is_win for r in merged)
        session.flush()

        results = [stored[n] for n in numbers]
        summary = WinSummary(entry_id=entry_id, results=results)
        if summary.wins:
            logger.info(
                f"Entry {entry_id} settled with {len(summary.wins)} instant win(s): "
                f"cash {summary.total_cash_won}, credit {summary.total_credit_won}"
            )
        return summary

    @staticmethod
    def _stored_results(entry: Entry) -> dict[int, WinResult]:
        results = (WinResult.from_json(r) for r in entry.instant_win_results or [])
        return {r.ticket_number: r for r in results}

    def _claimed_result(self, ticket: InstantWinTicket) -> WinResult:
        prize = self._session.get(InstantPrize, ticket.prize_id)
        assert prize is not None
        return WinResult(
            ticket_number=ticket.ticket_number,
            result=WIN,
            prize_id=prize.id,
            prize_name=prize.name,
            value=to_money(prize.value),
            prize_type=prize.prize_type,
        )

    def _claim(
        self,
        entry: Entry,
        competition: Competition,
        ticket: InstantWinTicket,
        now: datetime,
    ) -> WinResult:
        """Claim ``ticket`` for ``entry``'s owner and pay its prize.

        Raises
        ------
        DuplicateClaimRace
            If the ticket already has a winner when the update runs.
        """

        session = self._session
        claimed = session.execute(
            update(InstantWinTicket)
            .where(
                InstantWinTicket.id == ticket.id,
                InstantWinTicket.winner_id.is_(None),
                InstantWinTicket.prize_id.isnot(None),
            )
            .values(winner_id=entry.user_id, entry_id=entry.id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            raise DuplicateClaimRace(
                f"Ticket {ticket.ticket_number} of competition {competition.id} "
                f"is already claimed"
            )
        session.refresh(ticket)

        prize_id = ticket.prize_id
        decremented = session.execute(
            update(InstantPrize)
            .where(InstantPrize.id == prize_id, InstantPrize.remaining_wins > 0)
            .values(remaining_wins=InstantPrize.remaining_wins - 1)
            .execution_options(synchronize_session=False)
        )
        if decremented.rowcount == 0:
            # a winning ticket exists for a prize with nothing left to give
            raise CompetitionCoreError(
                f"Prize {prize_id} has no remaining wins for ticket "
                f"{ticket.ticket_number}; the prize pool is inconsistent"
            )
        prize = session.get(InstantPrize, prize_id)
        assert prize is not None
        session.refresh(prize, ["remaining_wins"])

        value = to_money(prize.value)
        get_ledger(prize.prize_type).credit(
            session,
            entry.user_id,
            value,
            f"Instant Win: {prize.name} from {competition.title}",
            reference=str(entry.id),
            tx_type="instant_win",
        )
        logger.info(
            f"User {entry.user_id} claimed instant win ticket {ticket.ticket_number} "
            f"in competition {competition.id}: {prize.name} ({prize.prize_type} {value})"
        )
        return WinResult(
            ticket_number=ticket.ticket_number,
            result=WIN,
            prize_id=prize.id,
            prize_name=prize.name,
            value=value,
            prize_type=prize.prize_type,
        )


__all__ = ["InstantWinSettler", "NONE", "WIN", "WinResult", "WinSummary"]
