"""Ticket number allocation.

Numbers are issued sequentially from the competition's running counter:
an allocation of ``quantity`` tickets when ``n`` have already been issued
receives ``n + 1 .. n + quantity``. The counter bump and the capacity check
are a single conditional ``UPDATE``, so the losing side of two concurrent
purchases observes zero affected rows and is refused instead of being
handed overlapping numbers. ``EntryTicket``'s unique constraint on
``(competition_id, ticket_number)`` backs this up at the storage level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .db.utils import as_utc
from .errors import CapacityExceededError, CompetitionClosedError
from .models import Competition, Entry, EntryTicket
from .models.utils import to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    """Ticket numbers reserved for one purchase item."""

    competition_id: int
    ticket_numbers: list[int]

    @property
    def quantity(self) -> int:
        return len(self.ticket_numbers)


class TicketAllocator:
    """Reserve unique ticket numbers and persist the entries that own them."""

    def __init__(
        self,
        session: Session,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Create an allocator bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active session; the caller owns commit and rollback.
        clock : Optional[Callable[[], datetime]], default: None
            Source of the current UTC time, overridable for tests.
        """

        self._session = session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def allocate(self, competition_id: int, quantity: int) -> Allocation:
        """Reserve ``quantity`` new ticket numbers in ``competition_id``.

        Raises
        ------
        ValueError
            If ``quantity`` is not a positive integer or the competition
            does not exist.
        CompetitionClosedError
            If the competition is inactive, drawn, or past its end date.
        CapacityExceededError
            If fewer than ``quantity`` tickets remain. ``remaining`` reports
            the count observed at the moment of the refusal.
        """

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValueError("quantity must be a positive integer")

        now = self._clock()
        competition = self._session.get(Competition, competition_id)
        if competition is None:
            raise ValueError(f"Competition {competition_id} not found")
        self._ensure_open(competition, now)

        stmt = (
            update(Competition)
            .where(
                Competition.id == competition_id,
                Competition.is_active.is_(True),
                Competition.winner_id.is_(None),
                Competition.tickets_issued + quantity <= Competition.max_tickets,
            )
            .values(tickets_issued=Competition.tickets_issued + quantity)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)

        # Reload what the database now holds; another transaction may have
        # moved the counter or closed the competition since it was read.
        self._session.refresh(competition)
        if result.rowcount == 0:
            self._ensure_open(competition, now)
            remaining = competition.remaining_tickets
            logger.warning(
                f"Refused {quantity} tickets for competition {competition_id}: "
                f"{remaining} remaining"
            )
            raise CapacityExceededError(quantity, remaining, competition.title)

        last = competition.tickets_issued
        numbers = list(range(last - quantity + 1, last + 1))
        logger.debug(
            f"Allocated tickets {numbers[0]}..{numbers[-1]} in competition {competition_id}"
        )
        return Allocation(competition_id=competition_id, ticket_numbers=numbers)

    def create_entry(
        self,
        user_id: int,
        competition_id: int,
        quantity: int,
        *,
        payment_method: str = "card",
        credit_used: Decimal = Decimal("0.00"),
    ) -> Entry:
        """Allocate numbers and persist a completed :class:`Entry` for them.

        The entry and one :class:`EntryTicket` per number are flushed in the
        same transaction as the counter update.
        """

        allocation = self.allocate(competition_id, quantity)
        competition = self._session.get(Competition, competition_id)
        assert competition is not None

        entry = Entry(
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=list(allocation.ticket_numbers),
            quantity=allocation.quantity,
            total_cost=to_money(competition.ticket_price * allocation.quantity),
            payment_method=payment_method,
            credit_used=to_money(credit_used),
            payment_status="completed",
        )
        self._session.add(entry)
        self._session.flush()

        self._session.add_all(
            EntryTicket(
                competition_id=competition_id,
                entry_id=entry.id,
                ticket_number=number,
            )
            for number in allocation.ticket_numbers
        )
        self._session.flush()
        logger.info(
            f"Entry {entry.id} created for user {user_id} in competition "
            f"{competition_id} with {allocation.quantity} ticket(s)"
        )
        return entry

    def issued_numbers(self, competition_id: int) -> list[int]:
        """Return every ticket number issued in a competition, ascending."""

        stmt = (
            select(EntryTicket.ticket_number)
            .where(EntryTicket.competition_id == competition_id)
            .order_by(EntryTicket.ticket_number.asc())
        )
        return list(self._session.scalars(stmt).all())

    @staticmethod
    def _ensure_open(competition: Competition, now: datetime) -> None:
        if competition.winner_id is not None:
            raise CompetitionClosedError(
                f'Competition "{competition.title}" has already been drawn'
            )
        if not competition.is_active:
            raise CompetitionClosedError(
                f'Competition "{competition.title}" is no longer active'
            )
        end = as_utc(competition.end_date)
        if end is not None and now >= end:
            raise CompetitionClosedError(
                f'Competition "{competition.title}" closed at {end.isoformat()}'
            )


__all__ = ["Allocation", "TicketAllocator"]
