"""Grand-prize draw engine."""

from __future__ import annotations

import logging
import random
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..errors import AlreadyDrawnError, DrawFinalizedError, NoEntriesError
from ..models import Competition, DrawRecord
from ..models.utils import generate_draw_id
from .roster import build_roster, roster_digest

logger = logging.getLogger(__name__)


@dataclass
class DrawResult:
    """Value object describing a completed draw.

    Attributes
    ----------
    competition_id : int
        Competition that was drawn.
    winning_ticket_number : int
        Ticket number selected from the roster.
    winner_user_id : int
        Owner of the winning ticket.
    draw_id : str
        Identifier stored on the competition and the audit record.
    record : DrawRecord
        Persisted audit evidence, including the roster size, selected index
        and roster digest.
    """

    competition_id: int
    winning_ticket_number: int
    winner_user_id: int
    draw_id: str
    drawn_at: datetime
    record: DrawRecord


class DrawEngine:
    """Select one winning ticket uniformly at random and record the evidence."""

    def __init__(
        self,
        session: Session,
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Create a draw engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for lookups and persistence.
        rng : Optional[random.Random], default: None
            Source of the selection index. Defaults to
            ``secrets.SystemRandom``; tests inject a seeded ``random.Random``.
        clock : Optional[Callable[[], datetime]], default: None
            Source of the current UTC time.
        """

        self._session = session
        self._rng = rng or secrets.SystemRandom()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def draw(self, competition_id: int) -> DrawResult:
        """Draw the winner of ``competition_id``.

        Notes
        -----
        The steps run in the caller's transaction:

        1. Deactivate the competition with an update guarded by
           ``winner_id IS NULL``. Zero affected rows means another draw got
           there first. The competition stops accepting entries from here on.
        2. Build the roster of every ticket of every completed entry.
        3. Pick ``index = randrange(len(roster))``; every ticket has the same
           ``1 / len(roster)`` chance regardless of entry or owner.
        4. Write the four winner fields in one guarded update and insert the
           :class:`DrawRecord`.

        Raises
        ------
        ValueError
            If the competition does not exist.
        AlreadyDrawnError
            If the competition already has a winner.
        NoEntriesError
            If no completed entry exists. ``is_active`` is put back before
            raising, so the session holds no change from this call.
        """

        session = self._session
        competition = session.get(Competition, competition_id)
        if competition is None:
            raise ValueError(f"Competition {competition_id} not found")
        was_active = session.scalar(
            select(Competition.is_active).where(Competition.id == competition_id)
        )

        locked = session.execute(
            update(Competition)
            .where(Competition.id == competition_id, Competition.winner_id.is_(None))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if locked.rowcount == 0:
            session.refresh(competition)
            raise AlreadyDrawnError(
                f'Competition "{competition.title}" has already been drawn '
                f"(draw {competition.draw_id})"
            )

        roster = build_roster(session, competition_id)
        if not roster:
            session.execute(
                update(Competition)
                .where(Competition.id == competition_id, Competition.winner_id.is_(None))
                .values(is_active=was_active)
                .execution_options(synchronize_session=False)
            )
            session.refresh(competition)
            logger.warning(f"Draw refused for competition {competition_id}: no entries")
            raise NoEntriesError(
                f'Competition "{competition.title}" has no completed entries to draw from'
            )

        index = self._rng.randrange(len(roster))
        selected = roster[index]
        digest = roster_digest(roster)
        draw_id = generate_draw_id(session)
        now = self._clock()

        written = session.execute(
            update(Competition)
            .where(Competition.id == competition_id, Competition.winner_id.is_(None))
            .values(
                winner_id=selected.user_id,
                winning_ticket_number=selected.ticket_number,
                draw_id=draw_id,
                draw_timestamp=now,
            )
            .execution_options(synchronize_session=False)
        )
        if written.rowcount == 0:
            raise AlreadyDrawnError(
                f'Competition "{competition.title}" was drawn concurrently'
            )
        session.refresh(competition)

        record = DrawRecord(
            competition_id=competition_id,
            draw_id=draw_id,
            roster_size=len(roster),
            selected_index=index,
            ticket_number=selected.ticket_number,
            winner_user_id=selected.user_id,
            roster_digest=digest,
            drawn_at=now,
        )
        session.add(record)
        session.flush()

        logger.info(
            f"Draw {draw_id} for competition {competition_id}: ticket "
            f"{selected.ticket_number} (index {index} of {len(roster)}) won by user "
            f"{selected.user_id}"
        )
        return DrawResult(
            competition_id=competition_id,
            winning_ticket_number=selected.ticket_number,
            winner_user_id=selected.user_id,
            draw_id=draw_id,
            drawn_at=now,
            record=record,
        )

    def clear_winner(self, competition_id: int) -> Competition:
        """Undo a draw that has not been announced yet.

        The four winner fields are blanked in one update and the competition
        is reactivated. The :class:`DrawRecord` is kept and stamped with
        ``cleared_at``.

        Raises
        ------
        ValueError
            If the competition does not exist or has no winner.
        DrawFinalizedError
            If the winner has already been notified.
        """

        session = self._session
        competition = session.get(Competition, competition_id)
        if competition is None:
            raise ValueError(f"Competition {competition_id} not found")
        session.refresh(competition)
        if competition.winner_id is None:
            raise ValueError(f'Competition "{competition.title}" has no winner to clear')
        if competition.winner_notified_at is not None:
            raise DrawFinalizedError(
                f'The winner of "{competition.title}" has been notified; '
                f"the draw can no longer be cleared"
            )

        draw_id = competition.draw_id
        cleared = session.execute(
            update(Competition)
            .where(
                Competition.id == competition_id,
                Competition.winner_id.isnot(None),
                Competition.winner_notified_at.is_(None),
            )
            .values(
                winner_id=None,
                winning_ticket_number=None,
                draw_id=None,
                draw_timestamp=None,
                is_active=True,
            )
            .execution_options(synchronize_session=False)
        )
        if cleared.rowcount == 0:
            raise DrawFinalizedError(
                f'The draw of "{competition.title}" changed while it was being cleared'
            )

        now = self._clock()
        records = session.scalars(
            select(DrawRecord).where(
                DrawRecord.competition_id == competition_id,
                DrawRecord.draw_id == draw_id,
                DrawRecord.cleared_at.is_(None),
            )
        ).all()
        for record in records:
            record.cleared_at = now
        session.flush()
        session.refresh(competition)

        logger.info(f"Draw {draw_id} for competition {competition_id} cleared")
        return competition

    def mark_winner_notified(self, competition_id: int) -> Competition:
        """Finalize the draw; after this it can no longer be cleared."""

        session = self._session
        competition = session.get(Competition, competition_id)
        if competition is None:
            raise ValueError(f"Competition {competition_id} not found")
        session.refresh(competition)
        if competition.winner_id is None:
            raise ValueError(f'Competition "{competition.title}" has not been drawn')
        if competition.winner_notified_at is None:
            competition.winner_notified_at = self._clock()
            session.flush()
            logger.info(
                f"Winner of competition {competition_id} notified; draw "
                f"{competition.draw_id} is final"
            )
        return competition


__all__ = ["DrawEngine", "DrawResult"]
