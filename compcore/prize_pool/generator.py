"""Generation of instant-win prizes and their winning ticket numbers."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..config import Settings
from ..errors import (
    CompetitionClosedError,
    InvalidPolicyError,
    NumberSpaceExhaustedError,
    PoolAlreadyInUseError,
)
from ..models import Competition, InstantPrize, InstantWinTicket
from ..models.utils import to_money
from .policy import PrizePoolPolicy

logger = logging.getLogger(__name__)


def draw_unique_numbers(
    count: int,
    max_number: int,
    rng: random.Random,
    *,
    reserved: Iterable[int] = (),
) -> list[int]:
    """Draw ``count`` distinct integers uniformly from ``1..max_number``.

    Rejection sampling against a used-set scoped to this call. Each number
    gets at most ``2 * max_number`` attempts.

    Raises
    ------
    NumberSpaceExhaustedError
        If the space cannot hold ``count`` more numbers, or a number could not
        be found within its attempt budget.
    """

    used = set(reserved)
    if count < 0:
        raise ValueError("count must not be negative")
    if count > max_number - len(used):
        raise NumberSpaceExhaustedError(
            f"Cannot place {count} winning numbers in a space of "
            f"{max_number} with {len(used)} already taken"
        )

    max_attempts = max_number * 2
    numbers: list[int] = []
    for _ in range(count):
        attempts = 0
        while True:
            attempts += 1
            if attempts > max_attempts:
                raise NumberSpaceExhaustedError(
                    f"Could not generate a unique ticket number after {max_attempts} attempts"
                )
            candidate = rng.randint(1, max_number)
            if candidate not in used:
                break
        used.add(candidate)
        numbers.append(candidate)
    return numbers


@dataclass
class PrizePoolResult:
    """Value object describing a freshly generated prize pool.

    Attributes
    ----------
    prizes : list[InstantPrize]
        Every prize now attached to the competition (manual + generated).
    tickets : list[InstantWinTicket]
        One row per winning number, in the shuffled order they were stored.
    generated_prizes : list[InstantPrize]
        Prizes created from the policy tiers.
    manual_prizes : list[InstantPrize]
        Admin-created prizes that were preserved and given new numbers.
    """

    prizes: list[InstantPrize]
    tickets: list[InstantWinTicket]
    generated_prizes: list[InstantPrize]
    manual_prizes: list[InstantPrize]

    @property
    def total_prize_value(self) -> Decimal:
        return to_money(
            sum((p.value * p.total_wins for p in self.prizes), Decimal("0.00"))
        )

    def breakdown(self) -> list[dict]:
        return [
            {
                "name": p.name,
                "prize_type": p.prize_type,
                "value": p.value,
                "count": p.total_wins,
                "total": to_money(p.value * p.total_wins),
                "is_manual": p.is_manual,
            }
            for p in self.prizes
        ]


class PrizePoolGenerator:
    """Build a competition's instant-win prizes from a :class:`PrizePoolPolicy`."""

    def __init__(
        self,
        session: Session,
        *,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Create a generator bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for lookups and persistence.
        rng : Optional[random.Random], default: None
            Source of randomness for number placement and shuffling. A
            ``random.SystemRandom`` is used when omitted.
        settings : Optional[Settings], default: None
            Bounds used to validate policies.
        """

        self._session = session
        self._rng = rng or random.SystemRandom()
        self._settings = settings

    def generate(self, competition_id: int, policy: PrizePoolPolicy) -> PrizePoolResult:
        """Replace the competition's generated prizes and winning numbers.

        Manual prizes are kept and receive fresh numbers for their wins.
        Nothing is written unless every step succeeds.

        Raises
        ------
        CompetitionClosedError
            If the competition already has a grand-prize winner.
        PoolAlreadyInUseError
            If any winning ticket of the competition has been claimed.
        InvalidPolicyError
            If the policy is out of bounds or yields no prizes.
        NumberSpaceExhaustedError
            If the winning numbers do not fit in ``1..max_tickets``.
        """

        session = self._session
        competition = session.get(Competition, competition_id)
        if competition is None:
            raise ValueError(f"Competition {competition_id} not found")
        if competition.winner_id is not None:
            raise CompetitionClosedError(
                f'Competition "{competition.title}" has been drawn; its prize pool is frozen'
            )

        claimed = InstantWinTicket.count_claimed(session, competition_id)
        if claimed:
            raise PoolAlreadyInUseError(claimed)

        policy.validate(self._settings)
        planned = policy.plan(competition.max_tickets, competition.ticket_price)
        if not planned:
            raise InvalidPolicyError("No prizes would be generated with the current settings")

        manual_prizes = list(
            session.scalars(
                select(InstantPrize)
                .where(
                    InstantPrize.competition_id == competition_id,
                    InstantPrize.is_manual.is_(True),
                )
                .order_by(InstantPrize.id.asc())
            ).all()
        )
        total_numbers = sum(p.count for p in planned) + sum(
            p.total_wins for p in manual_prizes
        )
        # Draw before touching any row so exhaustion leaves the old pool intact.
        numbers = draw_unique_numbers(total_numbers, competition.max_tickets, self._rng)

        session.execute(
            delete(InstantWinTicket)
            .where(InstantWinTicket.competition_id == competition_id)
            .execution_options(synchronize_session="fetch")
        )
        session.execute(
            delete(InstantPrize)
            .where(
                InstantPrize.competition_id == competition_id,
                InstantPrize.is_manual.is_(False),
            )
            .execution_options(synchronize_session="fetch")
        )
        session.expire(competition, ["instant_prizes", "instant_win_tickets"])

        generated: list[InstantPrize] = []
        for plan in planned:
            prize = InstantPrize(
                competition_id=competition_id,
                name=plan.name,
                prize_type=plan.prize_type,
                value=plan.value,
                total_wins=plan.count,
            )
            session.add(prize)
            generated.append(prize)
        for prize in manual_prizes:
            # nothing was claimed, so every manual win is available again
            session.expire(prize, ["tickets"])
            prize.remaining_wins = prize.total_wins
        session.flush()

        prize_slots: list[InstantPrize] = []
        for prize in manual_prizes + generated:
            prize_slots.extend([prize] * prize.total_wins)
        pairs = list(zip(numbers, prize_slots))
        self._rng.shuffle(pairs)

        tickets = [
            InstantWinTicket(
                competition_id=competition_id,
                ticket_number=number,
                prize_id=prize.id,
            )
            for number, prize in pairs
        ]
        session.add_all(tickets)
        competition.has_instant_wins = True
        session.flush()

        result = PrizePoolResult(
            prizes=manual_prizes + generated,
            tickets=tickets,
            generated_prizes=generated,
            manual_prizes=manual_prizes,
        )
        logger.info(
            f"Prize pool generated for competition {competition_id}: "
            f"{len(generated)} tier prize(s), {len(manual_prizes)} manual prize(s), "
            f"{len(tickets)} winning number(s), total value {result.total_prize_value}"
        )
        return result


__all__ = ["PrizePoolGenerator", "PrizePoolResult", "draw_unique_numbers"]
