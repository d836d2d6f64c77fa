"""Database models for instant-win prizes and their pre-placed winning numbers."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .column_types import MONEY

if TYPE_CHECKING:
    from .competition import Competition, Entry
    from .user import User

PRIZE_TYPES = ("cash", "credit")


class InstantPrize(Base):
    """A prize paid out instantly to whoever buys one of its winning numbers."""

    __tablename__ = "instant_prizes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Primary key."""

    competition_id: Mapped[int] = mapped_column(
        ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    prize_type: Mapped[str] = mapped_column(String(20), nullable=False)
    """``"cash"`` credits the withdrawable balance, ``"credit"`` the site credit."""

    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Value paid per win."""

    total_wins: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_wins: Mapped[int] = mapped_column(Integer, nullable=False)
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Created by an admin directly; survives prize pool regeneration."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    competition: Mapped["Competition"] = relationship(back_populates="instant_prizes")
    tickets: Mapped[list["InstantWinTicket"]] = relationship(back_populates="prize")

    __table_args__ = (
        CheckConstraint("prize_type IN ('cash','credit')", name="prize_type_enum"),
        CheckConstraint("value > 0", name="value_positive"),
        CheckConstraint(
            "remaining_wins >= 0 AND remaining_wins <= total_wins",
            name="remaining_wins_range",
        ),
    )

    def __init__(
        self,
        *,
        name: str,
        prize_type: str,
        value: Decimal,
        total_wins: int,
        competition: Optional["Competition"] = None,
        competition_id: Optional[int] = None,
        remaining_wins: Optional[int] = None,
        is_manual: bool = False,
    ) -> None:
        if prize_type not in PRIZE_TYPES:
            raise ValueError(f"prize_type must be one of {PRIZE_TYPES}")
        if total_wins < 0:
            raise ValueError("total_wins must not be negative")
        if competition is not None:
            self.competition = competition
        if competition_id is not None:
            self.competition_id = competition_id
        self.name = name
        self.prize_type = prize_type
        self.value = value
        self.total_wins = total_wins
        self.remaining_wins = total_wins if remaining_wins is None else remaining_wins
        self.is_manual = is_manual

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<InstantPrize(id={id}, name={name!r}, remaining={r}/{t})>".format(
            id=self.id, name=self.name, r=self.remaining_wins, t=self.total_wins
        )

    @property
    def claimed_wins(self) -> int:
        return self.total_wins - self.remaining_wins


class InstantWinTicket(Base):
    """A ticket number committed in advance as the winner of a prize."""

    __tablename__ = "instant_win_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(
        ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("instant_prizes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    winner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    """Set exactly once, by the conditional claim update."""

    entry_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("entries.id", ondelete="SET NULL"), nullable=True
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    competition: Mapped["Competition"] = relationship(
        back_populates="instant_win_tickets"
    )
    prize: Mapped[Optional["InstantPrize"]] = relationship(back_populates="tickets")
    winner: Mapped[Optional["User"]] = relationship()
    entry: Mapped[Optional["Entry"]] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "competition_id", "ticket_number", name="uq_instant_win_ticket_number"
        ),
        CheckConstraint("ticket_number > 0", name="ticket_number_positive"),
        Index("ix_instant_win_tickets_winner", "competition_id", "winner_id"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<InstantWinTicket(competition_id={c}, number={n}, prize_id={p}, winner_id={w})>".format(
            c=self.competition_id, n=self.ticket_number, p=self.prize_id, w=self.winner_id
        )

    @property
    def is_claimed(self) -> bool:
        return self.winner_id is not None

    @classmethod
    def count_claimed(cls, session: Session, competition_id: int) -> int:
        """Return how many winning tickets of a competition have been claimed."""

        return (
            session.scalar(
                select(func.count())
                .select_from(cls)
                .where(cls.competition_id == competition_id, cls.winner_id.isnot(None))
            )
            or 0
        )


__all__ = ["InstantPrize", "InstantWinTicket", "PRIZE_TYPES"]
