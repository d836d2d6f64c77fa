"""Audit trail of grand-prize draws."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .competition import Competition
    from .user import User


class DrawRecord(Base):
    """Immutable evidence of one draw.

    Clearing a winner stamps ``cleared_at``; the row itself is never removed,
    so every draw ever performed for a competition stays reviewable.
    """

    __tablename__ = "draw_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Surrogate primary key."""

    competition_id: Mapped[int] = mapped_column(
        ForeignKey("competitions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    draw_id: Mapped[str] = mapped_column(String(64), nullable=False)
    """Human-referenceable identifier, also stored on the competition."""

    roster_size: Mapped[int] = mapped_column(Integer, nullable=False)
    """Number of tickets that took part."""

    selected_index: Mapped[int] = mapped_column(Integer, nullable=False)
    """Zero-based position of the winning ticket within the ordered roster."""

    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)
    winner_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    roster_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    """SHA-256 over the ordered ``entry:ticket:user`` roster lines."""

    drawn_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    cleared_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    competition: Mapped["Competition"] = relationship(back_populates="draw_records")
    winner_user: Mapped["User"] = relationship()

    __table_args__ = (UniqueConstraint("draw_id", name="uq_draw_records_draw_id"),)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<DrawRecord(draw_id={d}, competition_id={c}, index={i}/{n}, ticket={t})>".format(
            d=self.draw_id,
            c=self.competition_id,
            i=self.selected_index,
            n=self.roster_size,
            t=self.ticket_number,
        )


__all__ = ["DrawRecord"]
