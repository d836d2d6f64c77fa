"""Database models for competitions and the entries bought into them."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc
from ..errors import MalformedTicketDataError
from .base import Base
from .column_types import MONEY

if TYPE_CHECKING:
    from .draw import DrawRecord
    from .instant_win import InstantPrize, InstantWinTicket
    from .user import User


class Competition(Base):
    """A time-boxed prize competition selling numbered tickets."""

    __tablename__ = "competitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Primary key."""

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    """Display title shown to buyers."""

    max_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    """Hard cap on issuable ticket numbers; numbers run 1..max_tickets."""

    ticket_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Price of one ticket."""

    tickets_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Running count of issued numbers, bumped inside the allocation update."""

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Admin switch; competitions are created inactive."""

    has_instant_wins: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """Set once a prize pool has been generated."""

    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """No entries are accepted from this moment on."""

    winner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    winning_ticket_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    draw_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    draw_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    winner_notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Once set the draw result is final and can no longer be cleared."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="competition", order_by="Entry.id"
    )
    instant_prizes: Mapped[list["InstantPrize"]] = relationship(
        back_populates="competition", order_by="InstantPrize.id"
    )
    instant_win_tickets: Mapped[list["InstantWinTicket"]] = relationship(
        back_populates="competition"
    )
    draw_records: Mapped[list["DrawRecord"]] = relationship(
        back_populates="competition", order_by="DrawRecord.id"
    )
    winner: Mapped[Optional["User"]] = relationship(foreign_keys=[winner_id])

    __table_args__ = (
        CheckConstraint("max_tickets > 0", name="max_tickets_positive"),
        CheckConstraint(
            "tickets_issued >= 0 AND tickets_issued <= max_tickets",
            name="tickets_issued_within_cap",
        ),
    )

    def __init__(
        self,
        *,
        title: str,
        max_tickets: int,
        ticket_price: Decimal,
        end_date: datetime,
        is_active: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        if max_tickets <= 0:
            raise ValueError("max_tickets must be a positive integer")
        self.title = title
        self.max_tickets = max_tickets
        self.ticket_price = ticket_price
        self.end_date = end_date
        self.is_active = is_active
        self.tickets_issued = 0
        self.has_instant_wins = False
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Competition(id={id}, title={title!r}, issued={issued}/{cap})>".format(
            id=self.id,
            title=self.title,
            issued=self.tickets_issued,
            cap=self.max_tickets,
        )

    @property
    def is_drawn(self) -> bool:
        return self.winner_id is not None

    @property
    def remaining_tickets(self) -> int:
        return max(0, self.max_tickets - (self.tickets_issued or 0))

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` while the competition accepts new entries."""

        now = now or datetime.now(timezone.utc)
        end = as_utc(self.end_date)
        return bool(self.is_active) and not self.is_drawn and end is not None and now < end


class Entry(Base):
    """One purchase of ``quantity`` tickets in one competition."""

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(
        ForeignKey("competitions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    ticket_numbers: Mapped[list] = mapped_column(JSON, nullable=False)
    """Ordered list of the ticket numbers issued to this entry."""

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    credit_used: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="completed"
    )
    instant_win_results: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    """Stored settlement outcome; replayed verbatim on repeated settlement."""

    has_instant_win: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    competition: Mapped["Competition"] = relationship(back_populates="entries")
    user: Mapped["User"] = relationship(back_populates="entries")
    tickets: Mapped[list["EntryTicket"]] = relationship(
        back_populates="entry", order_by="EntryTicket.id"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint(
            "payment_status IN ('pending','completed','refunded')",
            name="payment_status_enum",
        ),
        CheckConstraint(
            "payment_method IN ('card','credit','mixed')", name="payment_method_enum"
        ),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Entry(id={id}, competition_id={cid}, user_id={uid}, quantity={q})>".format(
            id=self.id, cid=self.competition_id, uid=self.user_id, q=self.quantity
        )

    def ticket_number_list(self) -> list[int]:
        """Return the validated ticket numbers of this entry.

        Raises
        ------
        MalformedTicketDataError
            If the stored value is not a list of positive integers matching
            ``quantity``.
        """

        raw: Any = self.ticket_numbers
        if not isinstance(raw, list):
            raise MalformedTicketDataError(
                f"Entry {self.id} has a malformed ticket number list"
            )
        numbers: list[int] = []
        for value in raw:
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise MalformedTicketDataError(
                    f"Entry {self.id} has an invalid ticket number {value!r}"
                )
            numbers.append(value)
        if len(numbers) != self.quantity:
            raise MalformedTicketDataError(
                f"Entry {self.id} lists {len(numbers)} ticket numbers "
                f"but records a quantity of {self.quantity}"
            )
        return numbers

    @classmethod
    def completed_for(cls, session: Session, competition_id: int) -> list["Entry"]:
        """Return completed entries for a competition in creation order."""

        stmt = (
            select(cls)
            .where(cls.competition_id == competition_id, cls.payment_status == "completed")
            .order_by(cls.id.asc())
        )
        return list(session.scalars(stmt).all())


class EntryTicket(Base):
    """One issued ticket number; the unique constraint forbids reissuing it."""

    __tablename__ = "entry_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(
        ForeignKey("competitions.id", ondelete="RESTRICT"), nullable=False
    )
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)

    entry: Mapped["Entry"] = relationship(back_populates="tickets")

    __table_args__ = (
        UniqueConstraint(
            "competition_id", "ticket_number", name="uq_entry_ticket_number"
        ),
    )


__all__ = ["Competition", "Entry", "EntryTicket"]
