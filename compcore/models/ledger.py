"""Database models for balance transactions and withdrawal requests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .column_types import MONEY

if TYPE_CHECKING:
    from .user import User

LEDGER_KINDS = ("cash", "credit")


class LedgerTransaction(Base):
    """Insert-only record of one balance mutation.

    ``balance`` is the account balance immediately after this row's
    ``amount`` was applied, so consecutive rows of one (user, kind) chain:
    ``prev.balance + row.amount == row.balance``.
    """

    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    tx_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Signed amount; debits are negative."""

    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Entry id(s) or withdrawal id the mutation belongs to."""

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    user: Mapped["User"] = relationship(back_populates="ledger_transactions")

    __table_args__ = (
        CheckConstraint("kind IN ('cash','credit')", name="kind_enum"),
        CheckConstraint("amount <> 0", name="amount_non_zero"),
        Index("ix_ledger_transactions_user_kind", "user_id", "kind", "id"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<LedgerTransaction(id={id}, user_id={u}, kind={k}, amount={a}, balance={b})>".format(
            id=self.id, u=self.user_id, k=self.kind, a=self.amount, b=self.balance
        )


class WithdrawalRequest(Base):
    """A request to pay out part of the withdrawable cash balance."""

    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    user: Mapped["User"] = relationship(
        back_populates="withdrawal_requests", foreign_keys=[user_id]
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint(
            "status IN ('pending','completed','rejected')", name="status_enum"
        ),
    )


__all__ = ["LEDGER_KINDS", "LedgerTransaction", "WithdrawalRequest"]
