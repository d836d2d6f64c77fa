from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Integer, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import Base
from .column_types import MONEY

if TYPE_CHECKING:
    from .competition import Entry
    from .ledger import LedgerTransaction, WithdrawalRequest


class User(Base):
    """A player who buys tickets and holds the two balances."""

    def __init__(
        self,
        email: str,
        name: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        """Create a new :class:`User` record.

        Balances always start at zero. They are only ever changed through
        :class:`compcore.ledger.Ledger`, which writes a transaction row for
        every mutation.

        Parameters
        ----------
        email : str
            Login email address, unique per user.
        name : str, optional
            Display name.
        created_at : datetime, optional
            Explicit creation timestamp.
        """

        self.email = email
        self.name = name
        self.cash_balance = Decimal("0.00")
        self.credit_balance = Decimal("0.00")
        if created_at is not None:
            self.created_at = created_at

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cash_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    """Withdrawable balance. Cached; the cash ledger is the source of truth."""

    credit_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    """Site credit, usable only to buy tickets."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # relationships
    entries: Mapped[list["Entry"]] = relationship(back_populates="user")
    ledger_transactions: Mapped[list["LedgerTransaction"]] = relationship(
        back_populates="user",
        order_by="LedgerTransaction.id",
    )
    withdrawal_requests: Mapped[list["WithdrawalRequest"]] = relationship(
        back_populates="user",
        foreign_keys="WithdrawalRequest.user_id",
    )

    @validates("email")
    def _normalize_email(self, _key: str, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("email must not be empty")
        return normalized

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, email='{self.email}', "
            f"cash_balance={self.cash_balance}, credit_balance={self.credit_balance})>"
        )

    @classmethod
    def get_by_email(cls, session: Session, email: str) -> Optional["User"]:
        """Retrieve a user by their email address."""

        return session.scalar(select(cls).where(cls.email == email.strip().lower()))

    def balances(self) -> dict[str, Decimal]:
        """Return both balances keyed by ledger kind."""

        return {"cash": self.cash_balance, "credit": self.credit_balance}

