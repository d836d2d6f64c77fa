"""Dual-currency balance ledger.

Both balances a user holds, withdrawable cash and site credit, are handled by
one :class:`Ledger` implementation parameterized by ``kind``. Every mutation
is a single conditional ``UPDATE`` of the cached balance followed by the
insert of a :class:`~compcore.models.LedgerTransaction` carrying the
resulting balance, both inside the caller's transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InsufficientFundsError
from .models import LedgerTransaction, User
from .models.ledger import LEDGER_KINDS
from .models.utils import to_money

logger = logging.getLogger(__name__)

AmountLike = Union[Decimal, int, str, float]


@dataclass(frozen=True)
class LedgerReconciliation:
    """Outcome of replaying a user's transactions for one ledger.

    Attributes
    ----------
    stored_balance : Decimal
        Balance cached on the user row.
    transaction_sum : Decimal
        Sum of every transaction ``amount`` in insertion order.
    chain_breaks : list[int]
        Ids of rows whose ``balance`` is not the previous balance plus their
        ``amount``.
    """

    user_id: int
    kind: str
    stored_balance: Decimal
    transaction_sum: Decimal
    transaction_count: int
    chain_breaks: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.stored_balance == self.transaction_sum and not self.chain_breaks


class Ledger:
    """Append-only ledger for one balance kind (``"cash"`` or ``"credit"``)."""

    def __init__(self, kind: str) -> None:
        if kind not in LEDGER_KINDS:
            raise ValueError(f"Unknown ledger kind '{kind}'")
        self.kind = kind

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Ledger(kind={self.kind!r})>"

    @property
    def _column(self):
        return User.cash_balance if self.kind == "cash" else User.credit_balance

    def balance(self, session: Session, user_id: int) -> Decimal:
        """Return the current stored balance of ``user_id``."""

        value = session.scalar(select(self._column).where(User.id == user_id))
        if value is None:
            raise ValueError(f"User {user_id} not found")
        return to_money(value)

    def credit(
        self,
        session: Session,
        user_id: int,
        amount: AmountLike,
        description: str,
        *,
        reference: Optional[str] = None,
        tx_type: str = "credit",
        created_by: Optional[str] = None,
    ) -> LedgerTransaction:
        """Add ``amount`` to the balance and record the transaction."""

        value = self._positive(amount)
        return self._apply(
            session,
            user_id,
            value,
            description,
            reference=reference,
            tx_type=tx_type,
            created_by=created_by,
            allow_negative=True,
        )

    def debit(
        self,
        session: Session,
        user_id: int,
        amount: AmountLike,
        description: str,
        *,
        reference: Optional[str] = None,
        tx_type: str = "debit",
        created_by: Optional[str] = None,
        allow_negative: bool = False,
    ) -> LedgerTransaction:
        """Subtract ``amount`` from the balance and record the transaction.

        Parameters
        ----------
        allow_negative : bool, default: False
            Administrative override letting the balance drop below zero.

        Raises
        ------
        InsufficientFundsError
            If the balance does not cover ``amount`` and no override is given.
        """

        value = self._positive(amount)
        return self._apply(
            session,
            user_id,
            -value,
            description,
            reference=reference,
            tx_type=tx_type,
            created_by=created_by,
            allow_negative=allow_negative,
        )

    def history(self, session: Session, user_id: int) -> list[LedgerTransaction]:
        """Return the user's transactions for this ledger, oldest first."""

        stmt = (
            select(LedgerTransaction)
            .where(
                LedgerTransaction.user_id == user_id,
                LedgerTransaction.kind == self.kind,
            )
            .order_by(LedgerTransaction.id.asc())
        )
        return list(session.scalars(stmt).all())

    def reconcile(self, session: Session, user_id: int) -> LedgerReconciliation:
        """Replay the transaction log and compare it with the stored balance."""

        running = Decimal("0.00")
        breaks: list[int] = []
        rows = self.history(session, user_id)
        for row in rows:
            running = to_money(running + to_money(row.amount))
            if to_money(row.balance) != running:
                breaks.append(row.id)
                # continue from the recorded snapshot so one bad row is
                # reported once rather than cascading
                running = to_money(row.balance)
        total = to_money(sum((to_money(r.amount) for r in rows), Decimal("0.00")))
        return LedgerReconciliation(
            user_id=user_id,
            kind=self.kind,
            stored_balance=self.balance(session, user_id),
            transaction_sum=total,
            transaction_count=len(rows),
            chain_breaks=breaks,
        )

    def _positive(self, amount: AmountLike) -> Decimal:
        value = to_money(amount)
        if value <= 0:
            raise ValueError("amount must be positive")
        return value

    def _apply(
        self,
        session: Session,
        user_id: int,
        signed_amount: Decimal,
        description: str,
        *,
        reference: Optional[str],
        tx_type: str,
        created_by: Optional[str],
        allow_negative: bool,
    ) -> LedgerTransaction:
        column = self._column
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values({column.key: column + signed_amount})
            .execution_options(synchronize_session=False)
        )
        if signed_amount < 0 and not allow_negative:
            # The balance check and the write are one statement, so two
            # concurrent debits cannot both pass against the same balance.
            stmt = stmt.where(column >= -signed_amount)

        result = session.execute(stmt)
        if result.rowcount == 0:
            current = self.balance(session, user_id)
            logger.warning(
                f"Refused {self.kind} debit of {-signed_amount} for user {user_id}: "
                f"balance {current}"
            )
            raise InsufficientFundsError(self.kind, current, -signed_amount)

        user = session.get(User, user_id)
        assert user is not None
        session.refresh(user, [column.key])
        new_balance = to_money(getattr(user, column.key))

        transaction = LedgerTransaction(
            user_id=user_id,
            kind=self.kind,
            tx_type=tx_type,
            amount=signed_amount,
            balance=new_balance,
            description=description[:255],
            reference=reference[:255] if reference else None,
            created_by=created_by,
        )
        session.add(transaction)
        session.flush()
        logger.info(
            f"Ledger {self.kind} {tx_type} {signed_amount} for user {user_id} "
            f"-> balance {new_balance} (ref={reference})"
        )
        return transaction


CASH_LEDGER = Ledger("cash")
CREDIT_LEDGER = Ledger("credit")


def get_ledger(kind: str) -> Ledger:
    """Return the shared ledger instance for ``kind``."""

    if kind == "cash":
        return CASH_LEDGER
    if kind == "credit":
        return CREDIT_LEDGER
    raise ValueError(f"Unknown ledger kind '{kind}'")


__all__ = [
    "CASH_LEDGER",
    "CREDIT_LEDGER",
    "Ledger",
    "LedgerReconciliation",
    "get_ledger",
]
