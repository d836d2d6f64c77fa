"""Operations exposed to the payment, admin and account collaborators.

Every function takes an active :class:`~sqlalchemy.orm.Session`, flushes its
writes and leaves the commit to the caller. Run each request inside
``with Session.begin():`` so that any raised error rolls back every write
made on its behalf.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .allocation import TicketAllocator
from .config import Settings, settings as default_settings
from .draw import DrawEngine, DrawResult
from .errors import (
    CompetitionClosedError,
    InsufficientFundsError,
    MalformedTicketDataError,
    PaymentMismatchError,
    PoolAlreadyInUseError,
    WithdrawalStateError,
)
from .instant_win import InstantWinSettler, WinSummary
from .ledger import CASH_LEDGER, CREDIT_LEDGER, get_ledger
from .models import (
    Competition,
    Entry,
    EntryTicket,
    InstantPrize,
    InstantWinTicket,
    LedgerTransaction,
    User,
    WithdrawalRequest,
)
from .models.utils import to_money
from .prize_pool import PrizePoolGenerator, PrizePoolPolicy, PrizePoolResult
from .prize_pool.generator import draw_unique_numbers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseItem:
    """One line of a checkout.

    ``ticket_price`` is the price the payment collaborator charged; when given
    it must match the competition's own price.
    """

    competition_id: int
    quantity: int
    ticket_price: Optional[Decimal] = None


@dataclass(frozen=True)
class Purchase:
    """An authorized purchase handed over by the payment collaborator."""

    user_id: int
    items: Sequence[PurchaseItem]
    authorized_cash_amount: Decimal = Decimal("0.00")
    authorized_credit_amount: Decimal = Decimal("0.00")


@dataclass
class CheckoutResult:
    """Entries created by a checkout with their instant-win outcomes."""

    entries: list[Entry]
    win_summaries: list[WinSummary] = field(default_factory=list)
    credit_transaction: Optional[LedgerTransaction] = None

    @property
    def total_cash_won(self) -> Decimal:
        return to_money(sum((s.total_cash_won for s in self.win_summaries), Decimal("0")))

    @property
    def total_credit_won(self) -> Decimal:
        return to_money(
            sum((s.total_credit_won for s in self.win_summaries), Decimal("0"))
        )


@dataclass
class CompetitionAudit:
    """Findings of :func:`audit_competition`; ``ok`` when ``problems`` is empty."""

    competition_id: int
    tickets_issued: int
    entry_quantity_total: int
    entry_ticket_rows: int
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def _create_entries(
    session: Session,
    purchase: Purchase,
    clock=None,
) -> tuple[list[Entry], Optional[LedgerTransaction]]:
    if not purchase.items:
        raise ValueError("A purchase needs at least one item")

    cash = to_money(purchase.authorized_cash_amount)
    credit = to_money(purchase.authorized_credit_amount)
    if cash < 0 or credit < 0:
        raise PaymentMismatchError("Authorized amounts must not be negative")

    costs: list[Decimal] = []
    for item in purchase.items:
        competition = session.get(Competition, item.competition_id)
        if competition is None:
            raise ValueError(f"Competition {item.competition_id} not found")
        price = to_money(competition.ticket_price)
        if item.ticket_price is not None and to_money(item.ticket_price) != price:
            raise PaymentMismatchError(
                f'Ticket price for "{competition.title}" is £{price:.2f}, '
                f"not £{to_money(item.ticket_price):.2f}"
            )
        costs.append(to_money(price * item.quantity))

    total = to_money(sum(costs, Decimal("0")))
    if credit > total:
        raise PaymentMismatchError(
            f"Credit of £{credit:.2f} exceeds the order total of £{total:.2f}"
        )
    if cash + credit < total:
        raise PaymentMismatchError(
            f"Authorized £{cash + credit:.2f} does not cover the order total of £{total:.2f}"
        )
    if cash + credit > total:
        logger.warning(
            f"User {purchase.user_id} authorized £{cash + credit:.2f} for an order "
            f"total of £{total:.2f}; the excess £{cash + credit - total:.2f} is not charged"
        )

    allocator = TicketAllocator(session, clock=clock)
    entries: list[Entry] = []
    credit_left = credit
    for item, cost in zip(purchase.items, costs):
        credit_used = min(credit_left, cost)
        credit_left -= credit_used
        if credit_used == 0:
            method = "card"
        elif credit_used == cost:
            method = "credit"
        else:
            method = "mixed"
        entries.append(
            allocator.create_entry(
                purchase.user_id,
                item.competition_id,
                item.quantity,
                payment_method=method,
                credit_used=credit_used,
            )
        )

    transaction = None
    if credit > 0:
        transaction = CREDIT_LEDGER.debit(
            session,
            purchase.user_id,
            credit,
            f"Ticket purchase ({len(entries)} entr{'y' if len(entries) == 1 else 'ies'})",
            reference=",".join(str(e.id) for e in entries),
            tx_type="purchase",
        )
    return entries, transaction


def allocate_and_create_entry(session: Session, purchase: Purchase, *, clock=None) -> Entry:
    """Allocate tickets for a single-item purchase and persist its entry.

    Site credit named in ``authorized_credit_amount`` is debited in the same
    transaction. Instant wins are not settled here; see
    :func:`settle_instant_wins`.

    Raises
    ------
    CapacityExceededError
        If the competition does not have ``quantity`` tickets left.
    CompetitionClosedError
        If the competition does not accept entries.
    InsufficientFundsError
        If the user's site credit does not cover the credit part.
    PaymentMismatchError
        If the authorized amounts do not cover the cost.
    """

    if len(purchase.items) != 1:
        raise ValueError("allocate_and_create_entry handles exactly one item; use checkout")
    entries, _ = _create_entries(session, purchase, clock)
    return entries[0]


def checkout(session: Session, purchase: Purchase, *, clock=None) -> CheckoutResult:
    """Create and settle an entry for every item of ``purchase``.

    Every item is allocated before anything is settled, so a refused item
    raises before any prize is paid and the whole checkout rolls back with
    the caller's transaction.
    """

    entries, transaction = _create_entries(session, purchase, clock)
    settler = InstantWinSettler(session, clock=clock)
    summaries = [settler.settle(entry.id) for entry in entries]
    result = CheckoutResult(
        entries=entries, win_summaries=summaries, credit_transaction=transaction
    )
    logger.info(
        f"Checkout for user {purchase.user_id}: {len(entries)} entr"
        f"{'y' if len(entries) == 1 else 'ies'}, instant cash {result.total_cash_won}, "
        f"instant credit {result.total_credit_won}"
    )
    return result


def settle_instant_wins(session: Session, entry_id: int, *, clock=None) -> WinSummary:
    """Settle an entry's instant wins; repeat calls return the stored result."""

    return InstantWinSettler(session, clock=clock).settle(entry_id)


# ---------------------------------------------------------------------------
# Prize pool administration
# ---------------------------------------------------------------------------


def generate_prize_pool(
    session: Session,
    competition_id: int,
    policy: Union[PrizePoolPolicy, Mapping[str, Any]],
    *,
    rng: Optional[random.Random] = None,
    settings: Optional[Settings] = None,
) -> PrizePoolResult:
    """Regenerate a competition's instant-win prizes from a budget policy.

    ``policy`` may be a :class:`PrizePoolPolicy` or a mapping with
    ``target_payout_ratio``, ``instant_share`` and ``tiers`` keys.
    """

    if not isinstance(policy, PrizePoolPolicy):
        policy = PrizePoolPolicy.build(
            policy["target_payout_ratio"], policy["instant_share"], policy["tiers"]
        )
    return PrizePoolGenerator(session, rng=rng, settings=settings).generate(
        competition_id, policy
    )


def _claimed_count(session: Session, prize_id: int) -> int:
    return (
        session.scalar(
            select(func.count())
            .select_from(InstantWinTicket)
            .where(InstantWinTicket.prize_id == prize_id, InstantWinTicket.winner_id.isnot(None))
        )
        or 0
    )


def upsert_instant_prize(
    session: Session,
    competition_id: int,
    *,
    name: str,
    prize_type: str,
    value: Decimal,
    total_wins: int,
    prize_id: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> InstantPrize:
    """Create or update an admin-defined instant prize.

    New wins receive winning numbers drawn from the numbers that are neither
    sold nor already winning. Lowering ``total_wins`` removes unclaimed
    winning numbers; it can never go below the number of claimed wins.
    """

    competition = session.get(Competition, competition_id)
    if competition is None:
        raise ValueError(f"Competition {competition_id} not found")
    if competition.winner_id is not None:
        raise CompetitionClosedError(
            f'Competition "{competition.title}" has been drawn; its prizes are frozen'
        )
    value = to_money(value)
    if value <= 0:
        raise ValueError("Prize value must be positive")
    if total_wins < 1:
        raise ValueError("total_wins must be at least 1")

    if prize_id is None:
        prize = InstantPrize(
            competition_id=competition_id,
            name=name,
            prize_type=prize_type,
            value=value,
            total_wins=total_wins,
            is_manual=True,
        )
        session.add(prize)
        session.flush()
        current_numbers = 0
        claimed = 0
    else:
        prize = session.get(InstantPrize, prize_id)
        if prize is None or prize.competition_id != competition_id:
            raise ValueError(f"Prize {prize_id} not found in competition {competition_id}")
        if prize_type not in ("cash", "credit"):
            raise ValueError("prize_type must be 'cash' or 'credit'")
        claimed = _claimed_count(session, prize.id)
        if total_wins < claimed:
            raise ValueError(
                f"Cannot reduce total wins to {total_wins}: {claimed} already claimed"
            )
        current_numbers = (
            session.scalar(
                select(func.count())
                .select_from(InstantWinTicket)
                .where(InstantWinTicket.prize_id == prize.id)
            )
            or 0
        )
        prize.name = name
        prize.prize_type = prize_type
        prize.value = value
        prize.total_wins = total_wins
        prize.remaining_wins = total_wins - claimed

    if total_wins > current_numbers:
        taken = set(
            session.scalars(
                select(InstantWinTicket.ticket_number).where(
                    InstantWinTicket.competition_id == competition_id
                )
            ).all()
        )
        taken.update(
            session.scalars(
                select(EntryTicket.ticket_number).where(
                    EntryTicket.competition_id == competition_id
                )
            ).all()
        )
        numbers = draw_unique_numbers(
            total_wins - current_numbers,
            competition.max_tickets,
            rng or random.SystemRandom(),
            reserved=taken,
        )
        session.add_all(
            InstantWinTicket(
                competition_id=competition_id, ticket_number=n, prize_id=prize.id
            )
            for n in numbers
        )
    elif total_wins < current_numbers:
        surplus = session.scalars(
            select(InstantWinTicket.id)
            .where(InstantWinTicket.prize_id == prize.id, InstantWinTicket.winner_id.is_(None))
            .order_by(InstantWinTicket.id.desc())
            .limit(current_numbers - total_wins)
        ).all()
        session.execute(
            delete(InstantWinTicket)
            .where(InstantWinTicket.id.in_(surplus))
            .execution_options(synchronize_session="fetch")
        )
        session.expire(prize, ["tickets"])

    competition.has_instant_wins = True
    session.flush()
    logger.info(
        f"Instant prize {prize.id} ({prize.name}) saved for competition "
        f"{competition_id}: {prize.remaining_wins}/{prize.total_wins} remaining"
    )
    return prize


def delete_instant_prize(session: Session, prize_id: int) -> None:
    """Delete a prize and its winning numbers; refused once any was claimed."""

    prize = session.get(InstantPrize, prize_id)
    if prize is None:
        raise ValueError(f"Prize {prize_id} not found")
    claimed = _claimed_count(session, prize_id)
    if claimed:
        raise PoolAlreadyInUseError(claimed)

    competition_id = prize.competition_id
    session.execute(
        delete(InstantWinTicket)
        .where(InstantWinTicket.prize_id == prize_id)
        .execution_options(synchronize_session="fetch")
    )
    session.delete(prize)
    session.flush()

    competition = session.get(Competition, competition_id)
    assert competition is not None
    session.expire(competition, ["instant_prizes", "instant_win_tickets"])
    remaining = session.scalar(
        select(func.count())
        .select_from(InstantPrize)
        .where(InstantPrize.competition_id == competition_id)
    )
    if not remaining:
        competition.has_instant_wins = False
        session.flush()
    logger.info(f"Instant prize {prize_id} deleted from competition {competition_id}")


def instant_prize_summary(session: Session, competition_id: int) -> list[dict[str, Any]]:
    """Return total, remaining and claimed wins per prize, highest value first."""

    prizes = session.scalars(
        select(InstantPrize)
        .where(InstantPrize.competition_id == competition_id)
        .order_by(InstantPrize.value.desc(), InstantPrize.id.asc())
    ).all()
    return [
        {
            "id": p.id,
            "name": p.name,
            "prize_type": p.prize_type,
            "value": to_money(p.value),
            "total_wins": p.total_wins,
            "remaining_wins": p.remaining_wins,
            "claimed_wins": p.claimed_wins,
            "is_manual": p.is_manual,
        }
        for p in prizes
    ]


def competition_stats(
    session: Session, competition_id: int, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Return sold / remaining counts and the sales progress of a competition."""

    competition = session.get(Competition, competition_id)
    if competition is None:
        raise ValueError(f"Competition {competition_id} not found")
    sold = competition.tickets_issued
    return {
        "id": competition.id,
        "title": competition.title,
        "max_tickets": competition.max_tickets,
        "tickets_sold": sold,
        "tickets_remaining": competition.remaining_tickets,
        "progress_percent": round(sold * 100 / competition.max_tickets, 2),
        "is_open": competition.is_open(now),
        "is_drawn": competition.is_drawn,
        "has_instant_wins": competition.has_instant_wins,
    }


def audit_competition(session: Session, competition_id: int) -> CompetitionAudit:
    """Cross-check a competition's counters, ticket rows and prize claims."""

    competition = session.get(Competition, competition_id)
    if competition is None:
        raise ValueError(f"Competition {competition_id} not found")

    entries = session.scalars(
        select(Entry).where(Entry.competition_id == competition_id).order_by(Entry.id)
    ).all()
    quantity_total = sum(e.quantity for e in entries)
    ticket_rows = session.scalars(
        select(EntryTicket.ticket_number).where(
            EntryTicket.competition_id == competition_id
        )
    ).all()

    audit = CompetitionAudit(
        competition_id=competition_id,
        tickets_issued=competition.tickets_issued,
        entry_quantity_total=quantity_total,
        entry_ticket_rows=len(ticket_rows),
    )
    if competition.tickets_issued != quantity_total:
        audit.problems.append(
            f"counter {competition.tickets_issued} != entry quantities {quantity_total}"
        )
    if len(ticket_rows) != quantity_total:
        audit.problems.append(
            f"{len(ticket_rows)} ticket rows for {quantity_total} purchased tickets"
        )
    if quantity_total > competition.max_tickets:
        audit.problems.append(
            f"{quantity_total} tickets issued over a cap of {competition.max_tickets}"
        )

    listed: Counter = Counter()
    for entry in entries:
        # a corrupt list is reported rather than raised
        try:
            listed.update(entry.ticket_number_list())
        except MalformedTicketDataError as exc:
            audit.problems.append(str(exc))
    duplicates = sorted(n for n, c in listed.items() if c > 1)
    if duplicates:
        audit.problems.append(f"duplicate ticket numbers {duplicates}")
    out_of_range = sorted(n for n in listed if n > competition.max_tickets)
    if out_of_range:
        audit.problems.append(f"ticket numbers outside 1..{competition.max_tickets}: {out_of_range}")

    for prize in session.scalars(
        select(InstantPrize).where(InstantPrize.competition_id == competition_id)
    ).all():
        claimed = _claimed_count(session, prize.id)
        if prize.total_wins - prize.remaining_wins != claimed:
            audit.problems.append(
                f"prize {prize.id} records {prize.claimed_wins} claimed wins "
                f"but {claimed} tickets are claimed"
            )

    if audit.problems:
        logger.warning(
            f"Audit of competition {competition_id} found {len(audit.problems)} problem(s)"
        )
    return audit


# ---------------------------------------------------------------------------
# Draw
# ---------------------------------------------------------------------------


def draw_winner(
    session: Session, competition_id: int, *, rng: Optional[random.Random] = None
) -> DrawResult:
    """Draw the grand-prize winner of a competition."""

    return DrawEngine(session, rng=rng).draw(competition_id)


def clear_winner(session: Session, competition_id: int) -> Competition:
    """Undo an unannounced draw and reopen the competition."""

    return DrawEngine(session).clear_winner(competition_id)


def mark_winner_notified(session: Session, competition_id: int) -> Competition:
    """Record that the winner was told; the draw becomes final."""

    return DrawEngine(session).mark_winner_notified(competition_id)


# ---------------------------------------------------------------------------
# Balances and withdrawals
# ---------------------------------------------------------------------------


def get_balance(session: Session, user_id: int) -> dict[str, Decimal]:
    """Return ``{"cash": ..., "credit": ...}`` for a user."""

    return {
        "cash": CASH_LEDGER.balance(session, user_id),
        "credit": CREDIT_LEDGER.balance(session, user_id),
    }


def ledger_history(
    session: Session, user_id: int, kind: Optional[str] = None
) -> list[LedgerTransaction]:
    """Return a user's transactions, oldest first, optionally for one ledger."""

    if kind is not None:
        return get_ledger(kind).history(session, user_id)
    stmt = (
        select(LedgerTransaction)
        .where(LedgerTransaction.user_id == user_id)
        .order_by(LedgerTransaction.id.asc())
    )
    return list(session.scalars(stmt).all())


def adjust_balance(
    session: Session,
    user_id: int,
    kind: str,
    amount: Decimal,
    description: str,
    admin_id: str,
    *,
    allow_negative: bool = False,
) -> LedgerTransaction:
    """Apply a signed administrative adjustment to one of a user's balances.

    Raises
    ------
    InsufficientFundsError
        If a negative adjustment exceeds the balance and ``allow_negative``
        is not set.
    """

    value = to_money(amount)
    if value == 0:
        raise ValueError("Adjustment amount must not be zero")
    ledger = get_ledger(kind)
    text = f"Admin adjustment: {description}"
    if value > 0:
        transaction = ledger.credit(
            session, user_id, value, text, tx_type="admin_adjustment", created_by=admin_id
        )
    else:
        transaction = ledger.debit(
            session,
            user_id,
            -value,
            text,
            tx_type="admin_adjustment",
            created_by=admin_id,
            allow_negative=allow_negative,
        )
    logger.info(f"Admin {admin_id} adjusted {kind} balance of user {user_id} by {value}")
    return transaction


def request_withdrawal(
    session: Session,
    user_id: int,
    amount: Decimal,
    payment_method: str,
    payment_details: Optional[dict] = None,
    *,
    settings: Optional[Settings] = None,
) -> WithdrawalRequest:
    """Open a withdrawal request and reserve its amount from the cash balance.

    Raises
    ------
    ValueError
        If ``amount`` is below the configured minimum or the user is unknown.
    WithdrawalStateError
        If the user already has a pending request.
    InsufficientFundsError
        If the cash balance does not cover ``amount``.
    """

    cfg = settings or default_settings
    value = to_money(amount)
    if value < cfg.MIN_WITHDRAWAL:
        raise ValueError(f"Minimum withdrawal amount is £{cfg.MIN_WITHDRAWAL:.2f}")
    if session.get(User, user_id) is None:
        raise ValueError(f"User {user_id} not found")

    pending = session.scalar(
        select(WithdrawalRequest.id).where(
            WithdrawalRequest.user_id == user_id, WithdrawalRequest.status == "pending"
        )
    )
    if pending is not None:
        raise WithdrawalStateError(
            "You already have a pending withdrawal request. "
            "Please wait for it to be processed."
        )

    balance = CASH_LEDGER.balance(session, user_id)
    if balance < value:
        logger.warning(
            f"Withdrawal of {value} refused for user {user_id}: cash balance {balance}"
        )
        raise InsufficientFundsError("cash", balance, value)

    request = WithdrawalRequest(
        user_id=user_id,
        amount=value,
        status="pending",
        payment_method=payment_method,
        payment_details=payment_details,
    )
    session.add(request)
    session.flush()
    CASH_LEDGER.debit(
        session,
        user_id,
        value,
        f"Withdrawal request #{request.id}",
        reference=str(request.id),
        tx_type="withdrawal",
    )
    logger.info(f"Withdrawal request {request.id} for {value} opened by user {user_id}")
    return request


def _process_withdrawal(
    session: Session,
    withdrawal_id: int,
    status: str,
    admin_id: str,
    **values: Any,
) -> WithdrawalRequest:
    request = session.get(WithdrawalRequest, withdrawal_id)
    if request is None:
        raise ValueError(f"Withdrawal request {withdrawal_id} not found")
    result = session.execute(
        update(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status == "pending")
        .values(
            status=status,
            processed_by=admin_id,
            processed_at=datetime.now(timezone.utc),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    session.refresh(request)
    if result.rowcount == 0:
        raise WithdrawalStateError(
            f"Withdrawal request {withdrawal_id} is already {request.status}"
        )
    return request


def approve_withdrawal(
    session: Session, withdrawal_id: int, admin_id: str, notes: Optional[str] = None
) -> WithdrawalRequest:
    """Mark a pending withdrawal as paid out.

    The amount was reserved when the request was opened, so no ledger row
    is written.
    """

    request = _process_withdrawal(session, withdrawal_id, "completed", admin_id, notes=notes)
    logger.info(f"Withdrawal request {withdrawal_id} approved by admin {admin_id}")
    return request


def reject_withdrawal(
    session: Session, withdrawal_id: int, admin_id: str, reason: str
) -> WithdrawalRequest:
    """Reject a pending withdrawal and refund the reserved amount."""

    request = _process_withdrawal(
        session, withdrawal_id, "rejected", admin_id, rejection_reason=reason
    )
    CASH_LEDGER.credit(
        session,
        request.user_id,
        request.amount,
        f"Withdrawal #{request.id} rejected: {reason}",
        reference=str(request.id),
        tx_type="withdrawal_refund",
        created_by=admin_id,
    )
    logger.info(f"Withdrawal request {withdrawal_id} rejected by admin {admin_id}")
    return request


__all__ = [
    "CheckoutResult",
    "CompetitionAudit",
    "Purchase",
    "PurchaseItem",
    "adjust_balance",
    "allocate_and_create_entry",
    "approve_withdrawal",
    "audit_competition",
    "checkout",
    "clear_winner",
    "competition_stats",
    "delete_instant_prize",
    "draw_winner",
    "generate_prize_pool",
    "get_balance",
    "instant_prize_summary",
    "ledger_history",
    "mark_winner_notified",
    "reject_withdrawal",
    "request_withdrawal",
    "settle_instant_wins",
]
