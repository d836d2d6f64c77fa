import random
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import sessionmaker

from compcore.errors import (
    CapacityExceededError,
    CompetitionClosedError,
    InsufficientFundsError,
    PaymentMismatchError,
    PoolAlreadyInUseError,
    WithdrawalStateError,
)
from compcore.ledger import CASH_LEDGER, CREDIT_LEDGER
from compcore.models import (
    Base,
    Competition,
    Entry,
    EntryTicket,
    InstantPrize,
    InstantWinTicket,
    LedgerTransaction,
    User,
    WithdrawalRequest,
)
from compcore.workflows import (
    Purchase,
    PurchaseItem,
    adjust_balance,
    allocate_and_create_entry,
    approve_withdrawal,
    audit_competition,
    checkout,
    clear_winner,
    competition_stats,
    delete_instant_prize,
    draw_winner,
    generate_prize_pool,
    get_balance,
    instant_prize_summary,
    ledger_history,
    mark_winner_notified,
    reject_withdrawal,
    request_withdrawal,
    settle_instant_wins,
    upsert_instant_prize,
)


class WorkflowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )
        with self.Session.begin() as session:
            user = User(email="player@example.com", name="Player")
            end = datetime.now(timezone.utc) + timedelta(days=3)
            car = Competition(
                title="Car", max_tickets=100, ticket_price=Decimal("2.00"), end_date=end, is_active=True
            )
            cash = Competition(
                title="Cash", max_tickets=5, ticket_price=Decimal("0.50"), end_date=end, is_active=True
            )
            session.add_all([user, car, cash])
            session.flush()
            self.user_id = user.id
            self.car_id = car.id
            self.cash_id = cash.id

    def tearDown(self) -> None:
        self.engine.dispose()

    def _count(self, session, model) -> int:
        return session.scalar(select(func.count()).select_from(model))


class CheckoutTests(WorkflowTestCase):
    def test_multi_item_checkout_with_credit(self) -> None:
        with self.Session.begin() as session:
            CREDIT_LEDGER.credit(session, self.user_id, "5.00", "Bonus")

        with self.Session.begin() as session:
            result = checkout(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.cash_id, 2), PurchaseItem(self.car_id, 3)],
                    authorized_cash_amount=Decimal("2.00"),
                    authorized_credit_amount=Decimal("5.00"),
                ),
            )
            cash_entry, car_entry = result.entries
            self.assertEqual(cash_entry.payment_method, "credit")
            self.assertEqual(cash_entry.credit_used, Decimal("1.00"))
            self.assertEqual(car_entry.total_cost, Decimal("6.00"))
            self.assertEqual(car_entry.payment_method, "mixed")
            self.assertEqual(car_entry.credit_used, Decimal("4.00"))
            self.assertEqual(cash_entry.ticket_numbers, [1, 2])
            self.assertEqual(len(result.win_summaries), 2)
            self.assertIsNotNone(cash_entry.settled_at)

            tx = result.credit_transaction
            self.assertEqual(tx.amount, Decimal("-5.00"))
            self.assertEqual(tx.tx_type, "purchase")
            self.assertEqual(tx.reference, f"{cash_entry.id},{car_entry.id}")
            self.assertEqual(get_balance(session, self.user_id)["credit"], Decimal("0.00"))

    def test_first_item_is_mixed_when_credit_runs_out(self) -> None:
        with self.Session.begin() as session:
            CREDIT_LEDGER.credit(session, self.user_id, "1.00", "Bonus")
            entry = allocate_and_create_entry(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.car_id, 2, ticket_price=Decimal("2.00"))],
                    authorized_cash_amount=Decimal("3.00"),
                    authorized_credit_amount=Decimal("1.00"),
                ),
            )
            self.assertEqual(entry.payment_method, "mixed")
            self.assertIsNone(entry.settled_at)

    def test_failed_second_item_rolls_back_the_whole_checkout(self) -> None:
        with self.assertRaises(CapacityExceededError):
            with self.Session.begin() as session:
                checkout(
                    session,
                    Purchase(
                        user_id=self.user_id,
                        items=[PurchaseItem(self.car_id, 4), PurchaseItem(self.cash_id, 6)],
                        authorized_cash_amount=Decimal("11.00"),
                    ),
                )

        with self.Session() as session:
            self.assertEqual(self._count(session, Entry), 0)
            self.assertEqual(self._count(session, EntryTicket), 0)
            self.assertEqual(session.get(Competition, self.car_id).tickets_issued, 0)

    def test_insufficient_credit_rolls_back_entries(self) -> None:
        with self.assertRaises(InsufficientFundsError):
            with self.Session.begin() as session:
                checkout(
                    session,
                    Purchase(
                        user_id=self.user_id,
                        items=[PurchaseItem(self.car_id, 1)],
                        authorized_credit_amount=Decimal("2.00"),
                    ),
                )
        with self.Session() as session:
            self.assertEqual(self._count(session, Entry), 0)

    def test_payment_must_cover_the_order(self) -> None:
        with self.Session.begin() as session:
            with self.assertRaises(PaymentMismatchError):
                checkout(
                    session,
                    Purchase(
                        user_id=self.user_id,
                        items=[PurchaseItem(self.car_id, 2)],
                        authorized_cash_amount=Decimal("3.99"),
                    ),
                )
            with self.assertRaises(PaymentMismatchError):
                checkout(
                    session,
                    Purchase(
                        user_id=self.user_id,
                        items=[PurchaseItem(self.car_id, 1, ticket_price=Decimal("1.00"))],
                        authorized_cash_amount=Decimal("1.00"),
                    ),
                )
            with self.assertRaises(ValueError):
                checkout(session, Purchase(user_id=self.user_id, items=[]))

    def test_overpayment_is_logged(self) -> None:
        with self.Session.begin() as session:
            with self.assertLogs("compcore.workflows", level="WARNING") as logs:
                result = checkout(
                    session,
                    Purchase(
                        user_id=self.user_id,
                        items=[PurchaseItem(self.car_id, 2)],
                        authorized_cash_amount=Decimal("5.00"),
                    ),
                )
            self.assertEqual(len(result.entries), 1)
            self.assertIn("excess £1.00", logs.output[0])

    def test_checkout_pays_instant_wins(self) -> None:
        with self.Session.begin() as session:
            prize = upsert_instant_prize(
                session,
                self.cash_id,
                name="£1 Cash",
                prize_type="cash",
                value=Decimal("1.00"),
                total_wins=2,
                rng=random.Random(4),
            )
            self.assertEqual(len(prize.tickets), 2)

            result = checkout(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.cash_id, 5)],
                    authorized_cash_amount=Decimal("2.50"),
                ),
            )
            self.assertEqual(result.total_cash_won, Decimal("2.00"))
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("2.00"))
            self.assertEqual(
                settle_instant_wins(session, result.entries[0].id).total_cash_won,
                Decimal("2.00"),
            )
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("2.00"))
            self.assertTrue(audit_competition(session, self.cash_id).ok)


class PrizeAdminTests(WorkflowTestCase):
    def test_generate_from_mapping_and_summary(self) -> None:
        with self.Session.begin() as session:
            upsert_instant_prize(
                session,
                self.car_id,
                name="Holiday",
                prize_type="cash",
                value=Decimal("40.00"),
                total_wins=1,
                rng=random.Random(1),
            )
            result = generate_prize_pool(
                session,
                self.car_id,
                {
                    "target_payout_ratio": "0.5",
                    "instant_share": "0.9",
                    "tiers": [
                        {"name": "Credit", "percent": 50, "unit_value": 1, "prize_type": "credit"},
                        {"name": "Cash", "percent": 50, "unit_value": 5, "prize_type": "cash"},
                    ],
                },
                rng=random.Random(1),
            )
            # 100 * 2 * 0.5 * 0.9 = 90 -> 45 credits of £1 and 9 cash of £5
            self.assertEqual(len(result.tickets), 45 + 9 + 1)

            summary = instant_prize_summary(session, self.car_id)
            self.assertEqual([row["name"] for row in summary], ["Holiday", "£5 Cash", "£1 Credit"])
            self.assertTrue(summary[0]["is_manual"])
            self.assertEqual(summary[2]["remaining_wins"], 45)

    def test_upsert_places_numbers_away_from_sold_tickets(self) -> None:
        with self.Session.begin() as session:
            checkout(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.car_id, 90)],
                    authorized_cash_amount=Decimal("180.00"),
                ),
            )
            prize = upsert_instant_prize(
                session,
                self.car_id,
                name="£1 Credit",
                prize_type="credit",
                value=1,
                total_wins=2,
                rng=random.Random(8),
            )
            numbers = [t.ticket_number for t in prize.tickets]
            self.assertEqual(len(numbers), 2)
            self.assertTrue(all(n > 90 for n in numbers))

    def test_upsert_resizes_and_respects_claims(self) -> None:
        with self.Session.begin() as session:
            prize = upsert_instant_prize(
                session,
                self.car_id,
                name="£2 Credit",
                prize_type="credit",
                value=2,
                total_wins=4,
                rng=random.Random(2),
            )
            session.execute(
                update(InstantWinTicket)
                .where(InstantWinTicket.prize_id == prize.id)
                .where(InstantWinTicket.id == prize.tickets[0].id)
                .values(winner_id=self.user_id)
            )

            updated = upsert_instant_prize(
                session,
                self.car_id,
                prize_id=prize.id,
                name="£3 Credit",
                prize_type="credit",
                value=3,
                total_wins=2,
            )
            self.assertEqual(updated.total_wins, 2)
            self.assertEqual(updated.remaining_wins, 1)
            self.assertEqual(updated.value, Decimal("3.00"))
            self.assertEqual(len(updated.tickets), 2)

            with self.assertRaises(ValueError):
                upsert_instant_prize(
                    session,
                    self.car_id,
                    prize_id=prize.id,
                    name="£3 Credit",
                    prize_type="credit",
                    value=3,
                    total_wins=0,
                )
            with self.assertRaises(PoolAlreadyInUseError):
                delete_instant_prize(session, prize.id)

    def test_delete_unclaimed_prize(self) -> None:
        with self.Session.begin() as session:
            prize = upsert_instant_prize(
                session,
                self.car_id,
                name="Voucher",
                prize_type="cash",
                value=10,
                total_wins=2,
                rng=random.Random(5),
            )
            delete_instant_prize(session, prize.id)
            self.assertEqual(self._count(session, InstantPrize), 0)
            self.assertEqual(self._count(session, InstantWinTicket), 0)
            self.assertFalse(session.get(Competition, self.car_id).has_instant_wins)

    def test_stats_and_audit(self) -> None:
        with self.Session.begin() as session:
            checkout(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.car_id, 25)],
                    authorized_cash_amount=Decimal("50.00"),
                ),
            )
            stats = competition_stats(session, self.car_id)
            self.assertEqual(stats["tickets_sold"], 25)
            self.assertEqual(stats["tickets_remaining"], 75)
            self.assertEqual(stats["progress_percent"], 25.0)
            self.assertTrue(stats["is_open"])

            self.assertTrue(audit_competition(session, self.car_id).ok)

            session.execute(
                update(Competition).where(Competition.id == self.car_id).values(tickets_issued=30)
            )
            audit = audit_competition(session, self.car_id)
            self.assertFalse(audit.ok)
            self.assertIn("counter 30 != entry quantities 25", audit.problems)


class DrawWorkflowTests(WorkflowTestCase):
    def test_draw_clear_and_finalize(self) -> None:
        with self.Session.begin() as session:
            checkout(
                session,
                Purchase(
                    user_id=self.user_id,
                    items=[PurchaseItem(self.car_id, 3)],
                    authorized_cash_amount=Decimal("6.00"),
                ),
            )
            result = draw_winner(session, self.car_id, rng=random.Random(0))
            self.assertEqual(result.winner_user_id, self.user_id)
            self.assertIn(result.winning_ticket_number, [1, 2, 3])

            with self.assertRaises(CompetitionClosedError):
                upsert_instant_prize(
                    session, self.car_id, name="x", prize_type="cash", value=1, total_wins=1
                )

            self.assertIsNone(clear_winner(session, self.car_id).winner_id)
            draw_winner(session, self.car_id, rng=random.Random(1))
            self.assertIsNotNone(mark_winner_notified(session, self.car_id).winner_notified_at)


class BalanceWorkflowTests(WorkflowTestCase):
    def _fund(self, amount: str) -> None:
        with self.Session.begin() as session:
            CASH_LEDGER.credit(session, self.user_id, amount, "Instant win")

    def test_withdrawal_over_balance_is_refused(self) -> None:
        self._fund("15.00")
        with self.Session.begin() as session:
            with self.assertRaises(InsufficientFundsError):
                request_withdrawal(session, self.user_id, Decimal("20.00"), "bank_transfer")
            self.assertEqual(self._count(session, WithdrawalRequest), 0)
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("15.00"))

    def test_minimum_and_single_pending_request(self) -> None:
        self._fund("15.00")
        with self.Session.begin() as session:
            with self.assertRaises(ValueError):
                request_withdrawal(session, self.user_id, Decimal("4.99"), "bank_transfer")
            request_withdrawal(session, self.user_id, Decimal("5.00"), "bank_transfer")
            with self.assertRaises(WithdrawalStateError):
                request_withdrawal(session, self.user_id, Decimal("5.00"), "bank_transfer")

    def test_request_reserves_and_approval_leaves_ledger_alone(self) -> None:
        self._fund("15.00")
        with self.Session.begin() as session:
            request = request_withdrawal(
                session, self.user_id, Decimal("10.00"), "paypal", {"email": "p@example.com"}
            )
            self.assertEqual(request.status, "pending")
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("5.00"))
            history_before = len(ledger_history(session, self.user_id, "cash"))

            approved = approve_withdrawal(session, request.id, "admin-7", notes="paid")
            self.assertEqual(approved.status, "completed")
            self.assertEqual(approved.processed_by, "admin-7")
            self.assertEqual(len(ledger_history(session, self.user_id, "cash")), history_before)
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("5.00"))

            with self.assertRaises(WithdrawalStateError):
                reject_withdrawal(session, request.id, "admin-7", "too late")

    def test_rejection_refunds_exactly_the_reserved_amount(self) -> None:
        self._fund("15.00")
        with self.Session.begin() as session:
            request = request_withdrawal(session, self.user_id, Decimal("12.50"), "bank_transfer")
            rejected = reject_withdrawal(session, request.id, "admin-1", "Details invalid")

            self.assertEqual(rejected.status, "rejected")
            self.assertEqual(rejected.rejection_reason, "Details invalid")
            refund = ledger_history(session, self.user_id, "cash")[-1]
            self.assertEqual(refund.tx_type, "withdrawal_refund")
            self.assertEqual(refund.amount, Decimal("12.50"))
            self.assertEqual(refund.reference, str(request.id))
            self.assertEqual(get_balance(session, self.user_id)["cash"], Decimal("15.00"))
            self.assertTrue(CASH_LEDGER.reconcile(session, self.user_id).ok)

    def test_admin_adjustment(self) -> None:
        with self.Session.begin() as session:
            adjust_balance(session, self.user_id, "credit", Decimal("3.00"), "Goodwill", "admin-2")
            with self.assertRaises(InsufficientFundsError):
                adjust_balance(session, self.user_id, "credit", Decimal("-5.00"), "Clawback", "admin-2")
            tx = adjust_balance(
                session,
                self.user_id,
                "credit",
                Decimal("-5.00"),
                "Clawback",
                "admin-2",
                allow_negative=True,
            )
            self.assertEqual(tx.balance, Decimal("-2.00"))
            self.assertEqual(tx.created_by, "admin-2")
            self.assertEqual(
                [t.tx_type for t in ledger_history(session, self.user_id)],
                ["admin_adjustment", "admin_adjustment"],
            )
            with self.assertRaises(ValueError):
                adjust_balance(session, self.user_id, "credit", 0, "Nothing", "admin-2")

    def test_every_ledger_row_chains(self) -> None:
        self._fund("20.00")
        with self.Session.begin() as session:
            request = request_withdrawal(session, self.user_id, Decimal("6.00"), "bank_transfer")
            reject_withdrawal(session, request.id, "admin", "No")
            request_withdrawal(session, self.user_id, Decimal("7.00"), "bank_transfer")
            rows = session.scalars(
                select(LedgerTransaction).order_by(LedgerTransaction.id)
            ).all()
            running = Decimal("0.00")
            for row in rows:
                running += row.amount
                self.assertEqual(row.balance, running)
            self.assertEqual(running, Decimal("13.00"))


if __name__ == "__main__":
    unittest.main()
