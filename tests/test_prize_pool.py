import random
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from compcore.config import Settings
from compcore.errors import (
    CompetitionClosedError,
    InvalidPolicyError,
    NumberSpaceExhaustedError,
    PoolAlreadyInUseError,
)
from compcore.models import Base, Competition, InstantPrize, InstantWinTicket, User
from compcore.prize_pool import (
    PrizePoolGenerator,
    PrizePoolPolicy,
    PrizeTier,
    display_amount,
    draw_unique_numbers,
)


def credit_policy(**overrides) -> PrizePoolPolicy:
    values = dict(
        target_payout_ratio="0.5",
        instant_share="0.96",
        tiers=[{"name": "Site Credit", "percent": 100, "unit_value": 2, "prize_type": "credit"}],
    )
    values.update(overrides)
    return PrizePoolPolicy.build(**values)


class PolicyTests(unittest.TestCase):
    def test_budget_math(self) -> None:
        policy = credit_policy()
        self.assertEqual(policy.total_budget(1000, Decimal("1")), Decimal("500.0"))
        self.assertEqual(policy.instant_budget(1000, Decimal("1")), Decimal("480.000"))

        planned = policy.plan(1000, Decimal("1"))
        self.assertEqual(len(planned), 1)
        self.assertEqual(planned[0].count, 240)
        self.assertEqual(planned[0].name, "£2 Site Credit")
        self.assertEqual(planned[0].prize_type, "credit")

    def test_small_tier_gets_at_least_one_prize_and_empty_tier_is_dropped(self) -> None:
        policy = credit_policy(
            tiers=[
                {"name": "Cash", "percent": 1, "unit_value": 100, "prize_type": "cash"},
                {"name": "Nothing", "percent": 0, "unit_value": 5, "prize_type": "cash"},
                {"name": "Credit", "percent": 99, "unit_value": "0.50", "prize_type": "credit"},
            ]
        )
        planned = policy.plan(100, Decimal("1"))
        self.assertEqual([p.name for p in planned], ["£100 Cash", "£0.50 Credit"])
        self.assertEqual(planned[0].count, 1)
        # 100 * 0.5 * 0.96 * 0.99 / 0.5 = 95.04
        self.assertEqual(planned[1].count, 95)

    def test_explicit_count_overrides_budget(self) -> None:
        policy = credit_policy(
            tiers=[PrizeTier("Jackpot", Decimal("0"), Decimal("250"), "cash", count=2)]
        )
        planned = policy.plan(1000, Decimal("1"))
        self.assertEqual([(p.name, p.count) for p in planned], [("£250 Jackpot", 2)])

    def test_validation_bounds(self) -> None:
        credit_policy().validate()
        with self.assertRaises(InvalidPolicyError):
            credit_policy(target_payout_ratio="0.9").validate()
        with self.assertRaises(InvalidPolicyError):
            credit_policy(instant_share="0.5").validate()
        with self.assertRaises(InvalidPolicyError):
            credit_policy(tiers=[]).validate()
        with self.assertRaises(InvalidPolicyError):
            credit_policy(
                tiers=[{"name": "x", "percent": 10, "unit_value": 1, "prize_type": "voucher"}]
            ).validate()
        with self.assertRaises(InvalidPolicyError):
            credit_policy(
                tiers=[{"name": "x", "percent": 10, "unit_value": 0, "prize_type": "cash"}]
            ).validate()
        with self.assertRaises(InvalidPolicyError):
            PrizePoolPolicy.build("lots", "0.9", [])

    def test_validation_bounds_are_configurable(self) -> None:
        class Generous(Settings):
            PAYOUT_RATIO_MAX = Decimal("0.95")

        credit_policy(target_payout_ratio="0.9").validate(Generous())

    def test_display_amount(self) -> None:
        self.assertEqual(display_amount(Decimal("2")), "2")
        self.assertEqual(display_amount(Decimal("2.00")), "2")
        self.assertEqual(display_amount(Decimal("2.5")), "2.50")


class DrawUniqueNumbersTests(unittest.TestCase):
    def test_numbers_are_unique_and_in_range(self) -> None:
        numbers = draw_unique_numbers(50, 60, random.Random(1))
        self.assertEqual(len(set(numbers)), 50)
        self.assertTrue(all(1 <= n <= 60 for n in numbers))

    def test_reserved_numbers_are_skipped(self) -> None:
        numbers = draw_unique_numbers(20, 100, random.Random(2), reserved=range(1, 11))
        self.assertEqual(len(set(numbers)), 20)
        self.assertTrue(all(11 <= n <= 100 for n in numbers))

    def test_space_too_small(self) -> None:
        with self.assertRaises(NumberSpaceExhaustedError):
            draw_unique_numbers(11, 10, random.Random(3))
        with self.assertRaises(NumberSpaceExhaustedError):
            draw_unique_numbers(3, 10, random.Random(3), reserved=range(1, 9))

    def test_attempt_budget_is_bounded(self) -> None:
        class Stuck(random.Random):
            def randint(self, a, b):
                return 1

        with self.assertRaises(NumberSpaceExhaustedError):
            draw_unique_numbers(2, 10, Stuck())


class PrizePoolGeneratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )
        with self.Session.begin() as session:
            competition = Competition(
                title="Pool Cup",
                max_tickets=1000,
                ticket_price=Decimal("1.00"),
                end_date=datetime.now(timezone.utc) + timedelta(days=7),
                is_active=True,
            )
            user = User(email="pool@example.com")
            session.add_all([competition, user])
            session.flush()
            self.competition_id = competition.id
            self.user_id = user.id

    def tearDown(self) -> None:
        self.engine.dispose()

    def _tickets(self, session):
        return session.scalars(
            select(InstantWinTicket).where(
                InstantWinTicket.competition_id == self.competition_id
            )
        ).all()

    def test_generates_240_unique_winning_numbers(self) -> None:
        with self.Session.begin() as session:
            result = PrizePoolGenerator(session, rng=random.Random(7)).generate(
                self.competition_id, credit_policy()
            )

            self.assertEqual(len(result.tickets), 240)
            self.assertEqual(len(result.generated_prizes), 1)
            prize = result.generated_prizes[0]
            self.assertEqual(prize.total_wins, 240)
            self.assertEqual(prize.remaining_wins, 240)
            self.assertEqual(result.total_prize_value, Decimal("480.00"))
            self.assertEqual(result.breakdown()[0]["count"], 240)

            numbers = [t.ticket_number for t in self._tickets(session)]
            self.assertEqual(len(numbers), 240)
            self.assertEqual(len(set(numbers)), 240)
            self.assertTrue(all(1 <= n <= 1000 for n in numbers))
            self.assertTrue(session.get(Competition, self.competition_id).has_instant_wins)

    def test_tier_order_does_not_follow_number_order(self) -> None:
        policy = credit_policy(
            tiers=[
                {"name": "Cash", "percent": 50, "unit_value": 10, "prize_type": "cash"},
                {"name": "Credit", "percent": 50, "unit_value": 1, "prize_type": "credit"},
            ]
        )
        with self.Session.begin() as session:
            result = PrizePoolGenerator(session, rng=random.Random(11)).generate(
                self.competition_id, policy
            )
            cash_prize = next(p for p in result.prizes if p.prize_type == "cash")
            stored_order = [t.prize_id for t in result.tickets]
            # cash wins are spread through the stored rows, not grouped first
            first_block = stored_order[: cash_prize.total_wins]
            self.assertNotEqual(first_block, [cash_prize.id] * cash_prize.total_wins)

    def test_regeneration_replaces_generated_and_keeps_manual_prizes(self) -> None:
        with self.Session.begin() as session:
            manual = InstantPrize(
                competition_id=self.competition_id,
                name="Signed Shirt",
                prize_type="cash",
                value=Decimal("50.00"),
                total_wins=2,
                is_manual=True,
            )
            session.add(manual)
            session.flush()
            manual_id = manual.id

            generator = PrizePoolGenerator(session, rng=random.Random(3))
            generator.generate(self.competition_id, credit_policy())
            second = generator.generate(
                self.competition_id,
                credit_policy(
                    tiers=[{"name": "Credit", "percent": 100, "unit_value": 4, "prize_type": "credit"}]
                ),
            )

            prizes = session.scalars(
                select(InstantPrize).where(InstantPrize.competition_id == self.competition_id)
            ).all()
            self.assertEqual(len(prizes), 2)
            self.assertIn(manual_id, [p.id for p in prizes])
            self.assertEqual([p.id for p in second.manual_prizes], [manual_id])
            self.assertEqual(second.generated_prizes[0].total_wins, 120)

            tickets = self._tickets(session)
            self.assertEqual(len(tickets), 122)
            self.assertEqual(sum(1 for t in tickets if t.prize_id == manual_id), 2)

    def test_regeneration_refused_once_a_ticket_is_claimed(self) -> None:
        with self.Session.begin() as session:
            result = PrizePoolGenerator(session, rng=random.Random(5)).generate(
                self.competition_id, credit_policy()
            )
            result.tickets[0].winner_id = self.user_id
            session.flush()

            with self.assertRaises(PoolAlreadyInUseError) as ctx:
                PrizePoolGenerator(session).generate(self.competition_id, credit_policy())
            self.assertEqual(ctx.exception.claimed, 1)

    def test_drawn_competition_is_frozen(self) -> None:
        with self.Session.begin() as session:
            competition = session.get(Competition, self.competition_id)
            competition.winner_id = self.user_id
            session.flush()
            with self.assertRaises(CompetitionClosedError):
                PrizePoolGenerator(session).generate(self.competition_id, credit_policy())

    def test_exhaustion_leaves_existing_pool_untouched(self) -> None:
        with self.Session.begin() as session:
            PrizePoolGenerator(session, rng=random.Random(9)).generate(
                self.competition_id, credit_policy()
            )
            before = sorted(t.ticket_number for t in self._tickets(session))

            too_many = credit_policy(
                tiers=[PrizeTier("Credit", Decimal("0"), Decimal("1"), "credit", count=1001)]
            )
            with self.assertRaises(NumberSpaceExhaustedError):
                PrizePoolGenerator(session).generate(self.competition_id, too_many)

            after = sorted(t.ticket_number for t in self._tickets(session))
            self.assertEqual(before, after)

    def test_invalid_policy_is_refused(self) -> None:
        with self.Session.begin() as session:
            with self.assertRaises(InvalidPolicyError):
                PrizePoolGenerator(session).generate(
                    self.competition_id, credit_policy(instant_share="1.5")
                )


if __name__ == "__main__":
    unittest.main()
