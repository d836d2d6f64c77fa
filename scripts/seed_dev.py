from datetime import datetime, timedelta, timezone
from decimal import Decimal
import random

from sqlalchemy.orm import sessionmaker

from compcore.db.engine import make_engine
from compcore.ledger import CREDIT_LEDGER
from compcore.models import Base, Competition, User
from compcore.prize_pool import PrizePoolPolicy
from compcore.workflows import Purchase, PurchaseItem, checkout, generate_prize_pool


def main() -> None:
    """Seed the development database with sample data."""
    engine = make_engine()

    # Reset the schema. Foreign keys are switched off so DROP order does not matter.
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    now = datetime.now(timezone.utc)
    rng = random.Random(2024)

    with Session.begin() as session:
        alice = User(email="alice@example.com", name="Alice", created_at=now)
        bob = User(email="bob@example.com", name="Bob", created_at=now)
        session.add_all([alice, bob])
        session.flush()

        CREDIT_LEDGER.credit(session, alice.id, Decimal("10.00"), "Welcome bonus")

        car = Competition(
            title="Win a Hatchback",
            max_tickets=1000,
            ticket_price=Decimal("1.00"),
            end_date=now + timedelta(days=14),
            is_active=True,
        )
        cash = Competition(
            title="£500 Tax-Free Cash",
            max_tickets=250,
            ticket_price=Decimal("0.50"),
            end_date=now + timedelta(days=3),
            is_active=True,
        )
        session.add_all([car, cash])
        session.flush()

        policy = PrizePoolPolicy.build(
            "0.5",
            "0.96",
            [
                {"name": "Site Credit", "percent": 60, "unit_value": 2, "prize_type": "credit"},
                {"name": "Cash", "percent": 40, "unit_value": 10, "prize_type": "cash"},
            ],
        )
        generate_prize_pool(session, car.id, policy, rng=rng)

        checkout(
            session,
            Purchase(
                user_id=alice.id,
                items=[PurchaseItem(car.id, 5), PurchaseItem(cash.id, 4)],
                authorized_cash_amount=Decimal("5.00"),
                authorized_credit_amount=Decimal("2.00"),
            ),
        )
        checkout(
            session,
            Purchase(
                user_id=bob.id,
                items=[PurchaseItem(car.id, 20)],
                authorized_cash_amount=Decimal("20.00"),
            ),
        )

    print("Seed data created.")


if __name__ == "__main__":
    main()
