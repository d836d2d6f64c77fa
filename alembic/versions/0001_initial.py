"""competitions, entries, instant wins, ledger and draws

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("cash_balance", MONEY, nullable=False),
        sa.Column("credit_balance", MONEY, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )
    op.create_table(
        "competitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("max_tickets", sa.Integer(), nullable=False),
        sa.Column("ticket_price", MONEY, nullable=False),
        sa.Column("tickets_issued", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("has_instant_wins", sa.Boolean(), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("winning_ticket_number", sa.Integer(), nullable=True),
        sa.Column("draw_id", sa.String(length=64), nullable=True),
        sa.Column("draw_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winner_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "max_tickets > 0", name=op.f("ck_competitions_max_tickets_positive")
        ),
        sa.CheckConstraint(
            "tickets_issued >= 0 AND tickets_issued <= max_tickets",
            name=op.f("ck_competitions_tickets_issued_within_cap"),
        ),
        sa.ForeignKeyConstraint(
            ["winner_id"],
            ["users.id"],
            name=op.f("fk_competitions_winner_id_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_competitions")),
    )
    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("ticket_numbers", sa.JSON(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_cost", MONEY, nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("credit_used", MONEY, nullable=False),
        sa.Column("payment_status", sa.String(length=20), nullable=False),
        sa.Column("instant_win_results", sa.JSON(), nullable=True),
        sa.Column("has_instant_win", sa.Boolean(), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name=op.f("ck_entries_quantity_positive")),
        sa.CheckConstraint(
            "payment_status IN ('pending','completed','refunded')",
            name=op.f("ck_entries_payment_status_enum"),
        ),
        sa.CheckConstraint(
            "payment_method IN ('card','credit','mixed')",
            name=op.f("ck_entries_payment_method_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["competition_id"],
            ["competitions.id"],
            name=op.f("fk_entries_competition_id_competitions"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_entries_user_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_entries")),
    )
    op.create_index(op.f("ix_entries_competition_id"), "entries", ["competition_id"])
    op.create_index(op.f("ix_entries_user_id"), "entries", ["user_id"])

    op.create_table(
        "entry_tickets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["competition_id"],
            ["competitions.id"],
            name=op.f("fk_entry_tickets_competition_id_competitions"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["entries.id"],
            name=op.f("fk_entry_tickets_entry_id_entries"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_entry_tickets")),
        sa.UniqueConstraint(
            "competition_id", "ticket_number", name="uq_entry_ticket_number"
        ),
    )
    op.create_index(op.f("ix_entry_tickets_entry_id"), "entry_tickets", ["entry_id"])

    op.create_table(
        "instant_prizes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("prize_type", sa.String(length=20), nullable=False),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("total_wins", sa.Integer(), nullable=False),
        sa.Column("remaining_wins", sa.Integer(), nullable=False),
        sa.Column("is_manual", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "prize_type IN ('cash','credit')",
            name=op.f("ck_instant_prizes_prize_type_enum"),
        ),
        sa.CheckConstraint("value > 0", name=op.f("ck_instant_prizes_value_positive")),
        sa.CheckConstraint(
            "remaining_wins >= 0 AND remaining_wins <= total_wins",
            name=op.f("ck_instant_prizes_remaining_wins_range"),
        ),
        sa.ForeignKeyConstraint(
            ["competition_id"],
            ["competitions.id"],
            name=op.f("fk_instant_prizes_competition_id_competitions"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_instant_prizes")),
    )
    op.create_index(
        op.f("ix_instant_prizes_competition_id"), "instant_prizes", ["competition_id"]
    )

    op.create_table(
        "instant_win_tickets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.Column("prize_id", sa.Integer(), nullable=True),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("entry_id", sa.Integer(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "ticket_number > 0", name=op.f("ck_instant_win_tickets_ticket_number_positive")
        ),
        sa.ForeignKeyConstraint(
            ["competition_id"],
            ["competitions.id"],
            name=op.f("fk_instant_win_tickets_competition_id_competitions"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["prize_id"],
            ["instant_prizes.id"],
            name=op.f("fk_instant_win_tickets_prize_id_instant_prizes"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["winner_id"],
            ["users.id"],
            name=op.f("fk_instant_win_tickets_winner_id_users"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["entries.id"],
            name=op.f("fk_instant_win_tickets_entry_id_entries"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_instant_win_tickets")),
        sa.UniqueConstraint(
            "competition_id", "ticket_number", name="uq_instant_win_ticket_number"
        ),
    )
    op.create_index(
        op.f("ix_instant_win_tickets_prize_id"), "instant_win_tickets", ["prize_id"]
    )
    op.create_index(
        "ix_instant_win_tickets_winner",
        "instant_win_tickets",
        ["competition_id", "winner_id"],
    )

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False),
        sa.Column("tx_type", sa.String(length=32), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "kind IN ('cash','credit')", name=op.f("ck_ledger_transactions_kind_enum")
        ),
        sa.CheckConstraint(
            "amount <> 0", name=op.f("ck_ledger_transactions_amount_non_zero")
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_ledger_transactions_user_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ledger_transactions")),
    )
    op.create_index(
        "ix_ledger_transactions_user_kind",
        "ledger_transactions",
        ["user_id", "kind", "id"],
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=False),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.String(length=64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "amount > 0", name=op.f("ck_withdrawal_requests_amount_positive")
        ),
        sa.CheckConstraint(
            "status IN ('pending','completed','rejected')",
            name=op.f("ck_withdrawal_requests_status_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_withdrawal_requests_user_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_withdrawal_requests")),
    )
    op.create_index(
        op.f("ix_withdrawal_requests_user_id"), "withdrawal_requests", ["user_id"]
    )

    op.create_table(
        "draw_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("draw_id", sa.String(length=64), nullable=False),
        sa.Column("roster_size", sa.Integer(), nullable=False),
        sa.Column("selected_index", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.Column("winner_user_id", sa.Integer(), nullable=False),
        sa.Column("roster_digest", sa.String(length=64), nullable=False),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["competition_id"],
            ["competitions.id"],
            name=op.f("fk_draw_records_competition_id_competitions"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["winner_user_id"],
            ["users.id"],
            name=op.f("fk_draw_records_winner_user_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_records")),
        sa.UniqueConstraint("draw_id", name="uq_draw_records_draw_id"),
    )
    op.create_index(
        op.f("ix_draw_records_competition_id"), "draw_records", ["competition_id"]
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_draw_records_competition_id"), table_name="draw_records")
    op.drop_table("draw_records")
    op.drop_index(op.f("ix_withdrawal_requests_user_id"), table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")
    op.drop_index("ix_ledger_transactions_user_kind", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_index("ix_instant_win_tickets_winner", table_name="instant_win_tickets")
    op.drop_index(op.f("ix_instant_win_tickets_prize_id"), table_name="instant_win_tickets")
    op.drop_table("instant_win_tickets")
    op.drop_index(op.f("ix_instant_prizes_competition_id"), table_name="instant_prizes")
    op.drop_table("instant_prizes")
    op.drop_index(op.f("ix_entry_tickets_entry_id"), table_name="entry_tickets")
    op.drop_table("entry_tickets")
    op.drop_index(op.f("ix_entries_user_id"), table_name="entries")
    op.drop_index(op.f("ix_entries_competition_id"), table_name="entries")
    op.drop_table("entries")
    op.drop_table("competitions")
    op.drop_table("users")
