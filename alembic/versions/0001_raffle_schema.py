"""raffle schema: users, raffles, entries, event_logs

Revision ID: 0001_raffle_schema
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_raffle_schema"
down_revision = None
branch_labels = None
depends_on = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=True),
        sa.Column("entries_remaining", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "raffles",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("min_entries", sa.Integer(), nullable=True),
        sa.Column("secret", sa.String(length=128), nullable=False),
        sa.Column("secret_commitment", sa.String(length=64), nullable=False),
        sa.Column("draw_proof", sa.String(length=64), nullable=True),
        sa.Column("winner_id", ID_TYPE, nullable=True),
        sa.Column("draw_entry_count", sa.Integer(), nullable=True),
        sa.Column("draw_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('DRAFT','LIVE','CLOSED')",
            name="raffle_status_enum",
        ),
        sa.CheckConstraint(
            "(draw_proof IS NULL AND winner_id IS NULL) OR "
            "(draw_proof IS NOT NULL AND winner_id IS NOT NULL)",
            name="raffle_result_all_or_nothing",
        ),
        sa.ForeignKeyConstraint(
            ["winner_id"],
            ["users.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_raffles_status"), "raffles", ["status"], unique=False)
    op.create_index("ix_raffles_status_end_at", "raffles", ["status", "end_at"], unique=False)

    op.create_table(
        "entries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "source IN ('SUBSCRIPTION','NPN')",
            name="entry_source_enum",
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_entries_raffle_id"), "entries", ["raffle_id"], unique=False)
    op.create_index(op.f("ix_entries_user_id"), "entries", ["user_id"], unique=False)
    op.create_index(
        "ix_entries_raffle_recorded",
        "entries",
        ["raffle_id", "recorded_at", "id"],
        unique=False,
    )

    op.create_table(
        "event_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "type IN ('WINNER_DRAW','DRAW_EXTENDED')",
            name="event_type_enum",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_event_logs_type"), "event_logs", ["type"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_event_logs_type"), table_name="event_logs")
    op.drop_table("event_logs")
    op.drop_index("ix_entries_raffle_recorded", table_name="entries")
    op.drop_index(op.f("ix_entries_user_id"), table_name="entries")
    op.drop_index(op.f("ix_entries_raffle_id"), table_name="entries")
    op.drop_table("entries")
    op.drop_index("ix_raffles_status_end_at", table_name="raffles")
    op.drop_index(op.f("ix_raffles_status"), table_name="raffles")
    op.drop_table("raffles")
    op.drop_table("users")
