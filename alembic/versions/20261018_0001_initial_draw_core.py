"""initial draw core schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("remaining", sa.Integer(), nullable=False),
        sa.Column("seed", sa.String(length=128), nullable=False),
        sa.Column("commitment_hash", sa.String(length=64), nullable=False),
        sa.Column("seed_revealed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_count > 0", name=op.f("ck_products_total_count_positive")),
        sa.CheckConstraint(
            "remaining >= 0 AND remaining <= total_count",
            name=op.f("ck_products_remaining_in_range"),
        ),
        sa.CheckConstraint(
            "status IN ('active','inactive','archived')",
            name=op.f("ck_products_status_enum"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_products")),
    )
    op.create_index("ix_products_status", "products", ["status"], unique=False)

    op.create_table(
        "product_prizes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("product_id", ID_TYPE, nullable=False),
        sa.Column("level", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("remaining", sa.Integer(), nullable=False),
        sa.Column("probability", sa.Float(), nullable=False),
        sa.CheckConstraint("total > 0", name=op.f("ck_product_prizes_total_positive")),
        sa.CheckConstraint(
            "remaining >= 0 AND remaining <= total",
            name=op.f("ck_product_prizes_remaining_in_range"),
        ),
        sa.CheckConstraint(
            "probability >= 0", name=op.f("ck_product_prizes_probability_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name=op.f("fk_product_prizes_product_id_products"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_product_prizes")),
    )
    op.create_index(
        op.f("ix_product_prizes_product_id"), "product_prizes", ["product_id"], unique=False
    )

    op.create_table(
        "pool_tickets",
        sa.Column("product_id", ID_TYPE, nullable=False),
        sa.Column("number", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("prize_tier_id", ID_TYPE, nullable=False),
        sa.CheckConstraint("number > 0", name=op.f("ck_pool_tickets_number_positive")),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name=op.f("fk_pool_tickets_product_id_products"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["prize_tier_id"],
            ["product_prizes.id"],
            name=op.f("fk_pool_tickets_prize_tier_id_product_prizes"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("product_id", "number", name=op.f("pk_pool_tickets")),
    )
    op.create_index(
        op.f("ix_pool_tickets_prize_tier_id"), "pool_tickets", ["prize_tier_id"], unique=False
    )

    op.create_table(
        "draw_records",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("product_id", ID_TYPE, nullable=False),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.Column("product_prize_id", ID_TYPE, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("nonce", sa.Integer(), nullable=False),
        sa.Column("txid_hash", sa.String(length=64), nullable=False),
        sa.Column("random_value", sa.Float(), nullable=False),
        sa.Column("profit_rate", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "ticket_number >= 0", name=op.f("ck_draw_records_ticket_number_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name=op.f("fk_draw_records_product_id_products"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["product_prize_id"],
            ["product_prizes.id"],
            name=op.f("fk_draw_records_product_prize_id_product_prizes"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_records")),
        sa.UniqueConstraint("product_id", "nonce", name="uq_draw_records_product_nonce"),
    )
    op.create_index(
        op.f("ix_draw_records_product_id"), "draw_records", ["product_id"], unique=False
    )
    op.create_index(
        op.f("ix_draw_records_product_prize_id"),
        "draw_records",
        ["product_prize_id"],
        unique=False,
    )
    op.create_index(op.f("ix_draw_records_user_id"), "draw_records", ["user_id"], unique=False)
    op.create_index(
        "uq_draw_records_product_ticket",
        "draw_records",
        ["product_id", "ticket_number"],
        unique=True,
        sqlite_where=sa.text("ticket_number > 0"),
        postgresql_where=sa.text("ticket_number > 0"),
    )
    op.create_index(
        "uq_draw_records_last_one",
        "draw_records",
        ["product_id"],
        unique=True,
        sqlite_where=sa.text("ticket_number = 0"),
        postgresql_where=sa.text("ticket_number = 0"),
    )

    op.create_table(
        "product_settings",
        sa.Column("product_id", ID_TYPE, nullable=False),
        sa.Column("profit_rate", sa.Float(), nullable=False),
        sa.Column("escalation_enabled", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=100), nullable=False),
        sa.CheckConstraint(
            "profit_rate >= 0", name=op.f("ck_product_settings_profit_rate_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name=op.f("fk_product_settings_product_id_products"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("product_id", name=op.f("pk_product_settings")),
    )

    op.create_table(
        "tier_rate_adjustments",
        sa.Column("prize_tier_id", ID_TYPE, nullable=False),
        sa.Column("multiplier", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=100), nullable=True),
        sa.CheckConstraint(
            "multiplier >= 0", name=op.f("ck_tier_rate_adjustments_multiplier_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["prize_tier_id"],
            ["product_prizes.id"],
            name=op.f("fk_tier_rate_adjustments_prize_tier_id_product_prizes"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("prize_tier_id", name=op.f("pk_tier_rate_adjustments")),
    )


def downgrade() -> None:
    op.drop_table("tier_rate_adjustments")
    op.drop_table("product_settings")
    op.drop_index("uq_draw_records_last_one", table_name="draw_records")
    op.drop_index("uq_draw_records_product_ticket", table_name="draw_records")
    op.drop_index(op.f("ix_draw_records_user_id"), table_name="draw_records")
    op.drop_index(op.f("ix_draw_records_product_prize_id"), table_name="draw_records")
    op.drop_index(op.f("ix_draw_records_product_id"), table_name="draw_records")
    op.drop_table("draw_records")
    op.drop_index(op.f("ix_pool_tickets_prize_tier_id"), table_name="pool_tickets")
    op.drop_table("pool_tickets")
    op.drop_index(op.f("ix_product_prizes_product_id"), table_name="product_prizes")
    op.drop_table("product_prizes")
    op.drop_index("ix_products_status", table_name="products")
    op.drop_table("products")
