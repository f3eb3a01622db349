"""Create order engine tables (Snowflake BIGINT IDs)

Revision ID: a1c0e5d2f001
Revises:
Create Date: 2026-02-09

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c0e5d2f001"
down_revision = None
branch_labels = None
depends_on = None


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        _pk(),
        sa.Column("nickname", sa.String(length=64), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("frozen_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spend", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("referrer_id", sa.BigInteger(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["referrer_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("frozen_points >= 0", name="ck_users_frozen_points_non_negative"),
    )

    op.create_table(
        "addresses",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("region", sa.String(length=128), nullable=False),
        sa.Column("detail", sa.String(length=255), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_addresses_user_id", "addresses", ["user_id"], unique=False)

    op.create_table(
        "beads",
        _pk(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("diameter", sa.Float(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.CheckConstraint("stock >= 0", name="ck_beads_stock_non_negative"),
        sa.CheckConstraint("reserved_stock >= 0", name="ck_beads_reserved_non_negative"),
    )

    op.create_table(
        "add_on_products",
        _pk(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("image", sa.String(length=512), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.CheckConstraint("stock >= 0", name="ck_add_on_products_stock_non_negative"),
    )

    op.create_table(
        "orders",
        _pk(),
        sa.Column("order_no", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("pay_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("handwork_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("coupon_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("points_deduct_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("points_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_address", sa.Text(), nullable=False),
        sa.Column("remarks", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("submit_fingerprint", sa.String(length=64), nullable=False),
        sa.Column("pricing_snapshot", sa.JSON(), nullable=False),
        sa.Column("payment_channel", sa.String(length=32), nullable=True),
        sa.Column("transaction_id", sa.String(length=128), nullable=True),
        sa.Column("carrier", sa.String(length=64), nullable=True),
        sa.Column("tracking_number", sa.String(length=64), nullable=True),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_orders_order_no", "orders", ["order_no"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
    op.create_index("ix_orders_submit_fingerprint", "orders", ["submit_fingerprint"], unique=False)
    op.create_index("idx_orders_user_created", "orders", ["user_id", "created_at"], unique=False)
    op.create_index("idx_orders_status_expires", "orders", ["status", "expires_at"], unique=False)

    op.create_table(
        "inventory_reservations",
        _pk(),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("bead_id", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["bead_id"], ["beads.id"]),
        sa.UniqueConstraint("order_id", "bead_id", name="uq_reservation_order_bead"),
    )
    op.create_index(
        "ix_inventory_reservations_order_id", "inventory_reservations", ["order_id"], unique=False
    )
    op.create_index(
        "idx_reservation_bead_status", "inventory_reservations", ["bead_id", "status"], unique=False
    )

    op.create_table(
        "logistics_events",
        _pk(),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=64), nullable=False),
        sa.Column("detail", sa.Text(), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_logistics_events_order_id", "logistics_events", ["order_id"], unique=False)

    op.create_table(
        "point_logs",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("frozen_delta", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("points_after", sa.Integer(), nullable=False),
        sa.Column("frozen_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False, server_default=""),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_point_logs_user_id", "point_logs", ["user_id"], unique=False)
    op.create_index("idx_point_logs_order_type", "point_logs", ["order_id", "type"], unique=False)

    op.create_table(
        "commission_logs",
        _pk(),
        sa.Column("from_user_id", sa.BigInteger(), nullable=False),
        sa.Column("to_user_id", sa.BigInteger(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("points_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("order_id", name="uq_commission_logs_order_id"),
    )
    op.create_index("ix_commission_logs_from_user_id", "commission_logs", ["from_user_id"])
    op.create_index("ix_commission_logs_to_user_id", "commission_logs", ["to_user_id"])

    op.create_table(
        "coupon_templates",
        _pk(),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "user_coupons",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("template_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="available"),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_id"], ["coupon_templates.id"]),
    )
    op.create_index("ix_user_coupons_user_id", "user_coupons", ["user_id"], unique=False)
    op.create_index("ix_user_coupons_order_id", "user_coupons", ["order_id"], unique=False)

    op.create_table(
        "notifications",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=64), nullable=False),
        sa.Column("content", sa.String(length=500), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "risk_events",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_risk_events_user_id", "risk_events", ["user_id"], unique=False)


def downgrade() -> None:
    for table in (
        "risk_events",
        "notifications",
        "user_coupons",
        "coupon_templates",
        "commission_logs",
        "point_logs",
        "logistics_events",
        "inventory_reservations",
        "orders",
        "add_on_products",
        "beads",
        "addresses",
        "users",
    ):
        op.drop_table(table)
