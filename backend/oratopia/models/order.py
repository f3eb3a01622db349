"""
订单模型模块

定义订单、库存预占记录和物流轨迹模型。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import LogisticsSource, OrderStatus, ReservationStatus

from .base import utc_now


def _money_column() -> Column:
    return Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - order_no: 订单号（唯一，面向用户展示）
    - status: 订单状态（见 OrderStatus）
    - items: 行项目快照（JSON，design / add_on 两种类型）
    - total_amount: 优惠前总额（商品 + 手工费 + 运费）
    - pay_amount: 实付金额 = total_amount - coupon_amount - points_deduct_amount，下单时计算一次，之后不再重算
    - shipping_fee / handwork_fee / coupon_amount / points_deduct_amount: 金额拆分
    - points_used: 抵扣使用的积分数（下单时冻结）
    - shipping_address: 收货地址文本快照
    - submit_fingerprint: 重复提交指纹（行项目 + 金额 + 地址 + 备注的 SHA-256）
    - pricing_snapshot: 计价审计快照（包含计价规则版本）
    - expires_at: 支付截止时间，超过后由超时扫描关闭

    订单不会被物理删除，取消只是状态变化。
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_user_created", "user_id", "created_at"),
        Index("idx_orders_status_expires", "status", "expires_at"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_no: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False)
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    status: OrderStatus = Field(sa_column=Column(String(32), nullable=False))

    items: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    total_amount: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    pay_amount: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    shipping_fee: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    handwork_fee: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    coupon_amount: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    points_deduct_amount: Decimal = Field(default=Decimal("0.00"), sa_column=_money_column())
    points_used: int = Field(default=0)

    shipping_address: str = Field(sa_column=Column(Text, nullable=False))
    remarks: str = Field(default="", max_length=500)
    submit_fingerprint: str = Field(
        sa_column=Column(String(64), index=True, nullable=False)
    )
    pricing_snapshot: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )

    payment_channel: str | None = Field(default=None, max_length=32)
    transaction_id: str | None = Field(default=None, max_length=128)
    carrier: str | None = Field(default=None, max_length=64)
    tracking_number: str | None = Field(default=None, max_length=64)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    shipped_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancelled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class InventoryReservation(SQLModel, table=True):
    """
    库存预占记录

    与订单同一事务创建，每个 (订单, 珠子) 只有一条记录。
    处于 reserved 状态的数量总和始终等于该珠子 reserved_stock 的增量。
    """
    __tablename__ = "inventory_reservations"
    __table_args__ = (
        UniqueConstraint("order_id", "bead_id", name="uq_reservation_order_bead"),
        Index("idx_reservation_bead_status", "bead_id", "status"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    bead_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("beads.id"), nullable=False)
    )
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    status: ReservationStatus = Field(sa_column=Column(String(16), nullable=False))
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    consumed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    released_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class LogisticsEvent(SQLModel, table=True):
    """物流轨迹（发货、签收以及从物流商同步的节点）"""
    __tablename__ = "logistics_events"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    title: str = Field(max_length=64)
    detail: str = Field(sa_column=Column(Text, nullable=False))
    location: str = Field(default="", max_length=255)
    event_time: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    source: LogisticsSource = Field(sa_column=Column(String(16), nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
