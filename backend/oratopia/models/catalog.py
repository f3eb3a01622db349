"""
商品目录模型模块

- Bead: 珠子 SKU，两阶段库存（stock 可售 + reserved_stock 已预占）
- AddOnProduct: 加购商品，只有一个简单的 stock 计数器，
  下单时直接扣减，取消 / 超时时加回
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Numeric
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import CatalogStatus

from .base import utc_now


class Bead(SQLModel, table=True):
    """
    珠子模型

    字段说明：
    - name: 名称
    - diameter: 直径（毫米）
    - price: 单价
    - stock: 可售库存
    - reserved_stock: 待付款订单已预占的数量
    - status: 1 上架 / 0 下架

    stock 和 reserved_stock 只能通过 crud/inventory.py 的条件更新修改。
    """
    __tablename__ = "beads"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_beads_stock_non_negative"),
        CheckConstraint("reserved_stock >= 0", name="ck_beads_reserved_non_negative"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=128)
    diameter: float = Field(default=8)
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    stock: int = Field(default=0)
    reserved_stock: int = Field(default=0)
    status: int = Field(default=CatalogStatus.active)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class AddOnProduct(SQLModel, table=True):
    """加购商品模型（礼盒、备用弹力绳等）"""
    __tablename__ = "add_on_products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_add_on_products_stock_non_negative"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=128)
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    image: str | None = Field(default=None, max_length=512)
    stock: int = Field(default=0)
    status: int = Field(default=CatalogStatus.active)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
