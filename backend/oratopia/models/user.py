"""
用户模型模块

定义用户及收货地址模型。用户表同时承载积分账户（可用 / 冻结）和累计消费。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import UserRole

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（Snowflake）
    - nickname: 昵称
    - role: 角色（user / admin）
    - points: 可用积分
    - frozen_points: 冻结积分（待付款订单抵扣的积分）
    - total_spend: 累计消费金额
    - referrer_id: 推荐人用户 ID（分销佣金结算使用）

    积分余额只能通过 crud/points.py 中的冻结 / 解冻 / 核销 / 入账函数修改，
    每次修改都会同时写一条 PointLog。
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("frozen_points >= 0", name="ck_users_frozen_points_non_negative"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    nickname: str | None = Field(default=None, max_length=64)
    role: UserRole = Field(
        default=UserRole.user, sa_column=Column(String(16), nullable=False)
    )

    points: int = Field(default=0)
    frozen_points: int = Field(default=0)
    total_spend: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )
    referrer_id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Address(SQLModel, table=True):
    """
    收货地址模型

    下单时会把地址拼成文本快照写进订单，之后修改地址不影响历史订单。
    """
    __tablename__ = "addresses"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    name: str = Field(max_length=64)
    phone: str = Field(max_length=32)
    region: str = Field(max_length=128)
    detail: str = Field(max_length=255)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    def snapshot(self) -> str:
        return f"{self.region} {self.detail} {self.name} {self.phone}"
