"""
积分模型模块

积分余额存在 users 表（points / frozen_points），
这里定义积分流水和推荐佣金记录。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, String
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import CommissionStatus, PointLogType

from .base import utc_now


class PointLog(SQLModel, table=True):
    """
    积分流水模型

    每一次冻结 / 解冻 / 核销 / 入账都对应且只对应一条流水。

    字段说明：
    - type: 流水类型（见 PointLogType）
    - amount: 可用积分变动（负数表示减少）
    - frozen_delta: 冻结积分变动
    - points_after / frozen_after: 变动后的可用 / 冻结积分（用于对账）
    - order_id: 关联订单
    - reason: 说明文字
    """
    __tablename__ = "point_logs"
    __table_args__ = (Index("idx_point_logs_order_type", "order_id", "type"),)

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    order_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    type: PointLogType = Field(sa_column=Column(String(16), nullable=False))

    amount: int = Field(nullable=False)
    frozen_delta: int = Field(default=0, nullable=False)
    points_after: int = Field(nullable=False)
    frozen_after: int = Field(nullable=False)
    reason: str = Field(default="", max_length=255)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class CommissionLog(SQLModel, table=True):
    """
    推荐佣金记录

    被推荐用户订单支付成功后，按实付金额给推荐人结算积分佣金。
    """
    __tablename__ = "commission_logs"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    from_user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    to_user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    order_id: int = Field(
        sa_column=Column(BigInteger, unique=True, nullable=False)
    )
    points_amount: int = Field(nullable=False)
    status: CommissionStatus = Field(sa_column=Column(String(16), nullable=False))
    settled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
