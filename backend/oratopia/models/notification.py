"""
通知与风控事件模型模块
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import NotificationType, RiskEventType, RiskLevel

from .base import utc_now


class Notification(SQLModel, table=True):
    """站内通知（订单创建、支付成功、发货等）"""
    __tablename__ = "notifications"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    order_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    type: NotificationType = Field(sa_column=Column(String(16), nullable=False))
    title: str = Field(max_length=64)
    content: str = Field(max_length=500)
    read_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class RiskEvent(SQLModel, table=True):
    """
    风控事件

    - high_frequency_order: 短时间内下单过于频繁
    - duplicate_order_submit: 重复提交被合并到已有订单
    """
    __tablename__ = "risk_events"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    order_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    type: RiskEventType = Field(sa_column=Column(String(32), nullable=False))
    level: RiskLevel = Field(sa_column=Column(String(16), nullable=False))
    detail: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
