"""
优惠券模型模块

优惠券的发放由优惠券服务负责，订单引擎只对已领取的优惠券做
锁定 / 解锁 / 核销。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from oratopia.core.snowflake import generate_id
from oratopia.enums import CatalogStatus, CouponDiscountType, UserCouponStatus

from .base import utc_now


class CouponTemplate(SQLModel, table=True):
    """
    优惠券模板

    字段说明：
    - discount_type: fixed（满减）/ percent（折扣）
    - discount_value: 减免金额或折扣百分比
    - min_amount: 使用门槛（按优惠前总额判断）
    - status / start_at / end_at: 模板有效期
    """
    __tablename__ = "coupon_templates"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=64)
    discount_type: CouponDiscountType = Field(sa_column=Column(String(16), nullable=False))
    discount_value: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    min_amount: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    status: int = Field(default=CatalogStatus.active)
    start_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    end_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserCoupon(SQLModel, table=True):
    """
    用户优惠券

    order_id 不为空表示已被某个待付款订单锁定，
    解锁前不能再被其他订单使用。
    """
    __tablename__ = "user_coupons"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    template_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("coupon_templates.id"), nullable=False)
    )
    status: UserCouponStatus = Field(
        default=UserCouponStatus.available, sa_column=Column(String(16), nullable=False)
    )
    order_id: int | None = Field(
        default=None, sa_column=Column(BigInteger, index=True, nullable=True)
    )
    used_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    claimed_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
