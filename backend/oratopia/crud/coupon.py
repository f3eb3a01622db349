"""优惠券 CRUD 操作

订单引擎只锁定 / 解锁 / 核销已领取的优惠券。
锁定是条件更新（order_id IS NULL），同一张券不会被两个订单同时锁住。
"""
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session, select

from oratopia.api.errors import StateConflict, ValidationFailed
from oratopia.enums import CatalogStatus, UserCouponStatus
from oratopia.models import CouponTemplate, UserCoupon, as_utc, utc_now


def find_coupon_for_order(
    *, session: Session, user_id: int, coupon_id: int, now: datetime
) -> tuple[UserCoupon, CouponTemplate]:
    """查询可用于下单的优惠券（本人、可用、未被锁定、模板在有效期内）"""
    row = session.exec(
        select(UserCoupon, CouponTemplate)
        .join(CouponTemplate, CouponTemplate.id == UserCoupon.template_id)
        .where(
            UserCoupon.id == coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.status == UserCouponStatus.available,
            UserCoupon.order_id.is_(None),  # type: ignore[union-attr]
        )
    ).first()
    if row is None:
        raise StateConflict(code=41001, message="优惠券不可用")

    coupon, template = row
    start_at, end_at = as_utc(template.start_at), as_utc(template.end_at)
    if template.status != CatalogStatus.active or start_at > now or end_at < now:
        raise ValidationFailed(code=41002, message="优惠券已过期")
    return coupon, template


def lock_coupon(*, session: Session, coupon_id: int, user_id: int, order_id: int) -> None:
    """把优惠券锁定到订单"""
    result = session.exec(
        update(UserCoupon)
        .where(
            UserCoupon.id == coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.status == UserCouponStatus.available,
            UserCoupon.order_id.is_(None),  # type: ignore[union-attr]
        )
        .values(order_id=order_id)
    )
    if result.rowcount == 0:
        raise StateConflict(code=41003, message="优惠券已被其他订单锁定")


def unlock_coupon(*, session: Session, order_id: int) -> None:
    """订单取消 / 超时后解锁优惠券"""
    session.exec(
        update(UserCoupon)
        .where(
            UserCoupon.order_id == order_id,
            UserCoupon.status == UserCouponStatus.available,
        )
        .values(order_id=None)
    )


def mark_coupon_used(*, session: Session, order_id: int) -> None:
    """订单支付成功后核销优惠券"""
    session.exec(
        update(UserCoupon)
        .where(
            UserCoupon.order_id == order_id,
            UserCoupon.status == UserCouponStatus.available,
        )
        .values(status=UserCouponStatus.used, used_at=utc_now())
    )
