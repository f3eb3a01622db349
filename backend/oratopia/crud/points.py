"""积分账本 CRUD 操作

积分余额（users.points / users.frozen_points）只能通过这里的函数修改，
每次修改都在同一事务里写一条 PointLog。这里的函数不提交事务。
"""
from decimal import Decimal

from sqlalchemy import update
from sqlmodel import Session, select

from oratopia.api.errors import NotFound, insufficient_points
from oratopia.enums import CommissionStatus, PointLogType
from oratopia.models import CommissionLog, PointLog, User, utc_now


def get_balances(*, session: Session, user_id: int) -> tuple[int, int]:
    """返回 (可用积分, 冻结积分)，直接从数据库读取"""
    row = session.exec(
        select(User.points, User.frozen_points).where(User.id == user_id)
    ).first()
    if row is None:
        raise NotFound(code=40002, message="用户不存在")
    return int(row[0]), int(row[1])


def _apply(
    *,
    session: Session,
    user_id: int,
    points_delta: int,
    frozen_delta: int,
    log_type: PointLogType,
    order_id: int | None,
    reason: str,
) -> PointLog:
    stmt = update(User).where(User.id == user_id)
    if points_delta < 0:
        stmt = stmt.where(User.points >= -points_delta)
    if frozen_delta < 0:
        stmt = stmt.where(User.frozen_points >= -frozen_delta)
    result = session.exec(
        stmt.values(
            points=User.points + points_delta,
            frozen_points=User.frozen_points + frozen_delta,
            updated_at=utc_now(),
        )
    )
    if result.rowcount == 0:
        raise insufficient_points()

    points_after, frozen_after = get_balances(session=session, user_id=user_id)
    log = PointLog(
        user_id=user_id,
        order_id=order_id,
        type=log_type,
        amount=points_delta,
        frozen_delta=frozen_delta,
        points_after=points_after,
        frozen_after=frozen_after,
        reason=reason,
    )
    session.add(log)
    session.flush()
    return log


def freeze_points(
    *, session: Session, user_id: int, amount: int, order_id: int, reason: str
) -> PointLog:
    """冻结积分：可用 -n，冻结 +n（可用积分不足时抛出 44001）"""
    return _apply(
        session=session,
        user_id=user_id,
        points_delta=-amount,
        frozen_delta=amount,
        log_type=PointLogType.freeze,
        order_id=order_id,
        reason=reason,
    )


def unfreeze_points(
    *, session: Session, user_id: int, amount: int, order_id: int, reason: str
) -> PointLog:
    """解冻积分：可用 +n，冻结 -n"""
    return _apply(
        session=session,
        user_id=user_id,
        points_delta=amount,
        frozen_delta=-amount,
        log_type=PointLogType.unfreeze,
        order_id=order_id,
        reason=reason,
    )


def redeem_frozen_points(
    *, session: Session, user_id: int, amount: int, order_id: int, reason: str
) -> PointLog:
    """核销冻结积分（订单已支付，冻结的积分被真正花掉）"""
    return _apply(
        session=session,
        user_id=user_id,
        points_delta=0,
        frozen_delta=-amount,
        log_type=PointLogType.redeem,
        order_id=order_id,
        reason=reason,
    )


def earn_points(
    *,
    session: Session,
    user_id: int,
    amount: int,
    order_id: int,
    reason: str,
    log_type: PointLogType = PointLogType.earn_purchase,
) -> PointLog:
    """积分入账（消费返积分 / 推荐佣金）"""
    return _apply(
        session=session,
        user_id=user_id,
        points_delta=amount,
        frozen_delta=0,
        log_type=log_type,
        order_id=order_id,
        reason=reason,
    )


def add_total_spend(*, session: Session, user_id: int, amount: Decimal) -> None:
    """累计消费金额"""
    session.exec(
        update(User)
        .where(User.id == user_id)
        .values(total_spend=User.total_spend + amount, updated_at=utc_now())
    )


def credit_commission(
    *,
    session: Session,
    from_user_id: int,
    to_user_id: int,
    order_id: int,
    points: int,
) -> CommissionLog | None:
    """
    给推荐人结算佣金积分

    每个订单最多结算一次（commission_logs.order_id 唯一），已结算时返回 None。
    """
    if points <= 0:
        return None
    existing = session.exec(
        select(CommissionLog).where(CommissionLog.order_id == order_id)
    ).first()
    if existing:
        return None

    now = utc_now()
    commission = CommissionLog(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        order_id=order_id,
        points_amount=points,
        status=CommissionStatus.settled,
        settled_at=now,
    )
    session.add(commission)
    earn_points(
        session=session,
        user_id=to_user_id,
        amount=points,
        order_id=order_id,
        reason=f"推荐佣金 订单 {order_id}",
        log_type=PointLogType.commission,
    )
    return commission
