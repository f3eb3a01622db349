"""
订单超时关闭

待付款订单超过支付截止时间后自动关闭，并把下单时占用的资源全部退回：
珠子预占、加购库存、冻结积分、锁定的优惠券。

expire_pending_orders() 是幂等的，同时被两处调用：
- worker 定时任务（每分钟一次）
- 下单 / 支付回调前的惰性扫描

每个订单单独一个事务，事务内重新校验状态，与并发的支付回调不会互相覆盖；
某个订单处理失败只记日志，不影响同一轮里的其他订单。
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlmodel import Session, select

from oratopia.core.db import transaction
from oratopia.crud.coupon import unlock_coupon
from oratopia.crud.inventory import release_reservations, restore_add_on_stock
from oratopia.crud.notification import NotificationOutbox
from oratopia.crud.points import unfreeze_points
from oratopia.enums import NotificationType, OrderStatus, ReservationStatus
from oratopia.models import Order, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """一轮超时扫描的统计"""
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed_order_ids: list[int] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_order_ids)


def lock_order(session: Session, *, order_id: int | None = None, order_no: str | None = None) -> Order | None:
    """在事务内重新读取订单并加行锁（SQLite 下 FOR UPDATE 会被忽略）"""
    stmt = select(Order)
    if order_id is not None:
        stmt = stmt.where(Order.id == order_id)
    else:
        stmt = stmt.where(Order.order_no == order_no)
    stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.exec(stmt).first()


def reverse_holds(
    session: Session,
    order: Order,
    *,
    reservation_status: ReservationStatus,
    outbox: NotificationOutbox,
    now: datetime,
) -> None:
    """
    撤销订单占用的所有资源并把订单置为 cancelled

    用户取消（released）和超时关闭（expired）共用，只有预占记录的终态不同。
    调用方负责事务和状态校验。
    """
    release_reservations(session=session, order_id=order.id, status=reservation_status)
    restore_add_on_stock(session=session, items=order.items or [])
    if order.points_used > 0:
        unfreeze_points(
            session=session,
            user_id=order.user_id,
            amount=order.points_used,
            order_id=order.id,
            reason=f"订单 {order.order_no} 取消，解冻积分",
        )
    unlock_coupon(session=session, order_id=order.id)

    order.status = OrderStatus.cancelled
    order.cancelled_at = now
    order.updated_at = now
    session.add(order)

    if reservation_status == ReservationStatus.expired:
        title, content = "订单已超时关闭", f"订单 {order.order_no} 超时未支付，已自动关闭。"
    else:
        title, content = "订单已取消", f"订单 {order.order_no} 已取消。"
    outbox.add(
        user_id=order.user_id,
        type=NotificationType.order,
        title=title,
        content=content,
        order_id=order.id,
    )


def expire_order(session: Session, order_id: int, *, now: datetime | None = None) -> bool:
    """
    关闭单个超时订单

    Returns:
        True 表示本次关闭了订单；订单已不是待付款或尚未超时返回 False
    """
    now = now or utc_now()
    outbox = NotificationOutbox()
    with transaction(session):
        order = lock_order(session, order_id=order_id)
        if order is None or order.status != OrderStatus.pending_payment:
            return False
        if as_utc(order.expires_at) >= now:
            return False
        reverse_holds(
            session,
            order,
            reservation_status=ReservationStatus.expired,
            outbox=outbox,
            now=now,
        )
        order_no = order.order_no
    logger.info("order expired order_no=%s", order_no)
    outbox.dispatch(session)
    return True


def expire_pending_orders(session: Session, now: datetime | None = None) -> SweepResult:
    """扫描并关闭所有已超时的待付款订单"""
    now = now or utc_now()
    order_ids = list(
        session.exec(
            select(Order.id).where(
                Order.status == OrderStatus.pending_payment,
                Order.expires_at < now,
            )
        ).all()
    )

    result = SweepResult(scanned=len(order_ids))
    for order_id in order_ids:
        try:
            if expire_order(session, order_id, now=now):
                result.expired += 1
            else:
                result.skipped += 1
        except Exception:
            logger.exception("failed to expire order %s", order_id)
            result.failed_order_ids.append(order_id)

    if result.scanned:
        logger.info(
            "expiry sweep scanned=%s expired=%s skipped=%s failed=%s",
            result.scanned,
            result.expired,
            result.skipped,
            result.failed,
        )
    return result
