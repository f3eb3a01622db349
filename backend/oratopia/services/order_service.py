"""
订单生命周期服务

状态机：
    pending_payment -> pending_production -> shipped -> completed
    pending_payment -> cancelled（用户取消 / 超时关闭）

每个多步写操作都在一个事务内完成（见 core.db.transaction），
任何一步失败整体回滚，不会留下部分预占、部分冻结。
状态流转在事务内重新读取订单后校验，不满足时抛出 IllegalTransition。
通知在事务提交后发送，发送失败只记日志。
"""
import hashlib
import json
import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Any

from sqlmodel import Session, func, select

from oratopia.api.errors import (
    Forbidden,
    IllegalTransition,
    RateLimited,
    StateConflict,
    ValidationFailed,
    order_not_found,
)
from oratopia.core.db import transaction
from oratopia.core.snowflake import generate_order_no
from oratopia.crud.coupon import find_coupon_for_order, lock_coupon, mark_coupon_used
from oratopia.crud.inventory import consume_reservations, reserve_inventory, take_add_on_stock
from oratopia.crud.notification import NotificationOutbox
from oratopia.crud.points import (
    add_total_spend,
    credit_commission,
    earn_points,
    freeze_points,
    redeem_frozen_points,
)
from oratopia.crud.risk import count_orders_since, record_risk_event
from oratopia.crud.user import get_address_for_user, get_user
from oratopia.enums import (
    CatalogStatus,
    LogisticsSource,
    NotificationType,
    OrderStatus,
    ReservationStatus,
    RiskEventType,
    RiskLevel,
)
from oratopia.models import AddOnProduct, Bead, LogisticsEvent, Order, as_utc, utc_now
from oratopia.services.config_service import AppConfig, get_config
from oratopia.services.order_expiry import expire_pending_orders, lock_order, reverse_holds
from oratopia.services.pricing import (
    CatalogAddOn,
    CatalogBead,
    CouponTerms,
    DesignSelection,
    PricingBreakdown,
    PricingParams,
    merge_add_on_requests,
    price_order,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateOrderInput:
    """下单请求（已经过 API 层的格式校验）"""
    designs: Sequence[DesignSelection]
    add_ons: Sequence[tuple[int, int]] = ()
    address_id: int | None = None
    remarks: str = ""
    coupon_id: int | None = None
    points_to_use: int = 0
    client_amount: Decimal | None = None


@dataclass
class CreateOrderResult:
    order: Order
    reused: bool = False
    breakdown: PricingBreakdown | None = field(default=None, repr=False)


def _now(now: datetime | None) -> datetime:
    return now or utc_now()


def _status(order: Order) -> str:
    return OrderStatus(order.status).value


def _design_record(design: DesignSelection) -> dict[str, Any]:
    return {
        "name": design.name,
        "wrist_size": design.wrist_size,
        "image_url": design.image_url,
        "beads": [[b.id, b.name, b.size_mm] for b in design.beads],
    }


def submit_fingerprint(
    *,
    data: CreateOrderInput,
    add_on_counts: dict[int, int],
    address: str,
    remarks: str,
) -> str:
    """
    重复提交指纹

    只取请求本身的内容（作品、加购、地址快照、备注、优惠券、积分），
    不含计价结果，首单冻结积分、锁定优惠券后重试仍得到同一指纹。
    """
    payload = json.dumps(
        {
            "designs": [_design_record(d) for d in data.designs],
            "add_ons": sorted(add_on_counts.items()),
            "address": address,
            "remarks": remarks,
            "coupon_id": data.coupon_id,
            "points_to_use": data.points_to_use,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _enforce_rate_limit(session: Session, *, user_id: int, cfg: AppConfig, now: datetime) -> None:
    """
    下单频率限制

    超限时先单独提交风控事件，再抛出 RateLimited，
    保证事件不会随下单事务一起回滚。
    """
    rules = cfg.order_rules
    since = now - timedelta(seconds=rules.rate_limit_window_seconds)
    recent = count_orders_since(session=session, user_id=user_id, since=since)
    if recent < rules.rate_limit_max_orders:
        return
    with transaction(session):
        record_risk_event(
            session=session,
            user_id=user_id,
            type=RiskEventType.high_frequency_order,
            level=RiskLevel.medium,
            detail={
                "window_seconds": rules.rate_limit_window_seconds,
                "count": recent,
                "limit": rules.rate_limit_max_orders,
            },
        )
    raise RateLimited(code=43001, message="操作过于频繁，请稍后再试")


def _find_duplicate(
    session: Session, *, user_id: int, fingerprint: str, cfg: AppConfig, now: datetime
) -> Order | None:
    since = now - timedelta(seconds=cfg.order_rules.duplicate_window_seconds)
    stmt = (
        select(Order)
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.pending_payment,
            Order.submit_fingerprint == fingerprint,
            Order.created_at >= since,
            Order.expires_at > now,
        )
        .order_by(Order.created_at.desc())  # type: ignore[union-attr]
    )
    return session.exec(stmt).first()


def _load_catalog(
    session: Session, add_on_ids: Sequence[int]
) -> tuple[list[CatalogBead], list[CatalogAddOn]]:
    beads = session.exec(select(Bead).where(Bead.status == CatalogStatus.active)).all()
    catalog_beads = [
        CatalogBead(id=b.id, name=b.name, diameter=b.diameter, price=b.price) for b in beads
    ]
    catalog_add_ons: list[CatalogAddOn] = []
    if add_on_ids:
        add_ons = session.exec(
            select(AddOnProduct).where(
                AddOnProduct.id.in_(add_on_ids),  # type: ignore[union-attr]
                AddOnProduct.status == CatalogStatus.active,
            )
        ).all()
        catalog_add_ons = [
            CatalogAddOn(id=a.id, name=a.name, price=a.price, stock=a.stock, image=a.image)
            for a in add_ons
        ]
    return catalog_beads, catalog_add_ons


# ============================================================
# 下单
# ============================================================


def create_order(
    session: Session,
    *,
    user_id: int,
    data: CreateOrderInput,
    now: datetime | None = None,
) -> CreateOrderResult:
    """
    创建订单

    执行顺序：
    1. 惰性扫描超时订单（先把该释放的库存释放掉）
    2. 下单频率限制
    3. 解析收货地址
    4. 重复提交检查（按请求指纹，命中时直接返回已有订单）
    5. 查优惠券 + 计价
    6. 写订单（支付截止时间 = now + 支付窗口）
    7. 扣加购库存 -> 预占珠子 -> 锁优惠券 -> 冻结积分
    8. 提交后发送"订单已创建"通知

    6-7 在同一事务中，任何一步失败整体回滚。

    Raises:
        ValidationFailed / StateConflict / RateLimited / NotFound
    """
    now = _now(now)
    expire_pending_orders(session, now=now)

    cfg = get_config()
    if not cfg.features.enable_trade:
        raise StateConflict(code=40008, message="商城交易暂未开放")

    _enforce_rate_limit(session, user_id=user_id, cfg=cfg, now=now)

    outbox = NotificationOutbox()
    with transaction(session):
        user = get_user(session=session, user_id=user_id)
        address = get_address_for_user(
            session=session, user_id=user_id, address_id=data.address_id
        )
        address_snapshot = address.snapshot()

        add_on_counts = merge_add_on_requests(data.add_ons)
        remarks = (data.remarks or "").strip()[:500]
        fingerprint = submit_fingerprint(
            data=data,
            add_on_counts=add_on_counts,
            address=address_snapshot,
            remarks=remarks,
        )

        existing = _find_duplicate(
            session, user_id=user_id, fingerprint=fingerprint, cfg=cfg, now=now
        )
        if existing is not None:
            record_risk_event(
                session=session,
                user_id=user_id,
                order_id=existing.id,
                type=RiskEventType.duplicate_order_submit,
                level=RiskLevel.medium,
                detail={
                    "order_no": existing.order_no,
                    "window_seconds": cfg.order_rules.duplicate_window_seconds,
                },
            )
            logger.info("duplicate submit reused order_no=%s user_id=%s", existing.order_no, user_id)
            return CreateOrderResult(order=existing, reused=True)

        catalog_beads, catalog_add_ons = _load_catalog(session, list(add_on_counts))

        coupon = None
        coupon_terms = None
        if data.coupon_id:
            coupon, template = find_coupon_for_order(
                session=session, user_id=user_id, coupon_id=data.coupon_id, now=now
            )
            coupon_terms = CouponTerms(
                discount_type=template.discount_type,
                discount_value=template.discount_value,
                min_amount=template.min_amount,
            )

        breakdown = price_order(
            designs=data.designs,
            add_on_counts=add_on_counts,
            catalog_beads=catalog_beads,
            catalog_add_ons=catalog_add_ons,
            params=PricingParams.from_config(cfg),
            coupon=coupon_terms,
            requested_points=data.points_to_use,
            available_points=user.points,
            expected_total=data.client_amount,
        )

        line_records = breakdown.line_records()

        order = Order(
            order_no=generate_order_no(now),
            user_id=user_id,
            status=OrderStatus.pending_payment,
            items=line_records,
            total_amount=breakdown.amount_before_discount,
            pay_amount=breakdown.pay_amount,
            shipping_fee=breakdown.shipping_fee,
            handwork_fee=breakdown.handwork_fee,
            coupon_amount=breakdown.coupon_amount,
            points_deduct_amount=breakdown.points_deduct_amount,
            points_used=breakdown.points_used,
            shipping_address=address_snapshot,
            remarks=remarks,
            submit_fingerprint=fingerprint,
            pricing_snapshot=breakdown.snapshot(),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=cfg.order_rules.payment_window_minutes),
        )
        session.add(order)
        session.flush()

        take_add_on_stock(
            session=session,
            add_on_counts=breakdown.add_on_counts,
            names={a.id: a.name for a in catalog_add_ons},
        )
        reserve_inventory(
            session=session,
            order_id=order.id,
            user_id=user_id,
            bead_counts=breakdown.bead_counts,
            expires_at=order.expires_at,
        )
        if coupon is not None:
            lock_coupon(session=session, coupon_id=coupon.id, user_id=user_id, order_id=order.id)
        if breakdown.points_used > 0:
            freeze_points(
                session=session,
                user_id=user_id,
                amount=breakdown.points_used,
                order_id=order.id,
                reason=f"订单 {order.order_no} 积分抵扣冻结",
            )

        outbox.add(
            user_id=user_id,
            type=NotificationType.order,
            title="订单已创建",
            content=f"订单 {order.order_no} 已创建，请在 "
            f"{cfg.order_rules.payment_window_minutes} 分钟内完成支付。",
            order_id=order.id,
        )

    logger.info(
        "order created order_no=%s user_id=%s pay_amount=%s",
        order.order_no,
        user_id,
        order.pay_amount,
    )
    outbox.dispatch(session)
    session.refresh(order)
    return CreateOrderResult(order=order, reused=False, breakdown=breakdown)


# ============================================================
# 支付结算
# ============================================================


def _floor_points(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def settle_order(
    session: Session,
    *,
    order_id: int | None = None,
    order_no: str | None = None,
    transaction_id: str | None = None,
    paid_at: datetime | None = None,
    payment_channel: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    支付成功结算（幂等）

    订单不是 pending_payment 时直接返回当前订单，重复回调不会重复入账。
    否则：标记已支付 -> 核销珠子预占 -> 核销冻结积分 -> 消费返积分 ->
    累计消费 -> 核销优惠券 -> 推荐佣金（开启分销且有推荐人时）。
    """
    if order_id is None and not order_no:
        raise ValidationFailed(code=52002, message="订单ID或订单号不能为空")

    now = _now(now)
    expire_pending_orders(session, now=now)
    cfg = get_config()

    outbox = NotificationOutbox()
    with transaction(session):
        order = lock_order(session, order_id=order_id, order_no=order_no)
        if order is None:
            raise order_not_found()
        if order.status != OrderStatus.pending_payment:
            logger.info(
                "settle skipped order_no=%s status=%s", order.order_no, order.status
            )
            return order

        pay_amount = Decimal(order.pay_amount)
        order.status = OrderStatus.pending_production
        order.paid_at = paid_at or now
        order.transaction_id = transaction_id or order.transaction_id
        order.payment_channel = payment_channel or cfg.integrations.payment.provider
        order.updated_at = now
        session.add(order)

        consume_reservations(session=session, order_id=order.id)
        if order.points_used > 0:
            redeem_frozen_points(
                session=session,
                user_id=order.user_id,
                amount=order.points_used,
                order_id=order.id,
                reason=f"订单 {order.order_no} 支付成功，核销冻结积分",
            )

        earned = _floor_points(pay_amount * cfg.affiliate.points_per_yuan)
        if earned > 0:
            earn_points(
                session=session,
                user_id=order.user_id,
                amount=earned,
                order_id=order.id,
                reason=f"订单 {order.order_no} 消费返积分",
            )
        add_total_spend(session=session, user_id=order.user_id, amount=pay_amount)
        mark_coupon_used(session=session, order_id=order.id)

        buyer = get_user(session=session, user_id=order.user_id)
        if (
            cfg.features.enable_affiliate
            and buyer.referrer_id
            and buyer.referrer_id != buyer.id
        ):
            commission = _floor_points(
                pay_amount
                * cfg.affiliate.points_per_yuan
                * cfg.affiliate.commission_rate_percent
                / 100
            )
            credit_commission(
                session=session,
                from_user_id=buyer.id,
                to_user_id=buyer.referrer_id,
                order_id=order.id,
                points=commission,
            )

        outbox.add(
            user_id=order.user_id,
            type=NotificationType.payment,
            title="支付成功",
            content=f"订单 {order.order_no} 已支付成功，我们将尽快为您制作。",
            order_id=order.id,
        )

    logger.info(
        "order settled order_no=%s transaction_id=%s earned=%s",
        order.order_no,
        transaction_id,
        earned,
    )
    outbox.dispatch(session)
    session.refresh(order)
    return order


# ============================================================
# 取消 / 发货 / 确认收货
# ============================================================


def _load_owned(session: Session, *, order_id: int, user_id: int) -> Order:
    order = lock_order(session, order_id=order_id)
    if order is None:
        raise order_not_found()
    if order.user_id != user_id:
        raise Forbidden(code=50002)
    return order


def cancel_order(
    session: Session, *, user_id: int, order_id: int, now: datetime | None = None
) -> Order:
    """用户取消订单（仅 pending_payment），退回预占、加购库存、冻结积分和优惠券"""
    now = _now(now)
    outbox = NotificationOutbox()
    with transaction(session):
        order = _load_owned(session, order_id=order_id, user_id=user_id)
        if order.status != OrderStatus.pending_payment:
            raise IllegalTransition(
                code=50011,
                message="仅待付款订单可取消",
                action="cancel",
                expected=(OrderStatus.pending_payment.value,),
                actual=_status(order),
            )
        reverse_holds(
            session,
            order,
            reservation_status=ReservationStatus.released,
            outbox=outbox,
            now=now,
        )
    logger.info("order cancelled order_no=%s user_id=%s", order.order_no, user_id)
    outbox.dispatch(session)
    session.refresh(order)
    return order


def ship_order(
    session: Session,
    *,
    order_id: int,
    carrier: str,
    tracking_number: str,
    now: datetime | None = None,
) -> Order:
    """
    后台发货

    允许从 pending_production 发货，也允许对已发货订单重复调用以修正物流单号；
    首次发货时间保持不变。
    """
    carrier = (carrier or "").strip()
    tracking_number = (tracking_number or "").strip()
    if not carrier or not tracking_number:
        raise ValidationFailed(code=50017, message="物流公司和运单号不能为空")

    now = _now(now)
    outbox = NotificationOutbox()
    with transaction(session):
        order = lock_order(session, order_id=order_id)
        if order is None:
            raise order_not_found()
        allowed = (OrderStatus.pending_production, OrderStatus.shipped)
        if order.status not in allowed:
            raise IllegalTransition(
                code=50016,
                message="订单当前状态不可发货",
                action="ship",
                expected=[s.value for s in allowed],
                actual=_status(order),
            )

        order.status = OrderStatus.shipped
        order.carrier = carrier
        order.tracking_number = tracking_number
        order.shipped_at = order.shipped_at or now
        order.updated_at = now
        session.add(order)
        session.add(
            LogisticsEvent(
                order_id=order.id,
                title="已发货",
                detail=f"{carrier} 已揽收",
                location="仓库",
                event_time=now,
                source=LogisticsSource.admin,
            )
        )
        outbox.add(
            user_id=order.user_id,
            type=NotificationType.shipping,
            title="订单已发货",
            content=f"订单 {order.order_no} 已发货：{carrier}（{tracking_number}）。",
            order_id=order.id,
        )
    logger.info("order shipped order_no=%s carrier=%s", order.order_no, carrier)
    outbox.dispatch(session)
    session.refresh(order)
    return order


def confirm_order(
    session: Session, *, user_id: int, order_id: int, now: datetime | None = None
) -> Order:
    """买家确认收货（仅 shipped）"""
    now = _now(now)
    with transaction(session):
        order = _load_owned(session, order_id=order_id, user_id=user_id)
        if order.status != OrderStatus.shipped:
            raise IllegalTransition(
                code=50014,
                message="订单当前状态不可确认收货",
                action="confirm",
                expected=(OrderStatus.shipped.value,),
                actual=_status(order),
            )
        order.status = OrderStatus.completed
        order.completed_at = now
        order.updated_at = now
        session.add(order)
        session.add(
            LogisticsEvent(
                order_id=order.id,
                title="已签收",
                detail="买家确认收货",
                location=order.shipping_address,
                event_time=now,
                source=LogisticsSource.user_confirm,
            )
        )
    logger.info("order completed order_no=%s", order.order_no)
    session.refresh(order)
    return order


# ============================================================
# 查询
# ============================================================


def get_order_for_user(
    session: Session, *, order_id: int, user_id: int, is_admin: bool = False
) -> Order:
    """查询订单详情（本人或管理员）"""
    expire_pending_orders(session)
    order = session.get(Order, order_id)
    if order is None:
        raise order_not_found()
    if not is_admin and order.user_id != user_id:
        raise Forbidden(code=50002)
    return order


def list_orders_for_user(
    session: Session, *, user_id: int, page: int = 1, page_size: int = 20
) -> tuple[list[Order], int]:
    """用户订单列表（按创建时间倒序）"""
    expire_pending_orders(session)
    total = session.exec(
        select(func.count()).select_from(Order).where(Order.user_id == user_id)
    ).one()
    stmt = (
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())  # type: ignore[union-attr]
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(session.exec(stmt).all()), int(total)


def list_orders_for_admin(
    session: Session,
    *,
    status: OrderStatus | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    """后台订单列表，可按状态筛选"""
    expire_pending_orders(session)
    count_stmt = select(func.count()).select_from(Order)
    stmt = select(Order)
    if status is not None:
        count_stmt = count_stmt.where(Order.status == status)
        stmt = stmt.where(Order.status == status)
    total = session.exec(count_stmt).one()
    stmt = (
        stmt.order_by(Order.created_at.desc())  # type: ignore[union-attr]
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(session.exec(stmt).all()), int(total)


# ============================================================
# 支付参数
# ============================================================


def create_payment_params(
    session: Session, *, user_id: int, order_id: int, now: datetime | None = None
) -> dict[str, Any]:
    """
    生成客户端拉起支付所需的参数

    - mock: 只返回订单号和随机串，前端随后调用 /payment/mock-confirm
    - wechat: 返回签名后的预支付参数，签名 = sha256(appId|mchId|orderNo|nonce|mchKey)
    - 其他通道: 返回金额和回调地址，由通道自行处理
    """
    now = _now(now)
    order = session.get(Order, order_id)
    if order is None:
        raise order_not_found()
    if order.user_id != user_id:
        raise Forbidden(code=50002)
    if order.status != OrderStatus.pending_payment:
        raise IllegalTransition(
            code=50003,
            message="订单当前状态不可支付",
            action="pay",
            expected=(OrderStatus.pending_payment.value,),
            actual=_status(order),
        )
    if as_utc(order.expires_at) <= now:
        raise StateConflict(code=50004, message="订单支付已超时")

    payment = get_config().integrations.payment
    if not payment.enabled:
        raise StateConflict(code=50019, message="支付通道已关闭")

    nonce = secrets.token_hex(8)
    provider = payment.provider or "mock"
    if provider == "wechat":
        if not (payment.app_id and payment.mch_id and payment.mch_key and payment.notify_url):
            raise StateConflict(code=50020, message="后台微信支付配置不完整")
        sign_raw = f"{payment.app_id}|{payment.mch_id}|{order.order_no}|{nonce}|{payment.mch_key}"
        params: dict[str, Any] = {
            "provider": "wechat",
            "app_id": payment.app_id,
            "mch_id": payment.mch_id,
            "notify_url": payment.notify_url,
            "timestamp": str(int(now.timestamp())),
            "nonce_str": nonce,
            "package": f"prepay_id=wx_prepay_{order.order_no}_{int(now.timestamp() * 1000)}",
            "sign_type": "SHA256",
            "pay_sign": hashlib.sha256(sign_raw.encode("utf-8")).hexdigest(),
        }
    elif provider == "mock":
        params = {"provider": "mock", "nonce_str": nonce, "order_no": order.order_no}
    else:
        params = {
            "provider": provider,
            "nonce_str": nonce,
            "order_no": order.order_no,
            "amount": str(order.pay_amount),
            "notify_url": payment.notify_url,
        }

    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "amount": order.pay_amount,
        "payment_params": params,
    }


def notify_signature(order_no: str, transaction_id: str, mch_key: str) -> str:
    """支付回调签名：sha256(orderNo|transactionId|mchKey)"""
    raw = f"{order_no}|{transaction_id}|{mch_key}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
