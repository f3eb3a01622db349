from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from oratopia.api.errors import (
    Forbidden,
    IllegalTransition,
    NotFound,
    RateLimited,
    StateConflict,
    ValidationFailed,
)
from oratopia.enums import (
    LogisticsSource,
    OrderStatus,
    PointLogType,
    ReservationStatus,
    RiskEventType,
    UserCouponStatus,
)
from oratopia.models import (
    CommissionLog,
    InventoryReservation,
    LogisticsEvent,
    Notification,
    Order,
    PointLog,
    RiskEvent,
    as_utc,
    utc_now,
)
from oratopia.services import order_service
from oratopia.services.config_service import (
    AppConfig,
    FeatureFlags,
    Integrations,
    OrderRules,
    PaymentIntegration,
    set_config,
)
from oratopia.services.order_service import CreateOrderInput
from oratopia.services.pricing import BeadSelection, DesignSelection


def _input(bead, *, count=10, **kwargs) -> CreateOrderInput:
    """count 颗 2 元黑曜石：20 + 手工费 3 + 运费 10 = 33"""
    design = DesignSelection(name="Night Sky", beads=[BeadSelection(id=str(bead.id))] * count)
    return CreateOrderInput(designs=[design], **kwargs)


@pytest.fixture
def buyer(make_user, make_address):
    user = make_user(points=1000)
    return user, make_address(user)


def _create(db, buyer, beads, **kwargs):
    user, address = buyer
    data = _input(beads["obsidian"], address_id=address.id, **kwargs)
    return order_service.create_order(db, user_id=user.id, data=data)


def _logs(db, order_id, log_type):
    return db.exec(
        select(PointLog).where(PointLog.order_id == order_id, PointLog.type == log_type)
    ).all()


# ============================================================
# 下单
# ============================================================


def test_create_order_reserves_and_notifies(db, buyer, beads):
    result = _create(db, buyer, beads, remarks="  gift wrap  ")
    order = result.order

    assert result.reused is False
    assert order.status == OrderStatus.pending_payment
    assert order.pay_amount == Decimal("33.00")
    assert order.shipping_fee == Decimal("10.00")
    assert order.remarks == "gift wrap"
    assert order.order_no.startswith("ORD")
    assert as_utc(order.expires_at) - as_utc(order.created_at) == timedelta(minutes=30)
    assert order.pricing_snapshot["pay_amount"] == "33.00"
    assert order.items[0]["kind"] == "design"

    obsidian = beads["obsidian"]
    db.refresh(obsidian)
    assert (obsidian.stock, obsidian.reserved_stock) == (90, 10)

    notes = db.exec(select(Notification).where(Notification.order_id == order.id)).all()
    assert [n.title for n in notes] == ["订单已创建"]


def test_duplicate_submit_reuses_order(db, buyer, beads):
    first = _create(db, buyer, beads)
    second = _create(db, buyer, beads)

    assert second.reused is True
    assert second.order.id == first.order.id
    assert len(db.exec(select(Order)).all()) == 1

    obsidian = beads["obsidian"]
    db.refresh(obsidian)
    assert obsidian.reserved_stock == 10

    events = db.exec(
        select(RiskEvent).where(RiskEvent.type == RiskEventType.duplicate_order_submit)
    ).all()
    assert len(events) == 1
    assert events[0].order_id == first.order.id


def test_duplicate_submit_with_points_reuses_order(db, buyer, beads):
    user, _ = buyer
    first = _create(db, buyer, beads, points_to_use=1000)
    second = _create(
        db, buyer, beads, points_to_use=1000, client_amount=first.order.pay_amount
    )

    assert second.reused is True
    assert second.order.id == first.order.id
    assert len(db.exec(select(Order)).all()) == 1

    db.refresh(user)
    assert user.points + user.frozen_points == 1000
    assert user.frozen_points == first.order.points_used
    assert len(_logs(db, first.order.id, PointLogType.freeze)) == 1


def test_duplicate_submit_with_coupon_reuses_order(db, buyer, beads, make_coupon):
    user, _ = buyer
    coupon = make_coupon(user, discount_value="10")
    first = _create(db, buyer, beads, coupon_id=coupon.id, client_amount=Decimal("23.00"))
    second = _create(db, buyer, beads, coupon_id=coupon.id, client_amount=Decimal("23.00"))

    assert second.reused is True
    assert second.order.id == first.order.id
    db.refresh(coupon)
    assert coupon.order_id == first.order.id
    obsidian = beads["obsidian"]
    db.refresh(obsidian)
    assert obsidian.reserved_stock == 10


def test_different_remarks_are_not_duplicates(db, buyer, beads):
    first = _create(db, buyer, beads, remarks="a")
    second = _create(db, buyer, beads, remarks="b")
    assert second.reused is False
    assert second.order.id != first.order.id


def test_rate_limit_records_risk_event(db, buyer, beads):
    set_config(AppConfig(order_rules=OrderRules(rate_limit_max_orders=2)))
    _create(db, buyer, beads, remarks="1")
    _create(db, buyer, beads, remarks="2")

    with pytest.raises(RateLimited) as exc:
        _create(db, buyer, beads, remarks="3")
    assert exc.value.code == 43001
    assert exc.value.status_code == 429

    events = db.exec(
        select(RiskEvent).where(RiskEvent.type == RiskEventType.high_frequency_order)
    ).all()
    assert len(events) == 1
    assert events[0].detail["count"] == 2
    assert len(db.exec(select(Order)).all()) == 2


def test_trade_disabled(db, buyer, beads):
    set_config(AppConfig(features=FeatureFlags(enable_trade=False)))
    with pytest.raises(StateConflict) as exc:
        _create(db, buyer, beads)
    assert exc.value.code == 40008


def test_address_required(db, buyer, beads):
    user, _ = buyer
    with pytest.raises(ValidationFailed) as exc:
        order_service.create_order(db, user_id=user.id, data=_input(beads["obsidian"]))
    assert exc.value.code == 40005

    with pytest.raises(NotFound) as exc:
        order_service.create_order(
            db, user_id=user.id, data=_input(beads["obsidian"], address_id=12345)
        )
    assert exc.value.code == 40004


def test_points_are_frozen_on_create(db, buyer, beads):
    user, _ = buyer
    order = _create(db, buyer, beads, points_to_use=500).order

    assert order.points_used == 500
    assert order.points_deduct_amount == Decimal("5.00")
    assert order.pay_amount == Decimal("28.00")

    db.refresh(user)
    assert (user.points, user.frozen_points) == (500, 500)
    (log,) = _logs(db, order.id, PointLogType.freeze)
    assert (log.amount, log.frozen_delta, log.points_after, log.frozen_after) == (-500, 500, 500, 500)


def test_coupon_cannot_be_used_twice(db, buyer, beads, make_coupon):
    user, _ = buyer
    coupon = make_coupon(user, discount_value="10")

    order = _create(db, buyer, beads, coupon_id=coupon.id).order
    assert order.coupon_amount == Decimal("10.00")
    assert order.pay_amount == Decimal("23.00")
    db.refresh(coupon)
    assert coupon.order_id == order.id

    with pytest.raises(StateConflict) as exc:
        _create(db, buyer, beads, coupon_id=coupon.id, remarks="again")
    assert exc.value.code == 41001


def test_failed_create_leaves_no_partial_holds(db, buyer, beads, gift_box, make_coupon):
    user, address = buyer
    coupon = make_coupon(user)
    flash = beads["flash"]
    data = CreateOrderInput(
        designs=[DesignSelection(name="Heavy", beads=[BeadSelection(id=str(flash.id))] * 4)],
        add_ons=[(gift_box.id, 2)],
        address_id=address.id,
        coupon_id=coupon.id,
        points_to_use=100,
    )
    with pytest.raises(StateConflict) as exc:
        order_service.create_order(db, user_id=user.id, data=data)
    assert exc.value.code == 42001

    assert db.exec(select(Order)).all() == []
    assert db.exec(select(InventoryReservation)).all() == []
    db.refresh(gift_box)
    db.refresh(flash)
    db.refresh(user)
    db.refresh(coupon)
    assert gift_box.stock == 5
    assert (flash.stock, flash.reserved_stock) == (3, 0)
    assert (user.points, user.frozen_points) == (1000, 0)
    assert coupon.order_id is None


# ============================================================
# 支付结算
# ============================================================


def test_settle_is_idempotent(db, buyer, beads, make_coupon):
    user, _ = buyer
    coupon = make_coupon(user, discount_value="5")
    order = _create(db, buyer, beads, points_to_use=500, coupon_id=coupon.id).order
    # 33 - 5 - 5 = 23
    assert order.pay_amount == Decimal("23.00")

    settled = order_service.settle_order(db, order_id=order.id, transaction_id="tx_1")
    assert settled.status == OrderStatus.pending_production
    assert settled.paid_at is not None
    assert settled.transaction_id == "tx_1"
    assert settled.payment_channel == "mock"

    again = order_service.settle_order(db, order_no=order.order_no, transaction_id="tx_2")
    assert again.id == order.id
    assert again.status == OrderStatus.pending_production
    assert again.transaction_id == "tx_1"

    assert len(_logs(db, order.id, PointLogType.earn_purchase)) == 1
    assert len(_logs(db, order.id, PointLogType.redeem)) == 1

    db.refresh(user)
    # 1000 - 500 冻结后核销，再返 23 * 5 = 115
    assert (user.points, user.frozen_points) == (615, 0)
    assert user.total_spend == Decimal("23.00")

    obsidian = beads["obsidian"]
    db.refresh(obsidian)
    assert (obsidian.stock, obsidian.reserved_stock) == (90, 0)
    reservation = db.exec(
        select(InventoryReservation).where(InventoryReservation.order_id == order.id)
    ).one()
    assert reservation.status == ReservationStatus.consumed

    db.refresh(coupon)
    assert coupon.status == UserCouponStatus.used
    assert coupon.used_at is not None


def test_settle_credits_referrer_once(db, make_user, make_address, beads):
    referrer = make_user()
    user = make_user(referrer_id=referrer.id)
    address = make_address(user)
    order = order_service.create_order(
        db, user_id=user.id, data=_input(beads["obsidian"], address_id=address.id)
    ).order

    order_service.settle_order(db, order_id=order.id)
    order_service.settle_order(db, order_id=order.id)

    db.refresh(referrer)
    # floor(33 * 5 * 10%) = 16
    assert referrer.points == 16
    logs = db.exec(select(CommissionLog).where(CommissionLog.order_id == order.id)).all()
    assert len(logs) == 1
    assert logs[0].to_user_id == referrer.id
    assert len(_logs(db, order.id, PointLogType.commission)) == 1


def test_settle_without_affiliate(db, make_user, make_address, beads):
    set_config(AppConfig(features=FeatureFlags(enable_affiliate=False)))
    referrer = make_user()
    user = make_user(referrer_id=referrer.id)
    address = make_address(user)
    order = order_service.create_order(
        db, user_id=user.id, data=_input(beads["obsidian"], address_id=address.id)
    ).order
    order_service.settle_order(db, order_id=order.id)

    db.refresh(referrer)
    assert referrer.points == 0
    assert db.exec(select(CommissionLog)).all() == []


def test_settle_requires_reference(db):
    with pytest.raises(ValidationFailed) as exc:
        order_service.settle_order(db)
    assert exc.value.code == 52002

    with pytest.raises(NotFound) as exc:
        order_service.settle_order(db, order_no="ORD-missing")
    assert exc.value.code == 50001


def test_settle_after_expiry_is_noop(db, buyer, beads):
    user, address = buyer
    past = utc_now() - timedelta(minutes=45)
    order = order_service.create_order(
        db, user_id=user.id, data=_input(beads["obsidian"], address_id=address.id), now=past
    ).order

    settled = order_service.settle_order(db, order_id=order.id, transaction_id="late")
    assert settled.status == OrderStatus.cancelled
    assert settled.paid_at is None
    assert _logs(db, order.id, PointLogType.earn_purchase) == []


# ============================================================
# 取消 / 发货 / 确认收货
# ============================================================


def test_cancel_reverses_every_hold(db, buyer, beads, gift_box, make_coupon):
    user, _ = buyer
    coupon = make_coupon(user)
    order = _create(
        db, buyer, beads, add_ons=[(gift_box.id, 2)], points_to_use=300, coupon_id=coupon.id
    ).order

    cancelled = order_service.cancel_order(db, user_id=user.id, order_id=order.id)
    assert cancelled.status == OrderStatus.cancelled
    assert cancelled.cancelled_at is not None

    obsidian = beads["obsidian"]
    for row in (obsidian, gift_box, user, coupon):
        db.refresh(row)
    assert (obsidian.stock, obsidian.reserved_stock) == (100, 0)
    assert gift_box.stock == 5
    assert (user.points, user.frozen_points) == (1000, 0)
    assert coupon.order_id is None
    assert coupon.status == UserCouponStatus.available

    reservation = db.exec(
        select(InventoryReservation).where(InventoryReservation.order_id == order.id)
    ).one()
    assert reservation.status == ReservationStatus.released
    assert len(_logs(db, order.id, PointLogType.unfreeze)) == 1

    titles = [
        n.title
        for n in db.exec(select(Notification).where(Notification.order_id == order.id)).all()
    ]
    assert "订单已取消" in titles

    with pytest.raises(IllegalTransition) as exc:
        order_service.cancel_order(db, user_id=user.id, order_id=order.id)
    assert exc.value.code == 50011
    assert exc.value.actual == "cancelled"
    assert exc.value.expected == ("pending_payment",)


def test_cancel_requires_owner(db, buyer, beads, make_user):
    order = _create(db, buyer, beads).order
    stranger = make_user()
    with pytest.raises(Forbidden) as exc:
        order_service.cancel_order(db, user_id=stranger.id, order_id=order.id)
    assert exc.value.code == 50002


def test_ship_and_confirm(db, buyer, beads):
    user, _ = buyer
    order = _create(db, buyer, beads).order

    with pytest.raises(IllegalTransition) as exc:
        order_service.ship_order(db, order_id=order.id, carrier="顺丰速运", tracking_number="SF1")
    assert exc.value.code == 50016
    assert exc.value.actual == "pending_payment"

    with pytest.raises(IllegalTransition) as exc:
        order_service.confirm_order(db, user_id=user.id, order_id=order.id)
    assert exc.value.code == 50014

    order_service.settle_order(db, order_id=order.id)

    with pytest.raises(ValidationFailed) as exc:
        order_service.ship_order(db, order_id=order.id, carrier=" ", tracking_number="SF1")
    assert exc.value.code == 50017

    shipped = order_service.ship_order(
        db, order_id=order.id, carrier="顺丰速运", tracking_number="SF1"
    )
    assert shipped.status == OrderStatus.shipped
    first_shipped_at = shipped.shipped_at

    fixed = order_service.ship_order(
        db, order_id=order.id, carrier="顺丰速运", tracking_number="SF2"
    )
    assert fixed.tracking_number == "SF2"
    assert fixed.shipped_at == first_shipped_at

    completed = order_service.confirm_order(db, user_id=user.id, order_id=order.id)
    assert completed.status == OrderStatus.completed
    assert completed.completed_at is not None

    events = db.exec(select(LogisticsEvent).where(LogisticsEvent.order_id == order.id)).all()
    sources = sorted(e.source for e in events)
    assert sources == [LogisticsSource.admin, LogisticsSource.admin, LogisticsSource.user_confirm]

    with pytest.raises(IllegalTransition) as exc:
        order_service.ship_order(db, order_id=order.id, carrier="顺丰速运", tracking_number="SF3")
    assert exc.value.actual == "completed"


def test_cancel_after_payment_is_illegal(db, buyer, beads):
    user, _ = buyer
    order = _create(db, buyer, beads).order
    order_service.settle_order(db, order_id=order.id)
    with pytest.raises(IllegalTransition) as exc:
        order_service.cancel_order(db, user_id=user.id, order_id=order.id)
    assert exc.value.actual == "pending_production"


# ============================================================
# 查询 / 支付参数
# ============================================================


def test_get_and_list_orders(db, buyer, beads, make_user):
    user, _ = buyer
    first = _create(db, buyer, beads, remarks="1").order
    _create(db, buyer, beads, remarks="2")

    assert order_service.get_order_for_user(db, order_id=first.id, user_id=user.id).id == first.id
    stranger = make_user()
    with pytest.raises(Forbidden):
        order_service.get_order_for_user(db, order_id=first.id, user_id=stranger.id)
    admin_view = order_service.get_order_for_user(
        db, order_id=first.id, user_id=stranger.id, is_admin=True
    )
    assert admin_view.id == first.id

    orders, total = order_service.list_orders_for_user(db, user_id=user.id, page=1, page_size=1)
    assert total == 2
    assert len(orders) == 1

    pending, count = order_service.list_orders_for_admin(db, status=OrderStatus.pending_payment)
    assert count == 2
    none, count = order_service.list_orders_for_admin(db, status=OrderStatus.shipped)
    assert (none, count) == ([], 0)


def test_payment_params_by_provider(db, buyer, beads):
    user, _ = buyer
    order = _create(db, buyer, beads).order

    params = order_service.create_payment_params(db, user_id=user.id, order_id=order.id)
    assert params["amount"] == Decimal("33.00")
    assert params["payment_params"]["provider"] == "mock"

    set_config(AppConfig(integrations=Integrations(payment=PaymentIntegration(enabled=False))))
    with pytest.raises(StateConflict) as exc:
        order_service.create_payment_params(db, user_id=user.id, order_id=order.id)
    assert exc.value.code == 50019

    set_config(
        AppConfig(integrations=Integrations(payment=PaymentIntegration(provider="wechat")))
    )
    with pytest.raises(StateConflict) as exc:
        order_service.create_payment_params(db, user_id=user.id, order_id=order.id)
    assert exc.value.code == 50020

    wechat = PaymentIntegration(
        provider="wechat",
        app_id="wx1",
        mch_id="m1",
        mch_key="k1",
        notify_url="https://shop.example.com/notify",
    )
    set_config(AppConfig(integrations=Integrations(payment=wechat)))
    params = order_service.create_payment_params(db, user_id=user.id, order_id=order.id)
    assert params["payment_params"]["sign_type"] == "SHA256"
    assert len(params["payment_params"]["pay_sign"]) == 64

    order_service.cancel_order(db, user_id=user.id, order_id=order.id)
    with pytest.raises(IllegalTransition) as exc:
        order_service.create_payment_params(db, user_id=user.id, order_id=order.id)
    assert exc.value.code == 50003


def test_payment_params_after_deadline(db, buyer, beads):
    user, _ = buyer
    order = _create(db, buyer, beads).order
    with pytest.raises(StateConflict) as exc:
        order_service.create_payment_params(
            db, user_id=user.id, order_id=order.id, now=utc_now() + timedelta(minutes=31)
        )
    assert exc.value.code == 50004
