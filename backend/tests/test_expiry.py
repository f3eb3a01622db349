from __future__ import annotations

from datetime import timedelta

from sqlmodel import Session, select

from oratopia.enums import OrderStatus, PointLogType, ReservationStatus
from oratopia.models import InventoryReservation, Notification, Order, PointLog, utc_now
from oratopia.services import order_expiry, order_service
from oratopia.services.order_service import CreateOrderInput
from oratopia.services.pricing import BeadSelection, DesignSelection
from oratopia.worker import scheduler, tasks


def _create(db, user, address, bead, *, remarks="", points_to_use=0):
    data = CreateOrderInput(
        designs=[DesignSelection(name="Dawn", beads=[BeadSelection(id=str(bead.id))] * 5)],
        address_id=address.id,
        remarks=remarks,
        points_to_use=points_to_use,
    )
    return order_service.create_order(db, user_id=user.id, data=data).order


def test_sweep_respects_deadline(db, make_user, make_address, beads):
    user = make_user(points=200)
    address = make_address(user)
    bead = beads["rose"]
    order = _create(db, user, address, bead, points_to_use=200)

    before = order_expiry.expire_pending_orders(db, now=utc_now() + timedelta(minutes=29))
    assert (before.scanned, before.expired) == (0, 0)
    db.refresh(order)
    assert order.status == OrderStatus.pending_payment

    after = order_expiry.expire_pending_orders(db, now=utc_now() + timedelta(minutes=31))
    assert (after.scanned, after.expired, after.failed) == (1, 1, 0)

    db.refresh(order)
    db.refresh(bead)
    db.refresh(user)
    assert order.status == OrderStatus.cancelled
    assert (bead.stock, bead.reserved_stock) == (100, 0)
    assert (user.points, user.frozen_points) == (200, 0)

    reservation = db.exec(
        select(InventoryReservation).where(InventoryReservation.order_id == order.id)
    ).one()
    assert reservation.status == ReservationStatus.expired

    unfreeze = db.exec(
        select(PointLog).where(
            PointLog.order_id == order.id, PointLog.type == PointLogType.unfreeze
        )
    ).all()
    assert len(unfreeze) == 1

    titles = [
        n.title
        for n in db.exec(select(Notification).where(Notification.order_id == order.id)).all()
    ]
    assert "订单已超时关闭" in titles


def test_sweep_is_idempotent(db, make_user, make_address, beads):
    user = make_user()
    address = make_address(user)
    _create(db, user, address, beads["rose"])

    later = utc_now() + timedelta(hours=1)
    first = order_expiry.expire_pending_orders(db, now=later)
    second = order_expiry.expire_pending_orders(db, now=later)
    assert first.expired == 1
    assert (second.scanned, second.expired) == (0, 0)

    bead = beads["rose"]
    db.refresh(bead)
    assert (bead.stock, bead.reserved_stock) == (100, 0)


def test_expire_order_skips_paid_orders(db, make_user, make_address, beads):
    user = make_user()
    address = make_address(user)
    order = _create(db, user, address, beads["rose"])
    order_service.settle_order(db, order_id=order.id)

    assert order_expiry.expire_order(db, order.id, now=utc_now() + timedelta(hours=1)) is False
    db.refresh(order)
    assert order.status == OrderStatus.pending_production


def test_one_failure_does_not_stop_the_sweep(db, make_user, make_address, beads, monkeypatch):
    user = make_user()
    address = make_address(user)
    broken = _create(db, user, address, beads["rose"], remarks="broken")
    healthy = _create(db, user, address, beads["obsidian"], remarks="healthy")

    real_release = order_expiry.release_reservations

    def flaky_release(*, session, order_id, status):
        if order_id == broken.id:
            raise RuntimeError("boom")
        return real_release(session=session, order_id=order_id, status=status)

    monkeypatch.setattr(order_expiry, "release_reservations", flaky_release)

    result = order_expiry.expire_pending_orders(db, now=utc_now() + timedelta(hours=1))
    assert result.scanned == 2
    assert result.expired == 1
    assert result.failed_order_ids == [broken.id]

    db.refresh(broken)
    db.refresh(healthy)
    assert broken.status == OrderStatus.pending_payment
    assert healthy.status == OrderStatus.cancelled

    rose = beads["rose"]
    db.refresh(rose)
    assert rose.reserved_stock == 5


def test_lazy_sweep_runs_before_create(db, make_user, make_address, beads):
    user = make_user()
    address = make_address(user)
    flash = beads["flash"]
    data = CreateOrderInput(
        designs=[DesignSelection(name="Bold", beads=[BeadSelection(id=str(flash.id))] * 3)],
        address_id=address.id,
    )
    stale = order_service.create_order(
        db, user_id=user.id, data=data, now=utc_now() - timedelta(hours=1)
    ).order

    # 库存只有 3 颗，旧订单关闭后才能再次下单
    fresh = order_service.create_order(db, user_id=user.id, data=data).order
    db.refresh(stale)
    assert stale.status == OrderStatus.cancelled
    assert fresh.status == OrderStatus.pending_payment


def test_worker_task_uses_engine(engine, db, make_user, make_address, beads, monkeypatch):
    user = make_user()
    address = make_address(user)
    order = _create(db, user, address, beads["rose"])
    order.expires_at = utc_now() - timedelta(minutes=1)
    db.add(order)
    db.commit()

    monkeypatch.setattr(tasks, "engine", engine)
    result = tasks.sweep_expired_orders()
    assert result.expired == 1

    with Session(engine) as other:
        assert other.get(Order, order.id).status == OrderStatus.cancelled


def test_scheduler_registers_single_sweep_job():
    sched = scheduler.build_scheduler()
    job = sched.get_job("order_expiry_sweep")
    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True
