from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from oratopia.api.errors import StateConflict
from oratopia.core.db import transaction
from oratopia.core.snowflake import generate_id
from oratopia.crud.inventory import (
    add_on_counts_from_items,
    consume_reservations,
    release_reservations,
    reserve_inventory,
    reserved_quantity,
    restore_add_on_stock,
    take_add_on_stock,
)
from oratopia.enums import CatalogStatus, ReservationStatus
from oratopia.models import Address, Bead, InventoryReservation, Order, User, utc_now
from oratopia.services import order_service
from oratopia.services.order_service import CreateOrderInput
from oratopia.services.pricing import BeadSelection, DesignSelection


def _reserve(db, user, counts):
    order_id = generate_id()
    with transaction(db):
        reserve_inventory(
            session=db,
            order_id=order_id,
            user_id=user.id,
            bead_counts=counts,
            expires_at=utc_now() + timedelta(minutes=30),
        )
    return order_id


def _assert_no_drift(db, *beads):
    for bead in beads:
        db.refresh(bead)
        assert bead.reserved_stock == reserved_quantity(session=db, bead_id=bead.id)


def test_reserve_moves_stock_into_reserved(db, make_user, beads):
    user = make_user()
    obsidian, rose = beads["obsidian"], beads["rose"]
    order_id = _reserve(db, user, {obsidian.id: 10, rose.id: 2})

    db.refresh(obsidian)
    db.refresh(rose)
    assert (obsidian.stock, obsidian.reserved_stock) == (90, 10)
    assert (rose.stock, rose.reserved_stock) == (98, 2)

    rows = db.exec(
        select(InventoryReservation).where(InventoryReservation.order_id == order_id)
    ).all()
    assert {r.status for r in rows} == {ReservationStatus.reserved}
    _assert_no_drift(db, obsidian, rose)


def test_insufficient_stock_rolls_back_every_bead(db, make_user, beads):
    user = make_user()
    obsidian, flash = beads["obsidian"], beads["flash"]
    with pytest.raises(StateConflict) as exc:
        _reserve(db, user, {obsidian.id: 5, flash.id: 4})
    assert exc.value.code == 42001

    db.refresh(obsidian)
    db.refresh(flash)
    assert (obsidian.stock, obsidian.reserved_stock) == (100, 0)
    assert (flash.stock, flash.reserved_stock) == (3, 0)
    assert db.exec(select(InventoryReservation)).all() == []


def test_inactive_bead_cannot_be_reserved(db, make_user, beads):
    user = make_user()
    flash = beads["flash"]
    flash.status = CatalogStatus.inactive
    db.add(flash)
    db.commit()
    with pytest.raises(StateConflict):
        _reserve(db, user, {flash.id: 1})


def test_release_returns_stock_once(db, make_user, beads):
    user = make_user()
    obsidian = beads["obsidian"]
    order_id = _reserve(db, user, {obsidian.id: 7})

    with transaction(db):
        released = release_reservations(
            session=db, order_id=order_id, status=ReservationStatus.released
        )
    assert released == 7
    with transaction(db):
        again = release_reservations(
            session=db, order_id=order_id, status=ReservationStatus.expired
        )
    assert again == 0

    db.refresh(obsidian)
    assert (obsidian.stock, obsidian.reserved_stock) == (100, 0)
    row = db.exec(
        select(InventoryReservation).where(InventoryReservation.order_id == order_id)
    ).one()
    assert row.status == ReservationStatus.released
    assert row.released_at is not None
    _assert_no_drift(db, obsidian)


def test_release_rejects_non_terminal_status(db):
    with pytest.raises(ValueError):
        release_reservations(session=db, order_id=1, status=ReservationStatus.consumed)


def test_consume_only_drops_reserved(db, make_user, beads):
    user = make_user()
    obsidian = beads["obsidian"]
    order_id = _reserve(db, user, {obsidian.id: 4})

    with transaction(db):
        consumed = consume_reservations(session=db, order_id=order_id)
    assert consumed == 4

    db.refresh(obsidian)
    assert (obsidian.stock, obsidian.reserved_stock) == (96, 0)
    _assert_no_drift(db, obsidian)


def test_add_on_stock_take_and_restore(db, gift_box):
    with transaction(db):
        take_add_on_stock(session=db, add_on_counts={gift_box.id: 3})
    db.refresh(gift_box)
    assert gift_box.stock == 2

    with pytest.raises(StateConflict) as exc:
        with transaction(db):
            take_add_on_stock(
                session=db, add_on_counts={gift_box.id: 3}, names={gift_box.id: "Gift Box"}
            )
    assert exc.value.code == 42002
    assert "Gift Box" in exc.value.message

    items = [
        {"kind": "design", "name": "x", "price": "10.00"},
        {"kind": "add_on", "add_on_id": gift_box.id, "quantity": 3, "price": "9.90"},
    ]
    with transaction(db):
        restore_add_on_stock(session=db, items=items)
    db.refresh(gift_box)
    assert gift_box.stock == 5


def test_add_on_counts_from_items_merges_lines():
    items = [
        {"kind": "add_on", "add_on_id": "7", "quantity": 2},
        {"kind": "add_on", "add_on_id": 7, "quantity": 0},
        {"kind": "add_on", "add_on_id": None, "quantity": 5},
        {"kind": "design", "name": "x"},
    ]
    assert add_on_counts_from_items(items) == {7: 3}


@pytest.fixture
def file_engine(tmp_path):
    """落盘的 SQLite，每个线程拿到自己的连接"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'checkout.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def test_concurrent_checkout_for_last_units(file_engine):
    with Session(file_engine) as session:
        bead = Bead(name="Flash Black", diameter=12, price=Decimal("20.00"), stock=3)
        session.add(bead)
        buyers = []
        for _ in range(2):
            user = User(nickname="racer")
            session.add(user)
            session.flush()
            address = Address(
                user_id=user.id,
                name="Lin",
                phone="13800000000",
                region="Shanghai",
                detail="No. 1 Century Ave",
            )
            session.add(address)
            session.flush()
            buyers.append((user.id, address.id))
        session.commit()
        bead_id = bead.id

    barrier = threading.Barrier(len(buyers))
    created: list[int] = []
    failures: list[Exception] = []

    def checkout(user_id: int, address_id: int) -> None:
        data = CreateOrderInput(
            designs=[DesignSelection(name="Heavy", beads=[BeadSelection(id=str(bead_id))] * 3)],
            address_id=address_id,
        )
        with Session(file_engine) as session:
            barrier.wait()
            try:
                result = order_service.create_order(session, user_id=user_id, data=data)
                created.append(result.order.id)
            except Exception as e:
                failures.append(e)

    threads = [threading.Thread(target=checkout, args=buyer) for buyer in buyers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(created) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], StateConflict)
    assert failures[0].code == 42001

    with Session(file_engine) as session:
        bead = session.get(Bead, bead_id)
        assert (bead.stock, bead.reserved_stock) == (0, 3)
        assert bead.stock + bead.reserved_stock == 3
        assert reserved_quantity(session=session, bead_id=bead_id) == 3
        assert [o.id for o in session.exec(select(Order)).all()] == created
        reservations = session.exec(select(InventoryReservation)).all()
        assert [r.order_id for r in reservations] == created
