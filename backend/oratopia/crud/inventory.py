"""库存预占 CRUD 操作

所有库存变化都用单条条件 UPDATE 完成（WHERE stock >= :qty），
并发下单抢同一颗珠子时由数据库保证原子性，不需要额外的锁。
这里的函数都不提交事务，由调用方的 transaction() 统一提交或回滚。
"""
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, func, select

from oratopia.api.errors import StateConflict
from oratopia.enums import CatalogStatus, ReservationStatus
from oratopia.models import AddOnProduct, Bead, InventoryReservation, utc_now


def reserve_inventory(
    *,
    session: Session,
    order_id: int,
    user_id: int,
    bead_counts: Mapping[int, int],
    expires_at: datetime,
) -> list[InventoryReservation]:
    """
    预占珠子库存

    对每个珠子执行：stock -= qty, reserved_stock += qty（仅当上架且库存足够），
    然后写一条 reserved 记录。任何一个珠子失败都抛出 42001，
    之前已经扣减的珠子由外层事务回滚。
    """
    reservations = []
    for bead_id, quantity in bead_counts.items():
        result = session.exec(
            update(Bead)
            .where(
                Bead.id == bead_id,
                Bead.status == CatalogStatus.active,
                Bead.stock >= quantity,
            )
            .values(
                stock=Bead.stock - quantity,
                reserved_stock=Bead.reserved_stock + quantity,
            )
        )
        if result.rowcount == 0:
            raise StateConflict(code=42001, message=f"Insufficient stock for bead {bead_id}")

        reservation = InventoryReservation(
            order_id=order_id,
            user_id=user_id,
            bead_id=bead_id,
            quantity=quantity,
            status=ReservationStatus.reserved,
            expires_at=expires_at,
        )
        session.add(reservation)
        reservations.append(reservation)
    session.flush()
    return reservations


def _active_reservations(*, session: Session, order_id: int) -> list[InventoryReservation]:
    stmt = select(InventoryReservation).where(
        InventoryReservation.order_id == order_id,
        InventoryReservation.status == ReservationStatus.reserved,
    )
    return list(session.exec(stmt).all())


def release_reservations(
    *, session: Session, order_id: int, status: ReservationStatus
) -> int:
    """
    释放预占：库存加回、reserved_stock 减回，记录置为 released / expired

    只处理 reserved 状态的记录，重复调用不会重复加回库存。
    返回释放的珠子总数。
    """
    if status not in (ReservationStatus.released, ReservationStatus.expired):
        raise ValueError(f"invalid terminal reservation status: {status}")
    now = utc_now()
    released = 0
    for reservation in _active_reservations(session=session, order_id=order_id):
        session.exec(
            update(Bead)
            .where(Bead.id == reservation.bead_id)
            .values(
                stock=Bead.stock + reservation.quantity,
                reserved_stock=Bead.reserved_stock - reservation.quantity,
            )
        )
        reservation.status = status
        reservation.released_at = now
        session.add(reservation)
        released += reservation.quantity
    session.flush()
    return released


def consume_reservations(*, session: Session, order_id: int) -> int:
    """
    核销预占：只扣减 reserved_stock（stock 在预占时已经扣过），记录置为 consumed
    """
    now = utc_now()
    consumed = 0
    for reservation in _active_reservations(session=session, order_id=order_id):
        session.exec(
            update(Bead)
            .where(Bead.id == reservation.bead_id)
            .values(reserved_stock=Bead.reserved_stock - reservation.quantity)
        )
        reservation.status = ReservationStatus.consumed
        reservation.consumed_at = now
        session.add(reservation)
        consumed += reservation.quantity
    session.flush()
    return consumed


def take_add_on_stock(
    *, session: Session, add_on_counts: Mapping[int, int], names: Mapping[int, str] | None = None
) -> None:
    """扣减加购商品库存（下单时直接扣，不走两阶段预占）"""
    for add_on_id, quantity in add_on_counts.items():
        result = session.exec(
            update(AddOnProduct)
            .where(
                AddOnProduct.id == add_on_id,
                AddOnProduct.status == CatalogStatus.active,
                AddOnProduct.stock >= quantity,
            )
            .values(stock=AddOnProduct.stock - quantity)
        )
        if result.rowcount == 0:
            name = (names or {}).get(add_on_id, str(add_on_id))
            raise StateConflict(code=42002, message=f"加购商品库存不足: {name}")


def add_on_counts_from_items(items: Iterable[dict[str, Any]]) -> dict[int, int]:
    """从订单行项目快照中统计加购商品数量"""
    counts: dict[int, int] = {}
    for item in items:
        if item.get("kind") != "add_on" or item.get("add_on_id") is None:
            continue
        add_on_id = int(item["add_on_id"])
        quantity = max(1, int(item.get("quantity") or 0))
        counts[add_on_id] = counts.get(add_on_id, 0) + quantity
    return counts


def restore_add_on_stock(*, session: Session, items: Iterable[dict[str, Any]]) -> None:
    """取消 / 超时时把加购商品库存加回"""
    for add_on_id, quantity in add_on_counts_from_items(items).items():
        session.exec(
            update(AddOnProduct)
            .where(AddOnProduct.id == add_on_id)
            .values(stock=AddOnProduct.stock + quantity)
        )


def reserved_quantity(*, session: Session, bead_id: int) -> int:
    """某个珠子所有 reserved 状态预占的数量之和（应等于 beads.reserved_stock）"""
    stmt = select(func.coalesce(func.sum(InventoryReservation.quantity), 0)).where(
        InventoryReservation.bead_id == bead_id,
        InventoryReservation.status == ReservationStatus.reserved,
    )
    return int(session.exec(stmt).one())
