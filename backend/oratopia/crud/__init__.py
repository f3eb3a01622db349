"""CRUD 操作模块"""
from .coupon import find_coupon_for_order, lock_coupon, mark_coupon_used, unlock_coupon
from .inventory import (
    consume_reservations,
    release_reservations,
    reserve_inventory,
    restore_add_on_stock,
    take_add_on_stock,
)
from .notification import NotificationOutbox, create_notification
from .points import (
    credit_commission,
    earn_points,
    freeze_points,
    get_balances,
    redeem_frozen_points,
    unfreeze_points,
)
from .risk import count_orders_since, record_risk_event
from .user import get_address_for_user, get_user

__all__ = [
    "find_coupon_for_order",
    "lock_coupon",
    "mark_coupon_used",
    "unlock_coupon",
    "consume_reservations",
    "release_reservations",
    "reserve_inventory",
    "restore_add_on_stock",
    "take_add_on_stock",
    "NotificationOutbox",
    "create_notification",
    "credit_commission",
    "earn_points",
    "freeze_points",
    "get_balances",
    "redeem_frozen_points",
    "unfreeze_points",
    "count_orders_since",
    "record_risk_event",
    "get_address_for_user",
    "get_user",
]
