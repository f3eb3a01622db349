"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户（含积分账户）与收货地址
- catalog.py: 珠子 SKU 与加购商品
- order.py: 订单、库存预占、物流轨迹
- points.py: 积分流水与推荐佣金
- coupon.py: 优惠券模板与用户优惠券
- notification.py: 站内通知与风控事件
"""
from sqlmodel import SQLModel

from .base import as_utc, utc_now
from .catalog import AddOnProduct, Bead
from .coupon import CouponTemplate, UserCoupon
from .notification import Notification, RiskEvent
from .order import InventoryReservation, LogisticsEvent, Order
from .points import CommissionLog, PointLog
from .user import Address, User

__all__ = [
    "SQLModel",
    "utc_now",
    "as_utc",
    "User",
    "Address",
    "Bead",
    "AddOnProduct",
    "Order",
    "InventoryReservation",
    "LogisticsEvent",
    "PointLog",
    "CommissionLog",
    "CouponTemplate",
    "UserCoupon",
    "Notification",
    "RiskEvent",
]
