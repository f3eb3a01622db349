"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接当字符串存库，又有枚举的类型约束。
"""
from enum import Enum


class UserRole(str, Enum):
    """用户角色"""
    user = "user"
    admin = "admin"


class OrderStatus(str, Enum):
    """
    订单状态枚举

    状态流转：
        pending_payment -> pending_production -> shipped -> completed
        pending_payment -> cancelled（用户取消或超时关闭）
    """
    pending_payment = "pending_payment"  # 待付款
    pending_production = "pending_production"  # 已付款，制作中
    shipped = "shipped"  # 已发货
    completed = "completed"  # 已完成（买家确认收货）
    cancelled = "cancelled"  # 已取消


class ReservationStatus(str, Enum):
    """
    库存预占状态枚举

    - reserved: 已预占（库存已扣减，reserved_stock 已增加）
    - consumed: 已核销（支付成功，只扣减 reserved_stock）
    - released: 已释放（用户取消，库存归还）
    - expired: 已过期（超时关闭，库存归还）
    """
    reserved = "reserved"
    consumed = "consumed"
    released = "released"
    expired = "expired"


class CatalogStatus(int, Enum):
    """珠子 / 加购商品上下架状态"""
    inactive = 0
    active = 1


class UserCouponStatus(str, Enum):
    """用户优惠券状态"""
    available = "available"
    used = "used"
    expired = "expired"


class CouponDiscountType(str, Enum):
    """
    优惠券类型

    - fixed: 固定金额减免
    - percent: 按百分比折扣（discount_value=10 表示减 10%）
    """
    fixed = "fixed"
    percent = "percent"


class PointLogType(str, Enum):
    """
    积分流水类型

    - freeze: 下单冻结（可用 -n，冻结 +n）
    - unfreeze: 取消/超时解冻（可用 +n，冻结 -n）
    - redeem: 支付成功后核销冻结积分（冻结 -n）
    - earn_purchase: 消费返积分
    - commission: 推荐佣金
    """
    freeze = "freeze"
    unfreeze = "unfreeze"
    redeem = "redeem"
    earn_purchase = "earn_purchase"
    commission = "commission"


class CommissionStatus(str, Enum):
    settled = "settled"


class LogisticsSource(str, Enum):
    """物流轨迹来源"""
    admin = "admin"
    user_confirm = "user_confirm"
    provider = "provider"


class NotificationType(str, Enum):
    order = "order"
    payment = "payment"
    shipping = "shipping"


class RiskEventType(str, Enum):
    """风控事件类型"""
    high_frequency_order = "high_frequency_order"
    duplicate_order_submit = "duplicate_order_submit"


class RiskLevel(str, Enum):
    medium = "medium"
    high = "high"
