"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- BaseModel: Pydantic 的模型基类，用于数据验证
- Field: 字段验证器，定义字段的约束（长度、范围等）
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Annotated, Any, Literal  # 类型注解

from pydantic import BaseModel, Field, field_validator  # Pydantic 核心类

from oratopia.enums import (
    LogisticsSource,  # 物流轨迹来源
    OrderStatus,  # 订单状态枚举
    PointLogType,  # 积分流水类型枚举
)

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    用于解析 JWT token 中的用户信息。
    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    所有 API 响应都使用这个格式，包含：
    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 44001, "message": "积分不足", "data": None}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# ============================================================
# 下单
# ============================================================


class BeadIn(BaseModel):
    """
    作品中的一颗珠子

    客户端提交的价格、颜色等字段会被忽略，价格一律以服务端目录为准。
    """
    id: str | None = Field(default=None, max_length=64)  # 珠子 ID（可能带前端拼接的后缀）
    name: str | None = Field(default=None, max_length=128)  # 珠子名称（ID 失效时兜底匹配）
    size_mm: float | None = Field(default=None, gt=0)  # 直径（毫米）

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v


class DesignIn(BaseModel):
    """手串作品"""
    name: str | None = Field(default=None, max_length=128)
    wrist_size: float | None = Field(default=None, gt=0, le=40)  # 手围（厘米）
    image_url: str | None = Field(default=None, max_length=1024)
    beads: list[BeadIn] = Field(default_factory=list)


class AddOnIn(BaseModel):
    """加购商品"""
    id: int
    quantity: int = Field(default=1, ge=0, le=999)


class OrderCreateRequest(BaseModel):
    """
    创建订单请求模型

    client_amount 是前端展示给用户的应付金额，
    与服务端计价结果相差超过 0.01 元时拒绝下单（43002）。
    """
    designs: list[DesignIn] = Field(default_factory=list)
    add_ons: list[AddOnIn] = Field(default_factory=list)
    address_id: int | None = None  # 收货地址 ID（必填，缺失时返回 40005）
    remarks: str = Field(default="", max_length=500)  # 备注
    coupon_id: int | None = None  # 用户优惠券 ID
    points_to_use: int = Field(default=0, ge=0)  # 希望抵扣的积分数
    client_amount: Decimal | None = None  # 客户端计算的应付金额


# ============================================================
# 订单
# ============================================================


class DesignLinePublic(BaseModel):
    kind: Literal["design"] = "design"
    name: str
    description: str
    price: Decimal
    quantity: int = 1
    image_preview: str = ""


class AddOnLinePublic(BaseModel):
    kind: Literal["add_on"] = "add_on"
    add_on_id: int
    name: str
    price: Decimal
    quantity: int
    image_preview: str = ""


# 行项目（按 kind 区分作品 / 加购商品）
LineItemPublic = Annotated[DesignLinePublic | AddOnLinePublic, Field(discriminator="kind")]


class OrderData(BaseModel):
    """
    订单数据模型

    返回订单的详细信息（金额拆分 + 各阶段时间）。
    """
    id: int  # 订单 ID
    order_no: str  # 订单号
    user_id: int  # 下单用户
    status: OrderStatus  # 订单状态
    items: list[LineItemPublic]  # 行项目快照
    total_amount: Decimal  # 优惠前总额
    pay_amount: Decimal  # 实付金额
    shipping_fee: Decimal  # 运费
    handwork_fee: Decimal  # 手工费
    coupon_amount: Decimal  # 优惠券减免
    points_used: int  # 抵扣积分数
    points_deduct_amount: Decimal  # 积分抵扣金额
    shipping_address: str  # 收货地址快照
    remarks: str = ""
    carrier: str | None = None  # 物流公司
    tracking_number: str | None = None  # 运单号
    created_at: datetime
    expires_at: datetime  # 支付截止时间
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class OrderCreateData(BaseModel):
    """
    下单响应模型

    reused=True 表示命中了重复提交，返回的是已有订单。
    """
    order: OrderData
    reused: bool = False


class OrdersData(BaseModel):
    """
    订单列表响应模型

    返回订单列表和总数。
    """
    data: list[OrderData]  # 订单列表
    count: int  # 总记录数


class ShipOrderRequest(BaseModel):
    """后台发货请求"""
    carrier: str = Field(min_length=1, max_length=64)  # 物流公司（如 顺丰速运）
    tracking_number: str = Field(min_length=1, max_length=64)  # 运单号


class SweepData(BaseModel):
    """手动触发超时扫描的结果"""
    scanned: int
    expired: int
    skipped: int
    failed: int


# ============================================================
# 物流
# ============================================================


class LogisticsEventPublic(BaseModel):
    title: str
    detail: str
    location: str = ""
    event_time: datetime
    source: LogisticsSource


class LogisticsData(BaseModel):
    """物流轨迹响应模型（按时间倒序）"""
    order_id: int
    carrier: str | None = None
    tracking_number: str | None = None
    events: list[LogisticsEventPublic]


# ============================================================
# 支付
# ============================================================


class PaymentCreateRequest(BaseModel):
    order_id: int


class PaymentCreateData(BaseModel):
    """拉起支付所需参数"""
    order_id: int
    order_no: str
    amount: Decimal
    payment_params: dict[str, Any]


class PaymentNotifyRequest(BaseModel):
    """
    支付回调请求模型

    order_id 和 order_no 至少提供一个；
    微信通道还需要 signature = sha256(orderNo|transactionId|mchKey)。
    """
    order_id: int | None = None
    order_no: str | None = Field(default=None, max_length=64)
    transaction_id: str | None = Field(default=None, max_length=128)
    paid_at: datetime | None = None
    signature: str | None = Field(default=None, max_length=128)


class MockConfirmRequest(BaseModel):
    order_id: int


# ============================================================
# 积分
# ============================================================


class PointsBalanceData(BaseModel):
    """
    积分余额响应模型

    返回可用积分、冻结积分和累计消费。
    """
    points: int  # 可用积分
    frozen_points: int  # 冻结积分（待付款订单抵扣）
    total_spend: Decimal  # 累计消费


class PointLogPublic(BaseModel):
    """
    积分流水公开模型

    用于返回积分流水，amount 为可用积分变动，frozen_delta 为冻结积分变动。
    """
    id: int  # 流水 ID
    type: PointLogType  # 流水类型
    amount: int  # 可用积分变动（负数表示扣除）
    frozen_delta: int  # 冻结积分变动
    points_after: int  # 变动后可用积分
    frozen_after: int  # 变动后冻结积分
    order_id: int | None = None  # 关联订单
    reason: str = ""
    created_at: datetime  # 流水时间


class PointLogsData(BaseModel):
    """
    积分流水列表响应模型
    """
    data: list[PointLogPublic]  # 流水列表
    count: int  # 总记录数
