"""
订单路由模块

处理用户侧订单相关的 API 端点，包括：
- 创建订单（计价、预占库存、锁券、冻结积分）
- 查询订单列表（分页）/ 订单详情
- 取消订单、确认收货
- 查询物流轨迹

业务逻辑都在 services/order_service.py，这里只做参数转换和响应封装。
"""
from __future__ import annotations

from fastapi import APIRouter, Query  # FastAPI 路由和查询参数

from oratopia.api.deps import CurrentUser, SessionDep  # 依赖注入
from oratopia.api.schemas import (
    ApiEnvelope,
    LogisticsData,
    LogisticsEventPublic,
    OrderCreateData,
    OrderCreateRequest,
    OrderData,
    OrdersData,
)
from oratopia.enums import UserRole
from oratopia.models import Order  # 订单模型
from oratopia.services import logistics_service, order_service
from oratopia.services.pricing import BeadSelection, DesignSelection

router = APIRouter(prefix="/order", tags=["order"])


def to_order_data(order: Order) -> OrderData:
    """将订单模型转换为响应数据模型"""
    return OrderData(
        id=order.id,
        order_no=order.order_no,
        user_id=order.user_id,
        status=order.status,
        items=order.items or [],
        total_amount=order.total_amount,
        pay_amount=order.pay_amount,
        shipping_fee=order.shipping_fee,
        handwork_fee=order.handwork_fee,
        coupon_amount=order.coupon_amount,
        points_used=order.points_used,
        points_deduct_amount=order.points_deduct_amount,
        shipping_address=order.shipping_address,
        remarks=order.remarks or "",
        carrier=order.carrier,
        tracking_number=order.tracking_number,
        created_at=order.created_at,
        expires_at=order.expires_at,
        paid_at=order.paid_at,
        shipped_at=order.shipped_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
    )


def _to_create_input(body: OrderCreateRequest) -> order_service.CreateOrderInput:
    designs = [
        DesignSelection(
            name=d.name,
            wrist_size=d.wrist_size,
            image_url=d.image_url,
            beads=[BeadSelection(id=b.id, name=b.name, size_mm=b.size_mm) for b in d.beads],
        )
        for d in body.designs
    ]
    return order_service.CreateOrderInput(
        designs=designs,
        add_ons=[(a.id, a.quantity) for a in body.add_ons],
        address_id=body.address_id,
        remarks=body.remarks,
        coupon_id=body.coupon_id,
        points_to_use=body.points_to_use,
        client_amount=body.client_amount,
    )


@router.post("/create", response_model=ApiEnvelope)
def create_order(session: SessionDep, current_user: CurrentUser, body: OrderCreateRequest) -> ApiEnvelope:
    """
    创建订单

    30 秒内重复提交相同内容会返回已有订单（reused=true），不会重复扣库存。

    请求路径: POST /api/v1/order/create
    """
    result = order_service.create_order(
        session, user_id=current_user.id, data=_to_create_input(body)
    )
    return ApiEnvelope(data=OrderCreateData(order=to_order_data(result.order), reused=result.reused))


@router.get("/list", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    page_size: int = Query(default=20, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    查询当前用户的订单列表（按创建时间倒序）

    请求路径: GET /api/v1/order/list?page=1&page_size=20
    """
    orders, count = order_service.list_orders_for_user(
        session, user_id=current_user.id, page=page, page_size=page_size
    )
    return ApiEnvelope(data=OrdersData(data=[to_order_data(o) for o in orders], count=count))


@router.get("/{order_id}", response_model=ApiEnvelope)
def get_order(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    查询订单详情（本人或管理员）

    请求路径: GET /api/v1/order/{order_id}
    """
    order = order_service.get_order_for_user(
        session,
        order_id=order_id,
        user_id=current_user.id,
        is_admin=current_user.role == UserRole.admin,
    )
    return ApiEnvelope(data=to_order_data(order))


@router.post("/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_order(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    取消订单（仅待付款订单）

    请求路径: POST /api/v1/order/{order_id}/cancel
    """
    order = order_service.cancel_order(session, user_id=current_user.id, order_id=order_id)
    return ApiEnvelope(data=to_order_data(order))


@router.post("/{order_id}/confirm", response_model=ApiEnvelope)
def confirm_order(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    确认收货（仅已发货订单）

    请求路径: POST /api/v1/order/{order_id}/confirm
    """
    order = order_service.confirm_order(session, user_id=current_user.id, order_id=order_id)
    return ApiEnvelope(data=to_order_data(order))


@router.get("/{order_id}/logistics", response_model=ApiEnvelope)
def get_logistics(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    查询物流轨迹

    物流商查询失败时返回已保存的轨迹，不会报错。

    请求路径: GET /api/v1/order/{order_id}/logistics
    """
    order, events = logistics_service.get_logistics(
        session,
        order_id=order_id,
        user_id=current_user.id,
        is_admin=current_user.role == UserRole.admin,
    )
    return ApiEnvelope(
        data=LogisticsData(
            order_id=order.id,
            carrier=order.carrier,
            tracking_number=order.tracking_number,
            events=[
                LogisticsEventPublic(
                    title=e.title,
                    detail=e.detail,
                    location=e.location or "",
                    event_time=e.event_time,
                    source=e.source,
                )
                for e in events
            ],
        )
    )
