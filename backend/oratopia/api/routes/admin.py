"""
后台订单路由模块

仅管理员可访问：
- 订单列表（可按状态筛选）
- 发货 / 修改物流单号
- 手动触发一次超时订单扫描
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from oratopia.api.deps import CurrentAdmin, SessionDep
from oratopia.api.routes.orders import to_order_data
from oratopia.api.schemas import ApiEnvelope, OrdersData, ShipOrderRequest, SweepData
from oratopia.enums import OrderStatus
from oratopia.services import order_service
from oratopia.services.order_expiry import expire_pending_orders

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    _: CurrentAdmin,
    status: OrderStatus | None = Query(default=None),  # 按状态筛选
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    """
    后台订单列表

    请求路径: GET /api/v1/admin/orders?status=pending_production
    """
    orders, count = order_service.list_orders_for_admin(
        session, status=status, page=page, page_size=page_size
    )
    return ApiEnvelope(data=OrdersData(data=[to_order_data(o) for o in orders], count=count))


@router.post("/orders/{order_id}/ship", response_model=ApiEnvelope)
def ship_order(
    session: SessionDep, _: CurrentAdmin, order_id: int, body: ShipOrderRequest
) -> ApiEnvelope:
    """
    发货（已发货的订单可再次调用以修正物流信息）

    请求路径: POST /api/v1/admin/orders/{order_id}/ship
    """
    order = order_service.ship_order(
        session,
        order_id=order_id,
        carrier=body.carrier,
        tracking_number=body.tracking_number,
    )
    return ApiEnvelope(data=to_order_data(order))


@router.post("/orders/sweep", response_model=ApiEnvelope)
def sweep_expired(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    """
    立即执行一次超时订单扫描

    请求路径: POST /api/v1/admin/orders/sweep
    """
    result = expire_pending_orders(session)
    return ApiEnvelope(
        data=SweepData(
            scanned=result.scanned,
            expired=result.expired,
            skipped=result.skipped,
            failed=result.failed,
        )
    )
