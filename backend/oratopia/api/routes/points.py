"""
积分路由模块

处理积分相关的 API 端点，包括：
- 查询积分余额（可用 / 冻结 / 累计消费）
- 查询积分流水（分页）
"""
from __future__ import annotations

from fastapi import APIRouter, Query  # FastAPI 路由和查询参数
from sqlmodel import func, select  # SQLModel 查询函数

from oratopia.api.deps import CurrentUser, SessionDep  # 依赖注入
from oratopia.api.schemas import (
    ApiEnvelope,
    PointLogPublic,
    PointLogsData,
    PointsBalanceData,
)
from oratopia.models import PointLog  # 积分流水模型

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/balance", response_model=ApiEnvelope)
def balance(current_user: CurrentUser) -> ApiEnvelope:
    """
    获取积分余额

    请求路径: GET /api/v1/points/balance
    """
    return ApiEnvelope(
        data=PointsBalanceData(
            points=current_user.points,
            frozen_points=current_user.frozen_points,
            total_spend=current_user.total_spend,
        )
    )


@router.get("/logs", response_model=ApiEnvelope)
def logs(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    page_size: int = Query(default=20, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    获取积分流水（分页，按时间倒序）

    请求路径: GET /api/v1/points/logs?page=1&page_size=20
    """
    offset = (page - 1) * page_size

    count_stmt = (
        select(func.count())
        .select_from(PointLog)
        .where(PointLog.user_id == current_user.id)
    )
    count = session.exec(count_stmt).one()

    stmt = (
        select(PointLog)
        .where(PointLog.user_id == current_user.id)
        .order_by(PointLog.created_at.desc())  # type: ignore[union-attr]
        .offset(offset)
        .limit(page_size)
    )
    rows = session.exec(stmt).all()

    data = [
        PointLogPublic(
            id=row.id,
            type=row.type,
            amount=row.amount,
            frozen_delta=row.frozen_delta,
            points_after=row.points_after,
            frozen_after=row.frozen_after,
            order_id=row.order_id,
            reason=row.reason,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return ApiEnvelope(data=PointLogsData(data=data, count=count))
