"""
工具路由模块

提供系统工具类的 API 端点，如健康检查等。
"""
from fastapi import APIRouter
from sqlmodel import select

from oratopia.api.deps import SessionDep

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
def health_check(session: SessionDep) -> bool:
    """
    健康检查端点

    对数据库执行一次 SELECT 1，数据库不可用时请求直接失败（500），
    负载均衡器据此摘除实例。

    请求路径: GET /api/v1/utils/health-check/
    """
    session.exec(select(1))
    return True
