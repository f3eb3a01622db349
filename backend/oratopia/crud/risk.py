"""风控事件 CRUD 操作"""
import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session, func, select

from oratopia.enums import RiskEventType, RiskLevel
from oratopia.models import Order, RiskEvent

logger = logging.getLogger(__name__)


def record_risk_event(
    *,
    session: Session,
    user_id: int,
    type: RiskEventType,
    level: RiskLevel,
    detail: dict[str, Any],
    order_id: int | None = None,
) -> RiskEvent:
    """写一条风控事件（不提交）"""
    event = RiskEvent(user_id=user_id, order_id=order_id, type=type, level=level, detail=detail)
    session.add(event)
    logger.warning("risk event %s user_id=%s detail=%s", type.value, user_id, detail)
    return event


def count_orders_since(*, session: Session, user_id: int, since: datetime) -> int:
    """统计用户从 since 起创建的订单数（下单频率风控）"""
    statement = select(func.count()).select_from(Order).where(
        Order.user_id == user_id, Order.created_at >= since
    )
    return int(session.exec(statement).one())
