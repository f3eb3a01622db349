"""
物流轨迹服务

订单详情页读取物流时，先尝试从配置的物流商拉取最新轨迹，
只保存没见过的节点（标题 + 内容 + 时间完全一致视为同一条），
再返回库里的全部轨迹（按时间倒序）。

物流商查询失败不会让接口失败，只记日志并返回已保存的轨迹。
"""
import logging
from datetime import datetime

from sqlmodel import Session, select

from oratopia.api.errors import Forbidden, order_not_found
from oratopia.enums import LogisticsSource
from oratopia.integrations.logistics import (
    LogisticsProvider,
    TrackingEvent,
    get_logistics_provider,
)
from oratopia.models import LogisticsEvent, Order, as_utc, utc_now
from oratopia.services.config_service import get_config

logger = logging.getLogger(__name__)


def _event_key(title: str, detail: str, event_time: datetime) -> tuple[str, str, datetime]:
    return title, detail, as_utc(event_time).replace(microsecond=0)


def persist_provider_events(
    session: Session, *, order_id: int, events: list[TrackingEvent], now: datetime | None = None
) -> int:
    """
    保存未出现过的轨迹，返回新增条数

    没有时间的轨迹按 标题 + 内容 去重，首次入库时记为当前时间。
    """
    if not events:
        return 0
    stored = session.exec(select(LogisticsEvent).where(LogisticsEvent.order_id == order_id)).all()
    seen = {_event_key(e.title, e.detail, e.event_time) for e in stored}
    seen_text = {(e.title, e.detail) for e in stored}

    added = 0
    for event in events:
        event_time = event.event_time
        if event_time is None:
            if (event.title, event.detail) in seen_text:
                continue
            event_time = now or utc_now()
        key = _event_key(event.title, event.detail, event_time)
        if key in seen:
            continue
        seen.add(key)
        seen_text.add((event.title, event.detail))
        session.add(
            LogisticsEvent(
                order_id=order_id,
                title=event.title,
                detail=event.detail,
                location=event.location or "",
                event_time=key[2],
                source=LogisticsSource.provider,
            )
        )
        added += 1
    session.commit()
    return added


def sync_logistics(session: Session, order: Order, provider: LogisticsProvider | None) -> int:
    """从物流商同步轨迹，任何失败都只记日志"""
    if provider is None or not order.carrier or not order.tracking_number:
        return 0
    try:
        events = provider.fetch_tracking_events(order.carrier, order.tracking_number)
        return persist_provider_events(session, order_id=order.id, events=events)
    except Exception:
        session.rollback()
        logger.exception("logistics sync failed order_no=%s", order.order_no)
        return 0


def get_logistics(
    session: Session,
    *,
    order_id: int,
    user_id: int,
    is_admin: bool = False,
    provider: LogisticsProvider | None = None,
) -> tuple[Order, list[LogisticsEvent]]:
    """查询订单物流轨迹（本人或管理员）"""
    order = session.get(Order, order_id)
    if order is None:
        raise order_not_found()
    if not is_admin and order.user_id != user_id:
        raise Forbidden(code=50002)

    if provider is None:
        provider = get_logistics_provider(get_config().integrations.logistics)
    sync_logistics(session, order, provider)

    events = session.exec(
        select(LogisticsEvent)
        .where(LogisticsEvent.order_id == order_id)
        .order_by(LogisticsEvent.event_time.desc())  # type: ignore[union-attr]
    ).all()
    return order, list(events)
