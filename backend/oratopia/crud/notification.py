"""
站内通知 CRUD 操作

通知是"尽力而为"的：订单事务提交之后才写通知，
写失败只记日志，不影响已经提交的订单操作。
"""
import logging
from dataclasses import dataclass

from sqlmodel import Session

from oratopia.enums import NotificationType
from oratopia.models import Notification

logger = logging.getLogger(__name__)


def create_notification(
    *,
    session: Session,
    user_id: int,
    type: NotificationType,
    title: str,
    content: str,
    order_id: int | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        order_id=order_id,
        type=type,
        title=title,
        content=content,
    )
    session.add(notification)
    return notification


@dataclass(frozen=True)
class PendingNotification:
    user_id: int
    type: NotificationType
    title: str
    content: str
    order_id: int | None = None


class NotificationOutbox:
    """
    事务内收集通知，提交后统一发送

    使用示例：
        outbox = NotificationOutbox()
        with transaction(session):
            ...
            outbox.add(user_id=..., type=NotificationType.order, title=..., content=...)
        outbox.dispatch(session)
    """

    def __init__(self) -> None:
        self._pending: list[PendingNotification] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(
        self,
        *,
        user_id: int,
        type: NotificationType,
        title: str,
        content: str,
        order_id: int | None = None,
    ) -> None:
        self._pending.append(
            PendingNotification(
                user_id=user_id, type=type, title=title, content=content, order_id=order_id
            )
        )

    def dispatch(self, session: Session) -> int:
        """逐条写入并提交，返回成功条数"""
        delivered = 0
        pending, self._pending = self._pending, []
        for item in pending:
            try:
                create_notification(
                    session=session,
                    user_id=item.user_id,
                    type=item.type,
                    title=item.title,
                    content=item.content,
                    order_id=item.order_id,
                )
                session.commit()
                delivered += 1
            except Exception:
                session.rollback()
                logger.exception(
                    "notification delivery failed user_id=%s order_id=%s title=%s",
                    item.user_id,
                    item.order_id,
                    item.title,
                )
        return delivered
