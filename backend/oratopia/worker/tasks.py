"""
定时任务逻辑
"""

import logging

from sqlmodel import Session

from oratopia.core.db import engine
from oratopia.services.order_expiry import SweepResult, expire_pending_orders

logger = logging.getLogger(__name__)


def sweep_expired_orders() -> SweepResult:
    """
    关闭超时未支付的订单

    与下单前的惰性扫描是同一个函数，重复执行、并发执行都是安全的。
    """
    with Session(engine) as session:
        result = expire_pending_orders(session)
    if result.failed:
        logger.warning("Expiry sweep finished with failures: %s", result.failed_order_ids)
    return result
