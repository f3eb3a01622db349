"""
定时任务调度器
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from oratopia.core.config import settings
from oratopia.worker.tasks import sweep_expired_orders

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    # 上一轮没跑完时不再并发启动，错过的多次触发合并为一次
    scheduler.add_job(
        sweep_expired_orders,
        IntervalTrigger(seconds=settings.ORDER_SWEEP_INTERVAL_SECONDS),
        id="order_expiry_sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info(
        "Scheduler started. Order expiry sweep runs every %s seconds.",
        settings.ORDER_SWEEP_INTERVAL_SECONDS,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
