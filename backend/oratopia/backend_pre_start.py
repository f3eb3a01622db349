"""
应用启动前检查脚本

1. 等待数据库可连接（容器编排下数据库可能还在初始化）
2. 加载一次业务配置文件，配置格式错误时在启动阶段就失败

用法：
    python -m oratopia.backend_pre_start
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import (
    after_log,
    before_log,
    retry,
    stop_after_attempt,
    wait_fixed,
)

from oratopia.core.db import engine
from oratopia.services.config_service import refresh_config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 最多等待 5 分钟
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def wait_for_db(db_engine: Engine) -> None:
    """执行 select(1)，失败时由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


def main() -> None:
    logger.info("Waiting for database")
    wait_for_db(engine)
    cfg = refresh_config()
    logger.info(
        "Business config loaded: payment=%s logistics=%s payment_window=%smin",
        cfg.integrations.payment.provider,
        cfg.integrations.logistics.provider,
        cfg.order_rules.payment_window_minutes,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
