"""
初始数据脚本

在数据库迁移完成后写入演示用的珠子 / 加购商品目录（目录为空时才写入）。

用法：
    python -m oratopia.initial_data
"""
import logging

from sqlmodel import Session

from oratopia.core.db import engine, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> None:
    logger.info("Creating initial catalog")
    with Session(engine) as session:
        init_db(session)
    logger.info("Initial catalog created")


if __name__ == "__main__":  # pragma: no cover
    main()
