"""
数据库连接模块

管理数据库引擎、事务边界和初始数据。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 订单引擎的所有多步写操作都必须包在 transaction() 里，
  任何一步失败都会整体回滚，不会留下部分预占
"""
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

from sqlmodel import Session, create_engine, func, select

from oratopia.core.config import settings
from oratopia.models import AddOnProduct, Bead

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """
    事务上下文

    正常退出时提交，抛出任何异常时回滚并继续向上抛出。

    使用示例：
        with transaction(session):
            reserve_inventory(session=session, ...)
            freeze_points(session=session, ...)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


# 演示用的珠子与加购商品目录（数据库为空时写入）
_SEED_BEADS = [
    ("Obsidian 8mm", 8, "2.00", 500),
    ("Obsidian 10mm", 10, "6.00", 500),
    ("Rose Quartz 8mm", 8, "5.50", 500),
    ("Flash Black Crystal 12mm", 12, "20.00", 200),
    ("Silver Spacer", 4, "8.00", 300),
    ("Silver Star", 8, "25.00", 300),
]

_SEED_ADD_ONS = [
    ("Gift Box", "9.90", 200),
    ("Spare Elastic Cord", "3.00", 500),
]


def init_db(session: Session) -> None:
    """
    写入初始目录数据

    只在珠子表为空时执行，重复调用不会产生重复数据。
    """
    count = session.exec(select(func.count()).select_from(Bead)).one()
    if count:
        return
    for name, diameter, price, stock in _SEED_BEADS:
        session.add(Bead(name=name, diameter=diameter, price=Decimal(price), stock=stock))
    for name, price, stock in _SEED_ADD_ONS:
        session.add(AddOnProduct(name=name, price=Decimal(price), stock=stock))
    session.commit()
