"""
ID 与订单号生成模块

- 数据库主键：Snowflake 64 位 ID（41 位毫秒时间戳 | 10 位节点 | 12 位序列号）
- 订单号：面向用户展示的定长字符串，格式 ORD + YYYYMMDDHHMMSS + 4 位随机数
"""
from __future__ import annotations

import secrets
import threading
import time
from datetime import datetime

from oratopia.core.config import settings

# 2024-01-01T00:00:00Z 的毫秒时间戳
_EPOCH_MS = 1704067200000

ORDER_NO_PREFIX = "ORD"


class Snowflake:
    """
    线程安全的 Snowflake ID 生成器

    同一毫秒内序列号耗尽时等待下一毫秒；
    时钟回拨 5 秒以内等待追平，超过则拒绝生成。
    """

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                diff = self._last_ts - ts
                if diff > 5000:
                    raise RuntimeError(
                        f"Clock moved backwards by {diff}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts


_GENERATOR: Snowflake | None = None


def generate_id() -> int:
    """生成数据库主键"""
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()


def generate_order_no(now: datetime) -> str:
    """
    生成订单号

    示例：
        >>> generate_order_no(datetime(2026, 2, 9, 13, 5, 7))
        'ORD202602091305074821'
    """
    random_part = 1000 + secrets.randbelow(9000)
    return f"{ORDER_NO_PREFIX}{now:%Y%m%d%H%M%S}{random_part}"
