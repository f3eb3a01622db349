"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器，
返回 {"code": 业务错误码, "message": 错误消息, "data": None}。

错误分类：
- ValidationFailed: 客户端输入问题（未知珠子、金额校验失败等），不应重试
- StateConflict: 状态冲突（非法状态流转、库存不足、优惠券已锁定），重新查询后可重试
- RateLimited: 操作过于频繁，稍后重试
- NotFound / Forbidden: 资源不存在 / 无权限
"""
from __future__ import annotations

from collections.abc import Iterable


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（稳定，前端据此做本地化展示）
    - message: 错误消息
    - status_code: HTTP 状态码

    使用示例：
        raise AppError(code=50001, message="订单不存在", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class ValidationFailed(AppError):
    pass


class StateConflict(AppError):
    pass


class RateLimited(AppError):
    def __init__(self, *, code: int, message: str) -> None:
        super().__init__(code=code, message=message, status_code=429)


class NotFound(AppError):
    def __init__(self, *, code: int, message: str) -> None:
        super().__init__(code=code, message=message, status_code=404)


class Forbidden(AppError):
    def __init__(self, *, code: int, message: str = "无权限操作") -> None:
        super().__init__(code=code, message=message, status_code=403)


class IllegalTransition(StateConflict):
    """
    非法状态流转

    携带尝试的操作、允许的起始状态和订单当前的实际状态，
    调用方需要重新查询订单后再决定下一步。
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        action: str,
        expected: Iterable[str],
        actual: str,
    ) -> None:
        super().__init__(code=code, message=message, status_code=400)
        self.action = action
        self.expected = tuple(expected)
        self.actual = actual


def insufficient_points() -> AppError:
    """
    创建"积分不足"异常（便捷函数）

    积分冻结是条件更新，可用积分不足时影响行数为 0。
    """
    return StateConflict(code=44001, message="积分不足", status_code=400)


def order_not_found(code: int = 50001) -> AppError:
    return NotFound(code=code, message="订单不存在")
