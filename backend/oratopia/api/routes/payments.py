"""
支付路由模块

- POST /payment/create: 生成拉起支付的参数
- POST /payment/notify: 支付网关回调，校验 token / 签名后结算订单（幂等）
- POST /payment/mock-confirm: 本地 / 测试环境模拟支付成功（仅 mock 通道）

签名校验在这里完成，order_service.settle_order 只接收已经可信的支付确认。
"""
from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Header

from oratopia.api.deps import CurrentUser, SessionDep
from oratopia.api.errors import AppError, Forbidden, ValidationFailed
from oratopia.api.routes.orders import to_order_data
from oratopia.api.schemas import (
    ApiEnvelope,
    MockConfirmRequest,
    PaymentCreateData,
    PaymentCreateRequest,
    PaymentNotifyRequest,
)
from oratopia.core.config import settings
from oratopia.services import order_service
from oratopia.services.config_service import get_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


def _verify_notify_token(token: str | None) -> None:
    expected = settings.PAYMENT_NOTIFY_TOKEN
    if not expected:
        if settings.ENVIRONMENT != "local":
            raise AppError(code=52004, message="PAYMENT_NOTIFY_TOKEN 未配置", status_code=500)
        return
    if not token or not hmac.compare_digest(token, expected):
        raise AppError(code=52005, message="回调 token 不正确", status_code=401)


@router.post("/create", response_model=ApiEnvelope)
def create_payment(session: SessionDep, current_user: CurrentUser, body: PaymentCreateRequest) -> ApiEnvelope:
    """
    生成支付参数

    请求路径: POST /api/v1/payment/create
    """
    result = order_service.create_payment_params(
        session, user_id=current_user.id, order_id=body.order_id
    )
    return ApiEnvelope(data=PaymentCreateData(**result))


@router.post("/notify", response_model=ApiEnvelope)
def payment_notify(
    session: SessionDep,
    body: PaymentNotifyRequest,
    x_notify_token: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    支付回调

    - 配置了 PAYMENT_NOTIFY_TOKEN 时，请求头 X-Notify-Token 必须一致
    - 微信通道额外校验 signature = sha256(orderNo|transactionId|mchKey)
    - 重复回调是安全的：订单已结算时直接返回当前订单

    请求路径: POST /api/v1/payment/notify
    """
    if body.order_id is None and not body.order_no:
        raise ValidationFailed(code=52002, message="订单ID或订单号不能为空")
    _verify_notify_token(x_notify_token)

    payment = get_config().integrations.payment
    if payment.provider == "wechat":
        if not payment.mch_key:
            raise AppError(code=52006, message="微信支付密钥未配置", status_code=500)
        expected = order_service.notify_signature(
            body.order_no or "", body.transaction_id or "", payment.mch_key
        )
        if not body.signature or not hmac.compare_digest(body.signature, expected):
            logger.warning("payment notify signature mismatch order_no=%s", body.order_no)
            raise AppError(code=52003, message="支付签名校验失败", status_code=401)

    order = order_service.settle_order(
        session,
        order_id=body.order_id,
        order_no=body.order_no,
        transaction_id=body.transaction_id,
        paid_at=body.paid_at,
        payment_channel=payment.provider,
    )
    return ApiEnvelope(data=to_order_data(order))


@router.post("/mock-confirm", response_model=ApiEnvelope)
def mock_confirm(session: SessionDep, current_user: CurrentUser, body: MockConfirmRequest) -> ApiEnvelope:
    """
    模拟支付成功（生产环境禁用，仅 mock 通道可用）

    请求路径: POST /api/v1/payment/mock-confirm
    """
    if settings.ENVIRONMENT == "production":
        raise Forbidden(code=52007, message="生产环境禁止模拟确认支付")
    if get_config().integrations.payment.provider != "mock":
        raise ValidationFailed(code=52009, message="模拟确认仅支持 mock 支付通道")

    # 只能确认本人的订单
    order_service.get_order_for_user(session, order_id=body.order_id, user_id=current_user.id)
    order = order_service.settle_order(
        session,
        order_id=body.order_id,
        transaction_id=f"mock_{body.order_id}",
        payment_channel="mock",
    )
    return ApiEnvelope(data=to_order_data(order))
