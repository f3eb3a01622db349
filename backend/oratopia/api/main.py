"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（oratopia/main.py）上。

路由模块说明：
- orders: 用户订单（下单、列表、详情、取消、确认收货、物流）
- payments: 支付（拉起支付参数、回调结算、模拟支付）
- admin: 后台订单（列表、发货、手动超时扫描）
- points: 积分（余额、流水）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from oratopia.api.routes import (
    admin,  # 后台路由
    orders,  # 订单路由
    payments,  # 支付路由
    points,  # 积分路由
    utils,  # 工具路由
)

api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(orders.router)  # /order/*
api_router.include_router(payments.router)  # /payment/*
api_router.include_router(admin.router)  # /admin/*
api_router.include_router(points.router)  # /points/*
api_router.include_router(utils.router)  # /utils/*
