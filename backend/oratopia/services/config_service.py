"""
业务配置服务

运费门槛、手工费、积分比例、下单风控阈值、支付 / 物流通道等业务参数
从 JSON 配置文件加载，后台修改后调用 refresh_config() 生效。

订单引擎的每个操作在开始时调用一次 get_config() 拿到不可变快照，
并把快照一路传给计价等下游逻辑，保证同一次操作内参数一致、可复现。
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from threading import Lock
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from oratopia.core.config import settings

logger = logging.getLogger(__name__)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class BusinessRules(_Frozen):
    handwork_fee: Decimal = Decimal("3")  # 每件作品的手工费
    free_shipping_threshold: Decimal = Decimal("99")  # 包邮门槛
    base_shipping_fee: Decimal = Decimal("10")  # 基础运费


class AffiliateRules(_Frozen):
    points_per_yuan: Decimal = Decimal("5")  # 每消费 1 元获得的积分
    commission_rate_percent: Decimal = Decimal("10")  # 推荐佣金比例（百分比）
    points_to_money_rate: Decimal = Decimal("0.01")  # 1 积分抵扣的金额


class FeatureFlags(_Frozen):
    enable_trade: bool = True
    enable_affiliate: bool = True


class OrderRules(_Frozen):
    payment_window_minutes: int = 30  # 支付窗口
    duplicate_window_seconds: int = 30  # 重复提交合并窗口
    rate_limit_window_seconds: int = 60  # 下单频率统计窗口
    rate_limit_max_orders: int = 5  # 窗口内最多下单数


class PaymentIntegration(_Frozen):
    provider: str = "mock"
    enabled: bool = True
    app_id: str = ""
    mch_id: str = ""
    mch_key: str = ""
    notify_url: str = ""


class LogisticsIntegration(_Frozen):
    provider: str = "manual"  # manual / mock / kuaidi100 / kdniao
    enabled: bool = False
    company_id: str = ""
    api_key: str = ""


class Integrations(_Frozen):
    payment: PaymentIntegration = Field(default_factory=PaymentIntegration)
    logistics: LogisticsIntegration = Field(default_factory=LogisticsIntegration)


class AppConfig(_Frozen):
    """业务配置快照（不可变）"""
    business: BusinessRules = Field(default_factory=BusinessRules)
    affiliate: AffiliateRules = Field(default_factory=AffiliateRules)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    order_rules: OrderRules = Field(default_factory=OrderRules)
    integrations: Integrations = Field(default_factory=Integrations)


_lock = Lock()
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """获取当前业务配置快照（首次调用时加载）"""
    global _config
    with _lock:
        if _config is not None:
            return _config
        _config = _load_from_file()
        return _config


def refresh_config() -> AppConfig:
    """重新加载配置文件"""
    global _config
    with _lock:
        _config = _load_from_file()
        return _config


def set_config(cfg: AppConfig) -> None:
    """直接替换当前配置（后台保存配置、测试注入时使用）"""
    global _config
    with _lock:
        _config = cfg


def _config_path() -> Path:
    if settings.BUSINESS_CONFIG_PATH:
        return Path(settings.BUSINESS_CONFIG_PATH)
    return Path(__file__).resolve().parents[1] / "config" / "default_config.json"


def _load_from_file() -> AppConfig:
    path = _config_path()
    if not path.exists():
        logger.warning("business config %s not found, using defaults", path)
        return AppConfig()
    raw: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    return AppConfig.model_validate(raw)
