"""
物流轨迹查询集成模块

封装第三方物流查询 API：
- 快递100（kuaidi100）：GET 查询接口
- 快递鸟（kdniao）：即时查询 RequestType=1002，查不到时回退到快递100
- mock：本地开发用，返回一条固定的运输中轨迹

统一接口：fetch_tracking_events(carrier, tracking_number) -> list[TrackingEvent]
HTTP 错误抛出 AppError（502xxx），由 logistics_service 统一吞掉并记录日志。
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from oratopia.api.errors import AppError
from oratopia.models import utc_now
from oratopia.services.config_service import LogisticsIntegration

logger = logging.getLogger(__name__)

KUAIDI100_ENDPOINT = "https://www.kuaidi100.com/query"
KDNIAO_ENDPOINT = "https://api.kdniao.com/Ebusiness/EbusinessOrderHandle.aspx"

# 快递鸟物流公司编码
KDNIAO_SHIPPER_CODES = {
    "顺丰速运": "SF",
    "中通快递": "ZTO",
    "圆通速递": "YTO",
    "韵达快递": "YD",
    "EMS": "EMS",
    "京东物流": "JD",
    "极兔速递": "JTSD",
}

# 物流商返回的时间是北京时间
_PROVIDER_TZ = timezone(timedelta(hours=8))


@dataclass(frozen=True)
class TrackingEvent:
    """一条物流轨迹"""
    event_time: datetime | None  # UTC；物流商未给出可解析的时间时为 None
    title: str
    detail: str
    location: str = ""


class LogisticsProvider(Protocol):
    def fetch_tracking_events(self, carrier: str, tracking_number: str) -> list[TrackingEvent]:
        ...


def parse_provider_time(value: str | None) -> datetime | None:
    """解析物流商时间（"2026-02-09 12:30:00"），无法解析时返回 None"""
    if value:
        for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y/%m/%d %H:%M:%S"):
            try:
                parsed = datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue
            return parsed.replace(tzinfo=_PROVIDER_TZ).astimezone(timezone.utc)
    return None


class MockLogisticsProvider:
    """
    模拟物流商

    轨迹时间取整到小时，同一小时内重复查询得到同一条轨迹，不会重复入库。
    """

    def __init__(self, event_time: datetime | None = None) -> None:
        self._event_time = event_time

    def fetch_tracking_events(self, carrier: str, tracking_number: str) -> list[TrackingEvent]:
        event_time = self._event_time or utc_now().replace(minute=0, second=0, microsecond=0)
        return [
            TrackingEvent(
                event_time=event_time,
                title="运输中",
                detail=f"物流商 {carrier} 已更新运单 {tracking_number}",
                location="Transit Hub",
            )
        ]


class Kuaidi100Provider:
    """快递100 查询"""

    def __init__(self, *, endpoint: str = KUAIDI100_ENDPOINT, timeout: float = 10) -> None:
        self._endpoint = endpoint
        self._timeout = timeout

    def fetch_tracking_events(self, carrier: str, tracking_number: str) -> list[TrackingEvent]:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.get(self._endpoint, params={"type": carrier, "postid": tracking_number})
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AppError(code=502201, message=f"kuaidi100 query error: {e}", status_code=502)

        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            return []
        events = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            detail = str(row.get("context") or "").strip()
            if not detail:
                continue
            events.append(
                TrackingEvent(
                    event_time=parse_provider_time(row.get("ftime")),
                    title="物流更新",
                    detail=detail,
                )
            )
        return events


def kdniao_data_sign(request_data: str, app_key: str) -> str:
    """快递鸟签名：urlencode(base64(md5_hex(RequestData + AppKey)))"""
    digest = hashlib.md5(f"{request_data}{app_key}".encode("utf-8")).hexdigest()
    return quote(base64.b64encode(digest.encode("utf-8")).decode("ascii"), safe="")


class KdniaoProvider:
    """
    快递鸟即时查询

    需要配置 company_id（EBusinessID）和 api_key（AppKey），未配置时返回空列表。
    快递鸟查不到轨迹时回退到快递100。
    """

    def __init__(
        self,
        *,
        business_id: str,
        app_key: str,
        endpoint: str = KDNIAO_ENDPOINT,
        fallback: LogisticsProvider | None = None,
        timeout: float = 10,
    ) -> None:
        self._business_id = business_id.strip()
        self._app_key = app_key.strip()
        self._endpoint = endpoint
        self._fallback = fallback if fallback is not None else Kuaidi100Provider(timeout=timeout)
        self._timeout = timeout

    def _query(self, carrier: str, tracking_number: str) -> list[TrackingEvent]:
        if not self._business_id or not self._app_key:
            return []

        request_data = json.dumps(
            {
                "ShipperCode": KDNIAO_SHIPPER_CODES.get(carrier, carrier),
                "LogisticCode": tracking_number,
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )
        form = {
            "RequestData": request_data,
            "EBusinessID": self._business_id,
            "RequestType": "1002",
            "DataSign": kdniao_data_sign(request_data, self._app_key),
            "DataType": "2",
        }
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(self._endpoint, data=form)
                r.raise_for_status()
                data: dict[str, Any] = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AppError(code=502202, message=f"kdniao query error: {e}", status_code=502)

        if not isinstance(data, dict) or not data.get("Success"):
            return []
        traces = data.get("Traces")
        if not isinstance(traces, list):
            return []
        events = []
        for trace in traces:
            if not isinstance(trace, dict):
                continue
            detail = str(trace.get("AcceptStation") or "").strip()
            if not detail:
                continue
            events.append(
                TrackingEvent(
                    event_time=parse_provider_time(trace.get("AcceptTime")),
                    title="物流更新",
                    detail=detail,
                    location=str(trace.get("Location") or ""),
                )
            )
        return events

    def fetch_tracking_events(self, carrier: str, tracking_number: str) -> list[TrackingEvent]:
        events = self._query(carrier, tracking_number)
        if events:
            return events
        logger.info("kdniao returned no traces for %s, falling back to kuaidi100", tracking_number)
        return self._fallback.fetch_tracking_events(carrier, tracking_number)


def get_logistics_provider(config: LogisticsIntegration) -> LogisticsProvider | None:
    """按配置选择物流商；未启用或手工录入（manual）时返回 None"""
    if not config.enabled:
        return None
    if config.provider == "mock":
        return MockLogisticsProvider()
    if config.provider == "kuaidi100":
        return Kuaidi100Provider()
    if config.provider == "kdniao":
        return KdniaoProvider(business_id=config.company_id, app_key=config.api_key)
    return None
