"""
订单计价引擎

纯计算模块，不做任何 I/O：调用方先从数据库取出目录数据、业务配置快照和
优惠券条款，再交给 price_order() 计算金额拆分。

计价规则：
1. 作品金额 = 每颗珠子按目录价累加（客户端提交的价格一律忽略）
2. 加购金额 = 单价 × 数量
3. 手工费 = 每件作品手工费 × 作品数
4. 商品 + 手工费 达到包邮门槛免运费，否则收基础运费
5. 优惠券：满减或折扣，不超过优惠前总额；未达门槛直接拒绝
6. 积分抵扣：不超过可用积分，也不超过优惠后金额能吸收的积分数（向下取整）
7. 每一步累加后都四舍五入到分，避免浮点漂移
"""
from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Literal

from oratopia.api.errors import StateConflict, ValidationFailed
from oratopia.enums import CouponDiscountType
from oratopia.services.config_service import AppConfig

# 计价规则版本，写入订单的 pricing_snapshot 供审计
PRICING_RULE_VERSION = "2026-02-09"

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# 客户端金额与服务端计算结果允许的误差
AMOUNT_TOLERANCE = Decimal("0.01")

_ID_SUFFIX = re.compile(r"-[^-]+$")


def round_money(value: Decimal | int | float | str) -> Decimal:
    """四舍五入到分"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================
# 输入
# ============================================================


@dataclass(frozen=True)
class CatalogBead:
    id: int
    name: str
    diameter: float
    price: Decimal


@dataclass(frozen=True)
class CatalogAddOn:
    id: int
    name: str
    price: Decimal
    stock: int
    image: str | None = None


@dataclass(frozen=True)
class BeadSelection:
    """客户端提交的一颗珠子（id 可能带有前端拼接的后缀，如 "123-2"）"""
    id: str | None = None
    name: str | None = None
    size_mm: float | None = None


@dataclass(frozen=True)
class DesignSelection:
    name: str | None
    beads: Sequence[BeadSelection]
    wrist_size: float | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class CouponTerms:
    discount_type: CouponDiscountType
    discount_value: Decimal
    min_amount: Decimal


@dataclass(frozen=True)
class PricingParams:
    handwork_fee: Decimal
    free_shipping_threshold: Decimal
    base_shipping_fee: Decimal
    points_to_money_rate: Decimal

    @classmethod
    def from_config(cls, cfg: AppConfig) -> PricingParams:
        return cls(
            handwork_fee=cfg.business.handwork_fee,
            free_shipping_threshold=cfg.business.free_shipping_threshold,
            base_shipping_fee=cfg.business.base_shipping_fee,
            points_to_money_rate=cfg.affiliate.points_to_money_rate,
        )


# ============================================================
# 输出
# ============================================================


@dataclass(frozen=True)
class DesignLine:
    name: str
    description: str
    price: Decimal
    quantity: int = 1
    image_preview: str = ""
    kind: Literal["design"] = "design"


@dataclass(frozen=True)
class AddOnLine:
    add_on_id: int
    name: str
    price: Decimal
    quantity: int
    image_preview: str = ""
    kind: Literal["add_on"] = "add_on"


LineItem = DesignLine | AddOnLine


def line_to_record(line: LineItem) -> dict[str, Any]:
    """行项目序列化为 JSON 可存储的 dict（金额转字符串）"""
    record = dataclasses.asdict(line)
    record["price"] = str(line.price)
    return record


@dataclass(frozen=True)
class PricingBreakdown:
    lines: tuple[LineItem, ...]
    bead_counts: dict[int, int]
    add_on_counts: dict[int, int]
    design_amount: Decimal
    add_on_amount: Decimal
    product_amount: Decimal
    handwork_fee: Decimal
    amount_before_shipping: Decimal
    shipping_fee: Decimal
    amount_before_discount: Decimal
    coupon_amount: Decimal
    points_used: int
    points_deduct_amount: Decimal
    pay_amount: Decimal
    rule_version: str = field(default=PRICING_RULE_VERSION)

    def line_records(self) -> list[dict[str, Any]]:
        return [line_to_record(line) for line in self.lines]

    def snapshot(self) -> dict[str, Any]:
        """不可变的计价审计快照"""
        return {
            "design_amount": str(self.design_amount),
            "add_on_amount": str(self.add_on_amount),
            "product_amount": str(self.product_amount),
            "handwork_fee": str(self.handwork_fee),
            "amount_before_shipping": str(self.amount_before_shipping),
            "shipping_fee": str(self.shipping_fee),
            "amount_before_discount": str(self.amount_before_discount),
            "coupon_amount": str(self.coupon_amount),
            "points_used": self.points_used,
            "points_deduct_amount": str(self.points_deduct_amount),
            "pay_amount": str(self.pay_amount),
            "algorithm_version": self.rule_version,
        }


# ============================================================
# 珠子解析
# ============================================================


def bead_id_candidates(raw_id: str | None) -> list[str]:
    """
    逐级去掉 "-xxx" 后缀得到候选 id

    示例：
        >>> bead_id_candidates("101-3-7")
        ['101-3-7', '101-3', '101']
    """
    if not raw_id:
        return []
    candidates: list[str] = []
    current = raw_id
    while current:
        candidates.append(current)
        nxt = _ID_SUFFIX.sub("", current)
        if nxt == current or not nxt:
            break
        current = nxt
    return candidates


class BeadResolver:
    """
    两阶段珠子解析

    优先级：
    1. 精确 id（含去后缀的候选 id）
    2. 名称（忽略大小写）+ 直径
    3. 仅名称

    客户端缓存的 id 可能因为后台编辑目录而失效，所以保留按名称兜底。
    """

    def __init__(self, beads: Iterable[CatalogBead]) -> None:
        self._by_id: dict[str, CatalogBead] = {}
        self._by_name_diameter: dict[tuple[str, float], CatalogBead] = {}
        self._by_name: dict[str, CatalogBead] = {}
        for bead in beads:
            self._by_id[str(bead.id)] = bead
            key = bead.name.strip().lower()
            self._by_name_diameter.setdefault((key, float(bead.diameter)), bead)
            self._by_name.setdefault(key, bead)

    def resolve(self, selection: BeadSelection) -> CatalogBead | None:
        for candidate in bead_id_candidates(selection.id):
            hit = self._by_id.get(candidate)
            if hit:
                return hit

        name = (selection.name or "").strip().lower()
        if not name:
            return None
        if selection.size_mm is not None:
            exact = self._by_name_diameter.get((name, float(selection.size_mm)))
            if exact:
                return exact
        return self._by_name.get(name)


def merge_add_on_requests(requests: Iterable[tuple[int, int]]) -> dict[int, int]:
    """合并同一加购商品的多次请求，忽略数量不为正的项"""
    merged: dict[int, int] = {}
    for add_on_id, quantity in requests:
        if quantity <= 0:
            continue
        merged[add_on_id] = merged.get(add_on_id, 0) + quantity
    return merged


# ============================================================
# 计价
# ============================================================


def coupon_discount(terms: CouponTerms, amount_before_discount: Decimal) -> Decimal:
    if amount_before_discount < terms.min_amount:
        raise ValidationFailed(
            code=41004, message=f"优惠券使用门槛金额为 {terms.min_amount}"
        )
    if terms.discount_type == CouponDiscountType.fixed:
        discount = round_money(terms.discount_value)
    else:
        discount = round_money(amount_before_discount * terms.discount_value / 100)
    return min(discount, amount_before_discount)


def redeemable_points(
    *,
    requested: int,
    available: int,
    amount_after_coupon: Decimal,
    rate: Decimal,
) -> int:
    """可抵扣积分 = min(请求数, 可用积分, 金额能吸收的积分数)"""
    if rate <= 0:
        return 0
    points = max(0, int(requested))
    points = min(points, max(0, available))
    absorbable = int((amount_after_coupon / rate).to_integral_value(rounding=ROUND_FLOOR))
    return max(0, min(points, absorbable))


def price_order(
    *,
    designs: Sequence[DesignSelection],
    add_on_counts: Mapping[int, int],
    catalog_beads: Iterable[CatalogBead],
    catalog_add_ons: Iterable[CatalogAddOn],
    params: PricingParams,
    coupon: CouponTerms | None = None,
    requested_points: int = 0,
    available_points: int = 0,
    expected_total: Decimal | None = None,
) -> PricingBreakdown:
    """
    计算订单金额

    Raises:
        ValidationFailed: 没有作品 / 作品没有珠子 / 未知珠子 / 加购商品不存在 /
            优惠券门槛不满足 / 客户端金额校验失败
        StateConflict: 加购商品库存不足（预检查）
    """
    if not designs:
        raise ValidationFailed(code=40001, message="订单中没有商品")

    resolver = BeadResolver(catalog_beads)
    lines: list[LineItem] = []
    bead_counts: dict[int, int] = {}
    design_amount = ZERO

    for design in designs:
        if not design.beads:
            raise ValidationFailed(code=40003, message="作品珠子不能为空")
        single = ZERO
        for selection in design.beads:
            bead = resolver.resolve(selection)
            if bead is None:
                label = selection.name or selection.id or "未知"
                raise ValidationFailed(code=40006, message=f"作品中存在未知珠子: {label}")
            bead_counts[bead.id] = bead_counts.get(bead.id, 0) + 1
            single = round_money(single + bead.price)
        design_amount = round_money(design_amount + single)
        wrist = design.wrist_size or 15
        lines.append(
            DesignLine(
                name=design.name or "Custom Design",
                description=f"Wrist: {wrist:g}cm | {len(design.beads)} beads",
                price=single,
                image_preview=design.image_url or "",
            )
        )

    add_on_amount = ZERO
    add_on_by_id = {a.id: a for a in catalog_add_ons}
    for add_on_id, quantity in add_on_counts.items():
        add_on = add_on_by_id.get(add_on_id)
        if add_on is None:
            raise ValidationFailed(code=40007, message="加购商品不存在")
        if add_on.stock < quantity:
            raise StateConflict(code=42002, message=f"加购商品库存不足: {add_on.name}")
        unit = round_money(add_on.price)
        add_on_amount = round_money(add_on_amount + unit * quantity)
        lines.append(
            AddOnLine(
                add_on_id=add_on.id,
                name=add_on.name,
                price=unit,
                quantity=quantity,
                image_preview=add_on.image or "",
            )
        )

    product_amount = round_money(design_amount + add_on_amount)
    handwork_fee = round_money(params.handwork_fee * len(designs))
    amount_before_shipping = round_money(product_amount + handwork_fee)
    if amount_before_shipping >= params.free_shipping_threshold:
        shipping_fee = ZERO
    else:
        shipping_fee = round_money(params.base_shipping_fee)
    amount_before_discount = round_money(amount_before_shipping + shipping_fee)

    coupon_amount = ZERO
    if coupon is not None:
        coupon_amount = coupon_discount(coupon, amount_before_discount)

    rate = params.points_to_money_rate or Decimal("0.01")
    points_used = redeemable_points(
        requested=requested_points,
        available=available_points,
        amount_after_coupon=amount_before_discount - coupon_amount,
        rate=rate,
    )
    points_deduct_amount = round_money(points_used * rate)
    pay_amount = max(
        ZERO, round_money(amount_before_discount - coupon_amount - points_deduct_amount)
    )

    if expected_total is not None and abs(Decimal(expected_total) - pay_amount) > AMOUNT_TOLERANCE:
        raise ValidationFailed(code=43002, message="订单金额校验失败")

    return PricingBreakdown(
        lines=tuple(lines),
        bead_counts=bead_counts,
        add_on_counts=dict(add_on_counts),
        design_amount=design_amount,
        add_on_amount=add_on_amount,
        product_amount=product_amount,
        handwork_fee=handwork_fee,
        amount_before_shipping=amount_before_shipping,
        shipping_fee=shipping_fee,
        amount_before_discount=amount_before_discount,
        coupon_amount=coupon_amount,
        points_used=points_used,
        points_deduct_amount=points_deduct_amount,
        pay_amount=pay_amount,
    )
