from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from oratopia.api.deps import get_db
from oratopia.core.security import create_access_token
from oratopia.enums import CouponDiscountType, UserRole
from oratopia.main import app
from oratopia.models import (
    AddOnProduct,
    Address,
    Bead,
    CommissionLog,
    CouponTemplate,
    InventoryReservation,
    LogisticsEvent,
    Notification,
    Order,
    PointLog,
    RiskEvent,
    User,
    UserCoupon,
    utc_now,
)
from oratopia.services.config_service import AppConfig, set_config


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(autouse=True)
def default_config() -> Generator[None, None, None]:
    set_config(AppConfig())
    yield
    set_config(AppConfig())


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(Notification))
        session.exec(delete(RiskEvent))
        session.exec(delete(LogisticsEvent))
        session.exec(delete(InventoryReservation))
        session.exec(delete(CommissionLog))
        session.exec(delete(PointLog))
        session.exec(delete(UserCoupon))
        session.exec(delete(CouponTemplate))
        session.exec(delete(Order))
        session.exec(delete(Address))
        session.exec(delete(User))
        session.exec(delete(Bead))
        session.exec(delete(AddOnProduct))
        session.commit()


@pytest.fixture(scope="function")
def client(engine, db) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, expires_delta=timedelta(hours=1))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    def _make(
        *,
        points: int = 0,
        role: UserRole = UserRole.user,
        referrer_id: int | None = None,
    ) -> User:
        user = User(nickname="tester", role=role, points=points, referrer_id=referrer_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_address(db) -> Callable[[User], Address]:
    def _make(user: User) -> Address:
        address = Address(
            user_id=user.id,
            name="Lin",
            phone="13800000000",
            region="Shanghai",
            detail="No. 1 Century Ave",
        )
        db.add(address)
        db.commit()
        db.refresh(address)
        return address

    return _make


@pytest.fixture
def beads(db) -> dict[str, Bead]:
    """演示目录：黑曜石 8mm 2 元、粉晶 8mm 5.5 元、闪黑 12mm 20 元"""
    rows = {
        "obsidian": Bead(name="Obsidian", diameter=8, price=Decimal("2.00"), stock=100),
        "obsidian10": Bead(name="Obsidian", diameter=10, price=Decimal("6.00"), stock=100),
        "rose": Bead(name="Rose Quartz", diameter=8, price=Decimal("5.50"), stock=100),
        "flash": Bead(name="Flash Black", diameter=12, price=Decimal("20.00"), stock=3),
    }
    for bead in rows.values():
        db.add(bead)
    db.commit()
    for bead in rows.values():
        db.refresh(bead)
    return rows


@pytest.fixture
def gift_box(db) -> AddOnProduct:
    add_on = AddOnProduct(name="Gift Box", price=Decimal("9.90"), stock=5)
    db.add(add_on)
    db.commit()
    db.refresh(add_on)
    return add_on


@pytest.fixture
def make_coupon(db) -> Callable[..., UserCoupon]:
    def _make(
        user: User,
        *,
        discount_type: CouponDiscountType = CouponDiscountType.fixed,
        discount_value: str = "10",
        min_amount: str = "0",
    ) -> UserCoupon:
        now = utc_now()
        template = CouponTemplate(
            name="新人券",
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            min_amount=Decimal(min_amount),
            start_at=now - timedelta(days=1),
            end_at=now + timedelta(days=30),
        )
        db.add(template)
        db.flush()
        coupon = UserCoupon(user_id=user.id, template_id=template.id)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make
