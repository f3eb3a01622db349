"""用户 / 地址 CRUD 操作"""
from sqlmodel import Session, select

from oratopia.api.errors import NotFound, ValidationFailed
from oratopia.models import Address, User


def get_user(*, session: Session, user_id: int) -> User:
    """查询用户，不存在时抛出 40002"""
    user = session.get(User, user_id)
    if not user:
        raise NotFound(code=40002, message="用户不存在")
    return user


def get_address_for_user(*, session: Session, user_id: int, address_id: int | None) -> Address:
    """查询用户本人的收货地址"""
    if not address_id:
        raise ValidationFailed(code=40005, message="请选择收货地址")
    statement = select(Address).where(Address.id == address_id, Address.user_id == user_id)
    address = session.exec(statement).first()
    if not address:
        raise NotFound(code=40004, message="收货地址不存在")
    return address
