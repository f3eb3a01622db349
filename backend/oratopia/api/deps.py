"""
FastAPI 依赖注入模块

- SessionDep: 每个请求一个数据库会话，请求结束自动关闭
- CurrentUser: 从 Authorization: Bearer <token> 解析出的当前用户
- CurrentAdmin: 当前用户且角色为 admin

token 由认证服务签发，这里只负责校验签名和有效期。
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

import jwt  # JWT 解析库
from fastapi import Depends, HTTPException, status  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from oratopia.api.schemas import TokenPayload
from oratopia.core import security
from oratopia.core.config import settings
from oratopia.core.db import engine
from oratopia.enums import UserRole
from oratopia.models import User

reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """获取数据库会话（请求结束后自动关闭）"""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]  # 数据库会话依赖
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]  # Bearer token 依赖


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户

    token 载荷中的 sub 是用户 ID。
    token 无效、sub 缺失或不是数字、用户不存在时返回 401。
    """
    try:
        payload = jwt.decode(
            token.credentials, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _unauthorized()
    if not token_data.sub:
        raise _unauthorized()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise _unauthorized()

    user = session.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_admin(current_user: CurrentUser) -> User:
    """获取当前管理员，非管理员返回 403"""
    if current_user.role != UserRole.admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": 50002, "message": "无权限操作"},
        )
    return current_user


CurrentAdmin = Annotated[User, Depends(get_current_admin)]
