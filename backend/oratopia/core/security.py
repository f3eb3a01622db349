"""
JWT 工具

token 的签发属于认证服务，本服务只负责校验（见 api/deps.py）。
create_access_token 保留给内部工具和测试使用。
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from oratopia.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
