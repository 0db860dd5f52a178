import uuid
from datetime import datetime, timedelta, timezone

import jwt

from contest.core import config


def _encode(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    claims = {**payload, "iat": now, "exp": now + expires_delta}
    return jwt.encode(claims, secret, algorithm=config.JWT_ALGORITHM)


def create_access_token(user_id: int, email: str, role: str, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_ACCESS_EXPIRES_MINUTES
    payload = {"sub": str(user_id), "email": email, "role": role}
    return _encode(payload, config.JWT_SECRET_KEY, timedelta(minutes=expire_minutes))


def create_refresh_token(user_id: int, email: str, role: str) -> str:
    # jti keeps two refresh tokens issued in the same second distinct
    payload = {"sub": str(user_id), "email": email, "role": role, "jti": uuid.uuid4().hex}
    return _encode(payload, config.JWT_REFRESH_SECRET_KEY, timedelta(days=config.JWT_REFRESH_EXPIRES_DAYS))


def create_token_pair(user_id: int, email: str, role: str) -> dict:
    return {
        "access_token": create_access_token(user_id, email, role),
        "refresh_token": create_refresh_token(user_id, email, role),
        "token_type": "bearer",
    }


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def decode_refresh_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_REFRESH_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
