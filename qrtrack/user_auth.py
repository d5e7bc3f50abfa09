# qrtrack/user_auth.py

from __future__ import annotations

import datetime as _dt
from typing import Optional, Dict, Any

import jwt

from qrtrack.config import ACCESS_TOKEN_MAX_AGE, SECRET_KEY

_ALGORITHM = "HS256"


def _expiry(seconds: int) -> _dt.datetime:
    return _dt.datetime.now(tz=_dt.timezone.utc) + _dt.timedelta(seconds=seconds)


def create_access_token(user: Dict[str, Any], max_age: int = ACCESS_TOKEN_MAX_AGE) -> str:
    payload = {
        "sub": str(user["id"]),
        "type": "access",
        "exp": _expiry(max_age),
        "iat": _dt.datetime.now(tz=_dt.timezone.utc),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=_ALGORITHM)


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        data = jwt.decode(token, SECRET_KEY, algorithms=[_ALGORITHM])
        if data.get("type") != "access" or not data.get("sub"):
            return None
        return data
    except jwt.PyJWTError:
        return None


def bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None
