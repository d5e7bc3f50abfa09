# qrtrack/auth.py

from __future__ import annotations

from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from qrtrack.config import SECRET_KEY, SHARE_LINK_MAX_AGE

_share_serializer = URLSafeTimedSerializer(SECRET_KEY, salt="qrtrack-share-v1")


def create_share_token(qr_id: str) -> str:
    return _share_serializer.dumps({"qr": qr_id})


def verify_share_token(token: str, max_age: int = SHARE_LINK_MAX_AGE) -> Optional[str]:
    """Return the QR id a share link points at, or None if forged/expired."""
    try:
        data = _share_serializer.loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict):
        return None
    return data.get("qr")
