# qrtrack/errors.py

"""
Error taxonomy shared by the API, the stores and the client.

Every error carries the HTTP status it maps to and a stable ``code``
string that appears in the JSON error envelope::

    {"error": "<message>", "code": "<code>"}
"""

from __future__ import annotations

from typing import Dict, Type


class QRTrackError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message, "code": self.code}


class ValidationError(QRTrackError):
    status_code = 400
    code = "validation_error"


class ConflictError(QRTrackError):
    status_code = 409
    code = "conflict"


class NotFoundError(QRTrackError):
    status_code = 404
    code = "not_found"


class InvalidCredentialsError(QRTrackError):
    status_code = 401
    code = "invalid_credentials"


class Unauthorized(QRTrackError):
    status_code = 401
    code = "unauthorized"


class EncodingError(QRTrackError):
    status_code = 400
    code = "encoding_error"


class UpstreamError(QRTrackError):
    status_code = 502
    code = "upstream_error"


class RateLimited(QRTrackError):
    status_code = 429
    code = "rate_limited"


ERRORS_BY_CODE: Dict[str, Type[QRTrackError]] = {
    cls.code: cls
    for cls in (
        QRTrackError,
        ValidationError,
        ConflictError,
        NotFoundError,
        InvalidCredentialsError,
        Unauthorized,
        EncodingError,
        UpstreamError,
        RateLimited,
    )
}


def error_from_payload(status_code: int, payload: Dict[str, str]) -> QRTrackError:
    """Rebuild a typed error from a JSON error envelope."""
    cls = ERRORS_BY_CODE.get(payload.get("code", ""), None)
    if cls is None:
        cls = Unauthorized if status_code == 401 else QRTrackError
    return cls(payload.get("error") or f"Request failed with status {status_code}.")
