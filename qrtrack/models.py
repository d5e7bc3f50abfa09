from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------
# Auth
# ---------------------------------------------------------
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str


class MeResponse(BaseModel):
    id: str
    email: str


# ---------------------------------------------------------
# QR codes
# ---------------------------------------------------------
class QRCreateItem(_Wire):
    id: str = Field(..., min_length=1)
    image_data: Optional[str] = Field(None, alias="imageData")
    status: Optional[str] = None
    target_url: Optional[str] = Field(None, alias="targetUrl")


class QRSingleCreate(BaseModel):
    data: str = Field(..., min_length=1)


class GenerateRequest(_Wire):
    count: int = Field(1, ge=1)
    label: Optional[str] = Field(None, max_length=120)
    encode_url: bool = Field(False, alias="encodeUrl")
    target_url: Optional[str] = Field(None, alias="targetUrl")


class QRRecordOut(_Wire):
    id: str
    image_data: str = Field(..., alias="imageData")
    status: str
    created_at: datetime = Field(..., alias="createdAt")
    target_url: Optional[str] = Field(None, alias="targetUrl")


class QRListResponse(_Wire):
    qrs: List[QRRecordOut]
    has_more: bool = Field(False, alias="hasMore")


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., min_length=1)


class DeleteAllResponse(_Wire):
    deleted_count: int = Field(..., alias="deletedCount")


class ShareResponse(_Wire):
    share_url: str = Field(..., alias="shareUrl")
    expires_in: int = Field(..., alias="expiresIn")


# ---------------------------------------------------------
# Scanning
# ---------------------------------------------------------
class ScanRequest(_Wire):
    scanned_url: str = Field(..., alias="scannedUrl", min_length=1)
    action: Optional[str] = None


class ScanResponse(_Wire):
    id: str
    status: str
    destination_url: Optional[str] = Field(None, alias="destinationUrl")
    record: QRRecordOut


class ScanEventOut(_Wire):
    qr_id: str = Field(..., alias="qrId")
    action: str
    status: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    timestamp: datetime


class ScanEventsResponse(BaseModel):
    events: List[ScanEventOut]


class HealthResponse(BaseModel):
    status: str
    storage: str
