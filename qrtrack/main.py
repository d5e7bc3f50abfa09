# main.py

from __future__ import annotations

import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import List, Optional, Union
from urllib.parse import quote

import sentry_sdk
from fastapi import Body, Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from qrtrack import config
from qrtrack.auth import create_share_token, verify_share_token
from qrtrack.db import init_db, ping
from qrtrack.errors import NotFoundError, QRTrackError, Unauthorized, ValidationError
from qrtrack.identifiers import generate_id
from qrtrack.models import (
    DeleteAllResponse,
    GenerateRequest,
    HealthResponse,
    LoginRequest,
    MeResponse,
    QRCreateItem,
    QRListResponse,
    QRRecordOut,
    QRSingleCreate,
    RegisterRequest,
    ScanEventsResponse,
    ScanRequest,
    ScanResponse,
    ShareResponse,
    StatusUpdateRequest,
    TokenResponse,
)
from qrtrack.qr_scanner.qr_engine import process_qr_image
from qrtrack.qr_scanner.render import from_data_url, render, render_pdf, to_data_url
from qrtrack.ratelimit import LoginThrottle
from qrtrack.registry import MemoryQRStore, PostgresQRStore, QRRecord, QRStatus, parse_status, validate_id
from qrtrack.resolver import ScanResolver
from qrtrack.scan_log import MemoryScanLog, MirroredScanLog, PostgresScanLog, WebhookScanLog
from qrtrack.user_auth import bearer_token, verify_access_token
from qrtrack.users import (
    MemoryUserStore,
    PostgresUserStore,
    get_user_by_id,
    login as login_user,
    register as register_user,
)

logger = logging.getLogger("qrtrack")
logging.basicConfig(level=logging.INFO, format="%(message)s")

# Init Sentry if configured
if config.SENTRY_DSN:
    sentry_sdk.init(dsn=config.SENTRY_DSN, traces_sample_rate=0.2)


# ---------------------------------------------------------
# Storage wiring
# ---------------------------------------------------------
def configure_services(
    target: FastAPI,
    qr_store=None,
    user_store=None,
    scan_log=None,
    throttle: Optional[LoginThrottle] = None,
) -> None:
    """Attach stores to ``target.state``; Postgres when DATABASE_URL is set, memory otherwise."""
    persistent = bool(config.DATABASE_URL)
    if qr_store is None:
        qr_store = PostgresQRStore() if persistent else MemoryQRStore()
    if user_store is None:
        user_store = PostgresUserStore() if persistent else MemoryUserStore()
    if scan_log is None:
        mirrors = []
        if config.SCAN_LOG_WEBHOOK_URL:
            mirrors.append(
                WebhookScanLog(config.SCAN_LOG_WEBHOOK_URL, timeout=config.SCAN_LOG_WEBHOOK_TIMEOUT)
            )
        primary = PostgresScanLog() if persistent else MemoryScanLog()
        scan_log = MirroredScanLog(primary, mirrors)
    if throttle is None:
        throttle = LoginThrottle.from_url(config.REDIS_URL)

    target.state.qr_store = qr_store
    target.state.user_store = user_store
    target.state.scan_log = scan_log
    target.state.throttle = throttle
    target.state.resolver = ScanResolver(qr_store, scan_log)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if config.DATABASE_URL:
        init_db()
    else:
        logger.warning(
            json.dumps({"event": "storage", "backend": "memory", "warning": "DATABASE_URL not set; data is not persisted."})
        )
    yield


app = FastAPI(title="QRTrack API", lifespan=lifespan)
configure_services(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL, config.PUBLIC_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------
# Errors
# ---------------------------------------------------------
@app.exception_handler(QRTrackError)
async def qrtrack_exception_handler(request: Request, exc: QRTrackError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {
            "error": "Invalid request.",
            "code": ValidationError.code,
            "detail": json.loads(json.dumps(exc.errors(), default=str)),
        },
        status_code=400,
    )


# Return JSON for unexpected errors to avoid empty/HTML responses
@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(json.dumps({"event": "error", "path": str(request.url), "error": str(exc)}))
    return JSONResponse({"error": "Internal server error.", "code": "internal_error"}, status_code=500)


# Global headers middleware for security headers + request id
@app.middleware("http")
async def security_headers(request: Request, call_next):
    request_id = secrets.token_hex(8)
    request.state.request_id = request_id
    start_time = time.time()
    response = await call_next(request)
    duration = round((time.time() - start_time) * 1000, 2)
    log_payload = {
        "event": "request",
        "request_id": request_id,
        "path": request.url.path,
        "method": request.method,
        "status": response.status_code,
        "duration_ms": duration,
        "user_id": getattr(request.state, "user_id", None),
    }
    logger.info(json.dumps(log_payload))
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _get_client_ip(request: Request) -> str:
    xfwd = request.headers.get("x-forwarded-for")
    if xfwd:
        return xfwd.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_current_user(request: Request) -> dict:
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        raise Unauthorized("Authentication required.")

    payload = verify_access_token(token)
    if not payload:
        raise Unauthorized("Invalid or expired token.")

    user = get_user_by_id(request.app.state.user_store, payload["sub"])
    if not user:
        raise Unauthorized("Unknown user.")

    request.state.user_id = user["id"]
    return user


def _record_from_item(item: QRCreateItem) -> QRRecord:
    validate_id(item.id)
    status = QRStatus.INACTIVE if item.status is None else parse_status(item.status)
    image = item.image_data or to_data_url(render(item.id, label=item.id))
    return QRRecord(id=item.id, image_data=image, status=status, target_url=item.target_url)


def _record_png(record: QRRecord) -> bytes:
    try:
        return from_data_url(record.image_data)
    except ValueError:
        # stored image is unusable; regenerate from the id
        return render(record.id, label=record.id)


def _log_created(records: List[QRRecord], user: dict) -> None:
    logger.info(
        json.dumps({"event": "qr_created", "count": len(records), "user_id": user["id"]})
    )


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health", response_model=HealthResponse)
def health(request: Request):
    storage = request.app.state.qr_store.backend
    status = "ok"
    if storage == "postgres" and not ping():
        status = "degraded"
    return {"status": status, "storage": storage}


@app.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(body: RegisterRequest, request: Request):
    token = register_user(request.app.state.user_store, body.email, body.password)
    return {"token": token}


@app.post("/auth/login", response_model=TokenResponse)
def login(body: LoginRequest, request: Request):
    throttle: LoginThrottle = request.app.state.throttle
    ip = _get_client_ip(request)
    throttle.check(body.email, ip)
    try:
        token = login_user(request.app.state.user_store, body.email, body.password)
    except QRTrackError as exc:
        if exc.status_code == 401:
            failures = throttle.record_failure(body.email, ip)
            logger.info(json.dumps({"event": "login_failed", "ip": ip, "failures": failures}))
        raise
    throttle.clear(body.email, ip)
    return {"token": token}


@app.get("/me", response_model=MeResponse)
def me(user: dict = Depends(get_current_user)):
    return {"id": user["id"], "email": user["email"]}


@app.post("/qrcodes", response_model=List[QRRecordOut], status_code=201)
def create_qrcodes(
    request: Request,
    body: Union[List[QRCreateItem], QRSingleCreate] = Body(...),
    user: dict = Depends(get_current_user),
):
    if isinstance(body, QRSingleCreate):
        items = [QRCreateItem(id=body.data)]
    else:
        items = body
    if not items:
        raise ValidationError("At least one QR code is required.")
    if len(items) > config.QR_GENERATE_MAX:
        raise ValidationError(f"At most {config.QR_GENERATE_MAX} QR codes per request.")
    created = request.app.state.qr_store.create([_record_from_item(item) for item in items])
    _log_created(created, user)
    return [rec.to_dict() for rec in created]


@app.post("/qrcodes/generate", response_model=QRListResponse, status_code=201)
def generate_qrcodes(body: GenerateRequest, request: Request, user: dict = Depends(get_current_user)):
    if body.count > config.QR_GENERATE_MAX:
        raise ValidationError(f"At most {config.QR_GENERATE_MAX} QR codes per request.")
    origin = config.PUBLIC_ORIGIN if body.encode_url else None
    records = []
    for _ in range(body.count):
        qr_id = generate_id()
        png = render(qr_id, label=body.label or qr_id, origin=origin)
        records.append(QRRecord(id=qr_id, image_data=to_data_url(png), target_url=body.target_url))
    created = request.app.state.qr_store.create(records)
    _log_created(created, user)
    return {"qrs": [rec.to_dict() for rec in created], "hasMore": False}


@app.get("/qrcodes", response_model=QRListResponse)
def list_qrcodes(
    request: Request,
    page: Optional[int] = None,
    page_size: Optional[int] = Query(None, alias="pageSize"),
    user: dict = Depends(get_current_user),
):
    records, has_more = request.app.state.qr_store.list(page=page, page_size=page_size)
    return {"qrs": [rec.to_dict() for rec in records], "hasMore": has_more}


@app.get("/qrcodes/print")
def print_qrcodes(
    request: Request,
    page: Optional[int] = None,
    page_size: Optional[int] = Query(None, alias="pageSize"),
    user: dict = Depends(get_current_user),
):
    records, _ = request.app.state.qr_store.list(page=page, page_size=page_size)
    if not records:
        raise NotFoundError("No QR codes to print.")
    pdf = render_pdf(_record_png(rec) for rec in records)
    return Response(
        pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": 'inline; filename="qr-codes.pdf"'},
    )


@app.get("/qrcodes/{qr_id:path}/image")
def get_qrcode_image(
    qr_id: str,
    request: Request,
    label: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    record = request.app.state.qr_store.get(qr_id)
    png = render(record.id, label=label) if label is not None else _record_png(record)
    return Response(
        png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="qr-code-{quote(record.id, safe="")}.png"'},
    )


@app.post("/qrcodes/{qr_id:path}/share", response_model=ShareResponse)
def share_qrcode(qr_id: str, request: Request, user: dict = Depends(get_current_user)):
    record = request.app.state.qr_store.get(qr_id)
    token = create_share_token(record.id)
    return {
        "shareUrl": f"{config.PUBLIC_ORIGIN}/shared/{token}",
        "expiresIn": config.SHARE_LINK_MAX_AGE,
    }


@app.get("/shared/{token}")
def shared_qrcode(token: str, request: Request):
    qr_id = verify_share_token(token)
    if not qr_id:
        raise NotFoundError("Share link is invalid or has expired.")
    record = request.app.state.qr_store.get(qr_id)
    return Response(_record_png(record), media_type="image/png")


@app.patch("/qrcodes/{qr_id:path}/status", response_model=QRRecordOut)
def update_qrcode_status(
    qr_id: str,
    body: StatusUpdateRequest,
    request: Request,
    user: dict = Depends(get_current_user),
):
    record = request.app.state.qr_store.update_status(qr_id, parse_status(body.status))
    logger.info(
        json.dumps(
            {
                "event": "qr_status_updated",
                "qr_id": record.id,
                "status": record.status.value,
                "user_id": user["id"],
            }
        )
    )
    return record.to_dict()


# must stay below the sub-resource routes; {qr_id:path} matches them too
@app.get("/qrcodes/{qr_id:path}", response_model=QRRecordOut)
def get_qrcode(qr_id: str, request: Request, user: dict = Depends(get_current_user)):
    return request.app.state.qr_store.get(qr_id).to_dict()


@app.delete("/qrcodes", response_model=DeleteAllResponse)
def delete_qrcodes(request: Request, user: dict = Depends(get_current_user)):
    count = request.app.state.qr_store.delete_all()
    logger.warning(json.dumps({"event": "qr_deleted_all", "count": count, "user_id": user["id"]}))
    return {"deletedCount": count}


@app.post("/scan", response_model=ScanResponse)
def scan(body: ScanRequest, request: Request, user: dict = Depends(get_current_user)):
    result = request.app.state.resolver.resolve(body.scanned_url, body.action, user_id=user["id"])
    return result.to_dict()


@app.post("/scan/image", response_model=ScanResponse)
def scan_image(
    request: Request,
    file: UploadFile = File(...),
    action: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    data = file.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationError(f"Image exceeds {config.MAX_UPLOAD_BYTES} bytes.")
    decoded = process_qr_image(data)
    if not decoded["qr_found"]:
        raise ValidationError("No QR code found in image.")
    result = request.app.state.resolver.resolve(decoded["items"][0]["data"], action, user_id=user["id"])
    return result.to_dict()


@app.get("/scans", response_model=ScanEventsResponse)
def scan_events(
    request: Request,
    limit: int = 100,
    qr_id: Optional[str] = Query(None, alias="qrId"),
    user: dict = Depends(get_current_user),
):
    events = request.app.state.scan_log.recent(limit=limit, qr_id=qr_id)
    return {"events": [event.to_dict() for event in events]}
