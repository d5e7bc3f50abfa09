# qrtrack/config.py

from __future__ import annotations

import os

# Core secret for signing bearer tokens and share links — must be provided via env
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY or len(SECRET_KEY) < 32:
    raise RuntimeError("FATAL: SECRET_KEY NOT SET or too short (32+ chars required).")

# Postgres DSN; without one the service falls back to in-memory stores.
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))

REDIS_URL = os.getenv("REDIS_URL")
LOGIN_MAX_FAILURES = int(os.getenv("LOGIN_MAX_FAILURES", "5"))
LOGIN_LOCKOUT_SECONDS = int(os.getenv("LOGIN_LOCKOUT_SECONDS", "900"))

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

PUBLIC_ORIGIN = os.getenv("PUBLIC_ORIGIN", "http://localhost:8000").rstrip("/")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

ACCESS_TOKEN_MAX_AGE = int(os.getenv("ACCESS_TOKEN_MAX_AGE", str(60 * 60)))  # 1 hour
SHARE_LINK_MAX_AGE = int(os.getenv("SHARE_LINK_MAX_AGE", str(60 * 60 * 24)))  # 1 day

# bcrypt cost factor never drops below 10 rounds
BCRYPT_ROUNDS = max(int(os.getenv("BCRYPT_ROUNDS", "12")), 10)

QR_LIST_MAX = int(os.getenv("QR_LIST_MAX", "500"))
QR_PAGE_SIZE_DEFAULT = int(os.getenv("QR_PAGE_SIZE_DEFAULT", "50"))
QR_GENERATE_MAX = int(os.getenv("QR_GENERATE_MAX", "200"))

SCAN_LOG_WEBHOOK_URL = os.getenv("SCAN_LOG_WEBHOOK_URL", "")
SCAN_LOG_WEBHOOK_TIMEOUT = float(os.getenv("SCAN_LOG_WEBHOOK_TIMEOUT", "5"))

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

UUID_SEGMENT_MIN_LENGTH = int(os.getenv("UUID_SEGMENT_MIN_LENGTH", "30"))
