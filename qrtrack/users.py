# qrtrack/users.py

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import bcrypt
import psycopg2
import psycopg2.errors

from qrtrack import config
from qrtrack.db import get_cursor
from qrtrack.errors import ConflictError, InvalidCredentialsError, UpstreamError, ValidationError
from qrtrack.user_auth import create_access_token

logger = logging.getLogger("qrtrack")


def _to_epoch(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return None


def _strip_sensitive(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "email": row["email"].lower(),
        "created_at": _to_epoch(row.get("created_at")),
        "last_login": _to_epoch(row.get("last_login")),
    }


def hash_password(password: str) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    ).decode("utf-8")


def check_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------
# Stores
# ---------------------------------------------------------
class MemoryUserStore:
    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Dict[str, Any]] = {}

    def insert(self, email: str, password_hash: str) -> Dict[str, Any]:
        email_lower = email.lower()
        with self._lock:
            if any(row["email"] == email_lower for row in self._by_id.values()):
                raise ConflictError("Email already registered.")
            now = datetime.now(timezone.utc)
            row = {
                "id": str(uuid.uuid4()),
                "email": email_lower,
                "password_hash": password_hash,
                "created_at": now,
                "last_login": None,
            }
            self._by_id[row["id"]] = row
            return dict(row)

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email_lower = email.lower()
        with self._lock:
            for row in self._by_id.values():
                if row["email"] == email_lower:
                    return dict(row)
        return None

    def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._by_id.get(str(user_id))
        return dict(row) if row else None

    def touch_login(self, user_id: str) -> None:
        with self._lock:
            row = self._by_id.get(str(user_id))
            if row:
                row["last_login"] = datetime.now(timezone.utc)


class PostgresUserStore:
    backend = "postgres"

    def insert(self, email: str, password_hash: str) -> Dict[str, Any]:
        email_lower = email.lower()
        now = datetime.now(timezone.utc)
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    "SELECT 1 FROM users WHERE lower(email) = lower(%s) LIMIT 1",
                    (email_lower,),
                )
                if cur.fetchone():
                    raise ConflictError("Email already registered.")
                cur.execute(
                    """
                    INSERT INTO users (id, email, password_hash, created_at)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *;
                    """,
                    (str(uuid.uuid4()), email_lower, password_hash, now),
                )
                return cur.fetchone()
        except psycopg2.errors.UniqueViolation as exc:
            raise ConflictError("Email already registered.") from exc
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not create user: {exc}") from exc

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    "SELECT * FROM users WHERE lower(email) = lower(%s) LIMIT 1",
                    (email,),
                )
                return cur.fetchone()
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not load user: {exc}") from exc

    def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            with get_cursor() as (_, cur):
                cur.execute("SELECT * FROM users WHERE id = %s LIMIT 1", (str(user_id),))
                return cur.fetchone()
        except psycopg2.errors.InvalidTextRepresentation:
            return None
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not load user: {exc}") from exc

    def touch_login(self, user_id: str) -> None:
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    "UPDATE users SET last_login = %s WHERE id = %s",
                    (datetime.now(timezone.utc), str(user_id)),
                )
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not update user: {exc}") from exc


# ---------------------------------------------------------
# Gateway
# ---------------------------------------------------------
def _check_input(email: str, password: str) -> None:
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required.")
    if not password:
        raise ValidationError("Password is required.")


def create_user(store, email: str, password: str) -> Dict[str, Any]:
    _check_input(email, password)
    row = store.insert(email, hash_password(password))
    user = _strip_sensitive(row)
    logger.info(json.dumps({"event": "user_registered", "user_id": user["id"]}))
    return user


def verify_user_credentials(store, email: str, password: str) -> Optional[Dict[str, Any]]:
    row = store.find_by_email(email or "")
    if not row or not row.get("password_hash"):
        return None
    if not check_password(password or "", row["password_hash"]):
        return None
    store.touch_login(row["id"])
    return _strip_sensitive(row)


def get_user_by_id(store, user_id: str) -> Optional[Dict[str, Any]]:
    row = store.get_by_id(user_id)
    return _strip_sensitive(row) if row else None


def register(store, email: str, password: str) -> str:
    """Create the user and return a fresh bearer token for it."""
    return create_access_token(create_user(store, email, password))


def login(store, email: str, password: str) -> str:
    user = verify_user_credentials(store, email, password)
    if not user:
        raise InvalidCredentialsError("Invalid email or password.")
    return create_access_token(user)
