# qrtrack/registry.py

"""
QR record persistence.

Two interchangeable stores implement the same operations:

- ``PostgresQRStore``: the ``qr_codes`` table via ``qrtrack.db``.
- ``MemoryQRStore``: process-local, used when no database is configured.

Both enforce the id invariants: an id is unique, and an id removed by
``delete_all`` is retired and never accepted again.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg2
import psycopg2.errors
import psycopg2.extras

from qrtrack import config
from qrtrack.db import get_cursor
from qrtrack.errors import ConflictError, NotFoundError, UpstreamError, ValidationError

MAX_ID_LENGTH = 512


class QRStatus(str, enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    SCANNED = "scanned"


ACTION_TO_STATUS = {
    "activate": QRStatus.ACTIVE,
    "deactivate": QRStatus.DEACTIVATED,
    "scan": QRStatus.SCANNED,
    "scanned": QRStatus.SCANNED,
}


def parse_status(value: Optional[str]) -> QRStatus:
    """Accept a status name or an action word ("activate", "deactivate", "scan")."""
    if value is None or not str(value).strip():
        return QRStatus.SCANNED
    key = str(value).strip().lower()
    if key in ACTION_TO_STATUS:
        return ACTION_TO_STATUS[key]
    try:
        return QRStatus(key)
    except ValueError:
        raise ValidationError(f"Unknown status or action '{value}'.") from None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QRRecord:
    id: str
    image_data: str
    status: QRStatus = QRStatus.INACTIVE
    created_at: datetime = field(default_factory=_now)
    target_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "imageData": self.image_data,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "targetUrl": self.target_url,
        }


def validate_id(qr_id: Any) -> str:
    if not isinstance(qr_id, str) or not qr_id.strip():
        raise ValidationError("QR code id must be a non-empty string.")
    if len(qr_id) > MAX_ID_LENGTH:
        raise ValidationError(f"QR code id exceeds {MAX_ID_LENGTH} characters.")
    return qr_id


def validate_batch(records: Iterable[QRRecord]) -> List[QRRecord]:
    batch = list(records or [])
    if not batch:
        raise ValidationError("At least one QR code is required.")
    seen = set()
    for rec in batch:
        if not isinstance(rec, QRRecord):
            raise ValidationError("Malformed QR code record.")
        validate_id(rec.id)
        if not rec.image_data:
            raise ValidationError(f"QR code '{rec.id}' has no image data.")
        if rec.id in seen:
            raise ConflictError(f"Duplicate QR code id '{rec.id}' in batch.")
        seen.add(rec.id)
    return batch


def page_window(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    """Translate page/pageSize into (offset, limit); no paging means the capped full set."""
    if page is None and page_size is None:
        return 0, config.QR_LIST_MAX
    page = 1 if page is None else page
    page_size = config.QR_PAGE_SIZE_DEFAULT if page_size is None else page_size
    if page < 1 or page_size < 1:
        raise ValidationError("page and pageSize must be positive integers.")
    page_size = min(page_size, config.QR_LIST_MAX)
    return (page - 1) * page_size, page_size


# ---------------------------------------------------------
# In-memory store
# ---------------------------------------------------------
class MemoryQRStore:
    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, QRRecord] = {}
        self._retired: set = set()

    def create(self, records: Iterable[QRRecord]) -> List[QRRecord]:
        batch = validate_batch(records)
        with self._lock:
            for rec in batch:
                if rec.id in self._records or rec.id in self._retired:
                    raise ConflictError(f"QR code id '{rec.id}' already exists.")
            for rec in batch:
                self._records[rec.id] = replace(rec)
            return [replace(rec) for rec in batch]

    def get(self, qr_id: str) -> QRRecord:
        with self._lock:
            rec = self._records.get(qr_id)
        if rec is None:
            raise NotFoundError(f"QR code '{qr_id}' not found.")
        return replace(rec)

    def list(self, page: Optional[int] = None, page_size: Optional[int] = None) -> Tuple[List[QRRecord], bool]:
        offset, limit = page_window(page, page_size)
        with self._lock:
            ordered = list(self._records.values())
        window = ordered[offset:offset + limit]
        has_more = len(ordered) > offset + limit
        return [replace(rec) for rec in window], has_more

    def update_status(self, qr_id: str, status: QRStatus) -> QRRecord:
        with self._lock:
            rec = self._records.get(qr_id)
            if rec is None:
                raise NotFoundError(f"QR code '{qr_id}' not found.")
            rec.status = status
            return replace(rec)

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._retired.update(self._records)
            self._records.clear()
        return count

    def count(self) -> int:
        with self._lock:
            return len(self._records)


# ---------------------------------------------------------
# Postgres store
# ---------------------------------------------------------
def _row_to_record(row: Dict[str, Any]) -> QRRecord:
    created = row.get("created_at")
    if isinstance(created, datetime) and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return QRRecord(
        id=row["id"],
        image_data=row["image_data"],
        status=QRStatus(row["status"]),
        created_at=created or _now(),
        target_url=row.get("target_url"),
    )


class PostgresQRStore:
    backend = "postgres"

    def create(self, records: Iterable[QRRecord]) -> List[QRRecord]:
        batch = validate_batch(records)
        ids = [rec.id for rec in batch]
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    """
                    SELECT id FROM qr_codes WHERE id = ANY(%s)
                    UNION
                    SELECT id FROM retired_qr_ids WHERE id = ANY(%s)
                    LIMIT 1
                    """,
                    (ids, ids),
                )
                clash = cur.fetchone()
                if clash:
                    raise ConflictError(f"QR code id '{clash['id']}' already exists.")
                rows = psycopg2.extras.execute_values(
                    cur,
                    """
                    INSERT INTO qr_codes (id, image_data, status, target_url, created_at)
                    VALUES %s
                    RETURNING *
                    """,
                    [
                        (rec.id, rec.image_data, rec.status.value, rec.target_url, rec.created_at)
                        for rec in batch
                    ],
                    fetch=True,
                )
        except psycopg2.errors.UniqueViolation as exc:
            raise ConflictError("QR code id already exists.") from exc
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not save QR codes: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def get(self, qr_id: str) -> QRRecord:
        try:
            with get_cursor() as (_, cur):
                cur.execute("SELECT * FROM qr_codes WHERE id = %s LIMIT 1", (qr_id,))
                row = cur.fetchone()
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not load QR code: {exc}") from exc
        if not row:
            raise NotFoundError(f"QR code '{qr_id}' not found.")
        return _row_to_record(row)

    def list(self, page: Optional[int] = None, page_size: Optional[int] = None) -> Tuple[List[QRRecord], bool]:
        offset, limit = page_window(page, page_size)
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    "SELECT * FROM qr_codes ORDER BY seq ASC OFFSET %s LIMIT %s",
                    (offset, limit + 1),
                )
                rows = cur.fetchall()
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not fetch QR codes: {exc}") from exc
        return [_row_to_record(row) for row in rows[:limit]], len(rows) > limit

    def update_status(self, qr_id: str, status: QRStatus) -> QRRecord:
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    "UPDATE qr_codes SET status = %s WHERE id = %s RETURNING *",
                    (status.value, qr_id),
                )
                row = cur.fetchone()
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not update QR code: {exc}") from exc
        if not row:
            raise NotFoundError(f"QR code '{qr_id}' not found.")
        return _row_to_record(row)

    def delete_all(self) -> int:
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    """
                    INSERT INTO retired_qr_ids (id)
                    SELECT id FROM qr_codes
                    ON CONFLICT (id) DO NOTHING
                    """
                )
                cur.execute("DELETE FROM qr_codes")
                return cur.rowcount
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not delete QR codes: {exc}") from exc

    def count(self) -> int:
        try:
            with get_cursor() as (_, cur):
                cur.execute("SELECT COUNT(*) AS n FROM qr_codes")
                return int(cur.fetchone()["n"])
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not count QR codes: {exc}") from exc
