# qrtrack/scan_log.py

"""
Append-only scan event log.

Events are written to a primary sink (Postgres or memory) and optionally
mirrored to an external append endpoint such as a spreadsheet web app.
Events are never mutated or deleted, and outlive the QR records they
refer to.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
import requests

from qrtrack.db import get_cursor
from qrtrack.errors import UpstreamError

logger = logging.getLogger("qrtrack")

MAX_EVENTS_LIMIT = 1000


@dataclass(frozen=True)
class ScanEvent:
    qr_id: str
    action: str
    status: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qrId": self.qr_id,
            "action": self.action,
            "status": self.status,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }


def _clamp(limit: int) -> int:
    return max(1, min(int(limit), MAX_EVENTS_LIMIT))


class MemoryScanLog:
    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[ScanEvent] = []

    def append(self, event: ScanEvent) -> ScanEvent:
        with self._lock:
            self._events.append(event)
        return event

    def recent(self, limit: int = 100, qr_id: Optional[str] = None) -> List[ScanEvent]:
        with self._lock:
            events = [e for e in self._events if qr_id is None or e.qr_id == qr_id]
        return list(reversed(events))[: _clamp(limit)]


class PostgresScanLog:
    backend = "postgres"

    def append(self, event: ScanEvent) -> ScanEvent:
        try:
            with get_cursor() as (_, cur):
                cur.execute(
                    """
                    INSERT INTO scan_events (qr_id, action, status, user_id, timestamp)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (event.qr_id, event.action, event.status, event.user_id, event.timestamp),
                )
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not record scan event: {exc}") from exc
        return event

    def recent(self, limit: int = 100, qr_id: Optional[str] = None) -> List[ScanEvent]:
        query = "SELECT * FROM scan_events"
        params: tuple = ()
        if qr_id is not None:
            query += " WHERE qr_id = %s"
            params = (qr_id,)
        query += " ORDER BY timestamp DESC, id DESC LIMIT %s"
        try:
            with get_cursor() as (_, cur):
                cur.execute(query, params + (_clamp(limit),))
                rows = cur.fetchall()
        except psycopg2.Error as exc:
            raise UpstreamError(f"Could not fetch scan events: {exc}") from exc
        return [
            ScanEvent(
                qr_id=row["qr_id"],
                action=row["action"],
                status=row.get("status"),
                user_id=str(row["user_id"]) if row.get("user_id") else None,
                timestamp=row["timestamp"],
            )
            for row in rows
        ]


class WebhookScanLog:
    """Append-only mirror: POSTs each event as JSON to an external endpoint."""

    backend = "webhook"

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def append(self, event: ScanEvent) -> ScanEvent:
        try:
            resp = self.session.post(self.url, json=event.to_dict(), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamError(f"Scan log endpoint failed: {exc}") from exc
        return event


class MirroredScanLog:
    """
    Write to every mirror and then to ``primary``. Reads come from the
    primary. A failing mirror surfaces as ``UpstreamError`` before the
    primary has stored anything.
    """

    def __init__(self, primary, mirrors: Sequence[Any] = ()):
        self.primary = primary
        self.mirrors = list(mirrors)

    @property
    def backend(self) -> str:
        return "+".join([self.primary.backend] + [m.backend for m in self.mirrors])

    def append(self, event: ScanEvent) -> ScanEvent:
        for mirror in self.mirrors:
            mirror.append(event)
        self.primary.append(event)
        logger.info(json.dumps({"event": "scan_logged", **event.to_dict()}))
        return event

    def recent(self, limit: int = 100, qr_id: Optional[str] = None) -> List[ScanEvent]:
        return self.primary.recent(limit=limit, qr_id=qr_id)
