# qrtrack/resolver.py

"""
Server-side scan resolution.

Decoded text -> canonical id -> status update -> scan event.

Canonicalization policy:

- Surrounding whitespace is stripped; an empty payload is rejected.
- If the payload is an absolute URL, its last non-empty path segment is
  the id when that segment is longer than ``UUID_SEGMENT_MIN_LENGTH``
  characters (UUID-shaped).
- Anything else is used verbatim as the id.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from qrtrack import config
from qrtrack.errors import QRTrackError, ValidationError
from qrtrack.registry import MAX_ID_LENGTH, QRRecord, parse_status, validate_id
from qrtrack.scan_log import ScanEvent

logger = logging.getLogger("qrtrack")

MAX_PAYLOAD_LENGTH = 2048


def canonicalize(decoded: str, min_segment_length: Optional[int] = None) -> str:
    if min_segment_length is None:
        min_segment_length = config.UUID_SEGMENT_MIN_LENGTH
    text = (decoded or "").strip()
    if not text:
        raise ValidationError("Scanned payload is empty.")
    if len(text) > MAX_PAYLOAD_LENGTH:
        raise ValidationError(f"Scanned payload exceeds {MAX_PAYLOAD_LENGTH} characters.")

    parsed = urlparse(text)
    if parsed.scheme and parsed.netloc:
        segments = [seg for seg in parsed.path.split("/") if seg]
        if segments:
            candidate = unquote(segments[-1])
            if len(candidate) > min_segment_length:
                return candidate

    if len(text) > MAX_ID_LENGTH:
        raise ValidationError(f"Scanned payload is not a valid QR code id (over {MAX_ID_LENGTH} characters).")
    return validate_id(text)


@dataclass
class ScanResult:
    record: QRRecord
    event: ScanEvent

    @property
    def destination_url(self) -> Optional[str]:
        return self.record.target_url

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record.id,
            "status": self.record.status.value,
            "destinationUrl": self.destination_url,
            "record": self.record.to_dict(),
        }


class ScanResolver:
    def __init__(self, registry, scan_log):
        self.registry = registry
        self.scan_log = scan_log

    def _apply(self, qr_id: str, status, action: Optional[str], user_id: Optional[str]) -> ScanResult:
        previous = self.registry.get(qr_id).status
        record = self.registry.update_status(qr_id, status)
        try:
            event = self.scan_log.append(
                ScanEvent(
                    qr_id=record.id,
                    action=(action or "scanned").strip().lower() or "scanned",
                    status=record.status.value,
                    user_id=user_id,
                )
            )
        except QRTrackError:
            # the attempt failed; put the record back as it was
            if previous is not record.status:
                self.registry.update_status(qr_id, previous)
            raise
        return ScanResult(record=record, event=event)

    def resolve(self, decoded: str, action: Optional[str] = None, user_id: Optional[str] = None) -> ScanResult:
        """
        Apply one scan. On success there is exactly one status update and
        one log append. On failure the record keeps its previous status and
        nothing is logged.
        """
        try:
            qr_id = canonicalize(decoded)
            status = parse_status(action)
            result = self._apply(qr_id, status, action, user_id)
        except QRTrackError as exc:
            logger.info(
                json.dumps(
                    {
                        "event": "scan_failed",
                        "code": exc.code,
                        "error": exc.message,
                        "user_id": user_id,
                    }
                )
            )
            raise

        logger.info(
            json.dumps(
                {
                    "event": "scan_resolved",
                    "qr_id": result.record.id,
                    "status": result.record.status.value,
                    "user_id": user_id,
                }
            )
        )
        return result
