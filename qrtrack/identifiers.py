# qrtrack/identifiers.py

from __future__ import annotations

import uuid


def generate_id() -> str:
    """Return a fresh random 128-bit identifier (UUID4, canonical text form)."""
    return str(uuid.uuid4())
