# qrtrack/qr_scanner/__init__.py

"""
QR code rendering and scanning.

- render(qr_id, label=None) -> PNG bytes, optionally with a label drawn
  beneath the code
- decode_frame(frame) -> first decoded payload in an OpenCV frame, or None
- process_qr_image(image_bytes) -> the code found in an uploaded image
- ScanSession: one camera scan attempt, from frames to a resolved record
"""

from .qr_engine import decode_frame, process_qr_image
from .render import render
from .session import ScanSession, ScanState
