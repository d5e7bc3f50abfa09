# qrtrack/qr_scanner/qr_engine.py

import cv2
import numpy as np
from typing import Any, Dict, Optional


def _detect(img: np.ndarray) -> Optional[Dict[str, Any]]:
    """One code per image: a scan resolves a single id."""
    try:
        text, corners, _ = cv2.QRCodeDetector().detectAndDecode(img)
    except cv2.error:
        return None
    text = (text or "").strip()
    if not text:
        return None
    return {"data": text, "points": corners.astype(int).tolist() if corners is not None else []}


def decode_frame(frame: Optional[np.ndarray]) -> Optional[str]:
    """
    Decode the QR payload in a camera frame.

    Returns None when the frame holds no readable code; that happens on
    almost every frame and is not an error.
    """
    if frame is None or frame.size == 0:
        return None
    found = _detect(frame)
    return found["data"] if found else None


def process_qr_image(image_bytes: bytes) -> Dict[str, Any]:
    buf = np.frombuffer(image_bytes, np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
    found = _detect(img) if img is not None else None
    items = [found] if found else []
    return {"qr_found": bool(items), "count": len(items), "items": items}
