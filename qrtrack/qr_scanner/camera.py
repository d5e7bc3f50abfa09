# qrtrack/qr_scanner/camera.py

"""
Exclusive, scoped access to a capture device.

Only one capture session may be open per process. Use as a context
manager so the device is released on every exit path::

    with Camera(0) as cam:
        frame = cam.read()
"""

from __future__ import annotations

import threading
from typing import Optional, Union

import cv2
import numpy as np

_ACTIVE_LOCK = threading.Lock()


class Camera:
    def __init__(self, source: Union[int, str] = 0):
        self.source = source
        self._capture: Optional[cv2.VideoCapture] = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def acquire(self) -> "Camera":
        if not _ACTIVE_LOCK.acquire(blocking=False):
            raise RuntimeError("Another capture session is already active.")
        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            capture.release()
            _ACTIVE_LOCK.release()
            raise RuntimeError(f"Could not open camera {self.source!r}.")
        self._capture = capture
        return self

    def release(self) -> None:
        if self._capture is None:
            return
        try:
            self._capture.release()
        finally:
            self._capture = None
            _ACTIVE_LOCK.release()

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            raise RuntimeError("Camera is not acquired.")
        ok, frame = self._capture.read()
        return frame if ok else None

    def __enter__(self) -> "Camera":
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
