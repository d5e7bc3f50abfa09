# qrtrack/qr_scanner/session.py

"""
One scan attempt, from camera frames to a resolved QR record.

States::

    IDLE -> DECODING -> RESOLVING -> COMPLETED
                  ^  |            \\-> FAILED
                  |__| (no code in frame)

The camera is held only while frames are being polled. It is released as
soon as a payload is decoded, and on every other exit path (error,
``stop()``, frame budget exhausted). ``reset()`` starts a fresh attempt.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
import time
from typing import Any, Callable, ContextManager, Optional

import numpy as np

from qrtrack.errors import QRTrackError
from qrtrack.qr_scanner.qr_engine import decode_frame

logger = logging.getLogger("qrtrack")

DEFAULT_FPS = 5


class ScanState(str, enum.Enum):
    IDLE = "idle"
    DECODING = "decoding"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (ScanState.COMPLETED, ScanState.FAILED)


class ScanSession:
    """
    ``camera_factory`` returns a context manager yielding an object with a
    ``read()`` method (see :class:`qrtrack.qr_scanner.camera.Camera`).
    ``resolver(decoded_text, action)`` performs the registry update, usually
    :meth:`qrtrack.client.ApiClient.scan`.
    """

    def __init__(
        self,
        camera_factory: Callable[[], ContextManager[Any]],
        resolver: Callable[[str, Optional[str]], Any],
        action: Optional[str] = None,
        fps: float = DEFAULT_FPS,
        decoder: Callable[[Optional[np.ndarray]], Optional[str]] = decode_frame,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if fps <= 0:
            raise ValueError("fps must be positive.")
        self.camera_factory = camera_factory
        self.resolver = resolver
        self.action = action
        self.interval = 1.0 / fps
        self.decoder = decoder
        self._sleep = sleep
        self._stop = threading.Event()
        self.state = ScanState.IDLE
        self.decoded: Optional[str] = None
        self.result: Any = None
        self.error: Optional[str] = None
        self.camera_open = False

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def reset(self) -> None:
        """Scan again: discard the previous outcome and return to IDLE."""
        if self.camera_open:
            raise RuntimeError("Cannot reset while the camera is in use.")
        self._stop.clear()
        self.state = ScanState.IDLE
        self.decoded = None
        self.result = None
        self.error = None

    def stop(self) -> None:
        """Ask a running capture loop to leave scanning mode."""
        self._stop.set()

    def _fail(self, message: str) -> ScanState:
        self.state = ScanState.FAILED
        self.error = message
        logger.info(json.dumps({"event": "scan_failed", "error": message, "decoded": self.decoded}))
        return self.state

    def _capture(self, max_frames: Optional[int]) -> Optional[str]:
        frames = 0
        with self.camera_factory() as camera:
            self.camera_open = True
            try:
                while not self._stop.is_set():
                    if max_frames is not None and frames >= max_frames:
                        return None
                    frames += 1
                    self.state = ScanState.DECODING
                    text = self.decoder(camera.read())
                    if text:
                        return text
                    self.state = ScanState.IDLE
                    self._sleep(self.interval)
                return None
            finally:
                self.camera_open = False
                # a stop ends this attempt only
                self._stop.clear()

    def start(self, max_frames: Optional[int] = None) -> ScanState:
        """
        Run one attempt to completion and return the terminal (or IDLE, when
        stopped without a decode) state.
        """
        if self.state is not ScanState.IDLE:
            raise RuntimeError(f"Session is {self.state.value}; call reset() first.")

        try:
            text = self._capture(max_frames)
        except Exception as exc:
            return self._fail(f"Camera error: {exc}")

        if text is None:
            self.state = ScanState.IDLE
            return self.state

        self.decoded = text
        self.state = ScanState.RESOLVING
        try:
            self.result = self.resolver(text, self.action)
        except QRTrackError as exc:
            return self._fail(exc.message)
        except Exception as exc:
            return self._fail(str(exc))

        self.state = ScanState.COMPLETED
        return self.state
