# qrtrack/qr_scanner/render.py

"""
QR code rendering.

Encodes an identifier (or a ``{origin}/scan/{id}`` URL embedding it) into a
PNG and optionally draws a human-readable label beneath the code. Output is
deterministic for identical inputs and rendering parameters.
"""

from __future__ import annotations

import base64
import io
from typing import Iterable, Optional

import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image, ImageDraw, ImageFont

from qrtrack.errors import EncodingError

BOX_SIZE = 8
BORDER = 4
LABEL_PADDING = 20
LABEL_FONT_SIZE = 14
PNG_DATA_URL_PREFIX = "data:image/png;base64,"


def scan_url(qr_id: str, origin: str) -> str:
    return f"{origin.rstrip('/')}/scan/{qr_id}"


def _load_font(font_path: Optional[str], size: int):
    if font_path:
        return ImageFont.truetype(font_path, size)
    return ImageFont.load_default()


def _qr_image(payload: str, box_size: int, border: int) -> Image.Image:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(payload)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        raise EncodingError(f"Payload of {len(payload)} characters does not fit in a QR code.") from exc

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer)
    buffer.seek(0)
    return Image.open(buffer).convert("RGB")


def _with_label(code: Image.Image, label: str, font_path: Optional[str]) -> Image.Image:
    font = _load_font(font_path, LABEL_FONT_SIZE)
    draw = ImageDraw.Draw(code)
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    text_w, text_h = right - left, bottom - top

    width = max(code.width, text_w + 2 * LABEL_PADDING)
    height = code.height + LABEL_PADDING + max(text_h, LABEL_FONT_SIZE)
    canvas = Image.new("RGB", (width, height), "white")
    canvas.paste(code, ((width - code.width) // 2, 0))

    draw = ImageDraw.Draw(canvas)
    x = (width - text_w) // 2 - left
    y = code.height + LABEL_PADDING // 2 - top
    draw.text((x, y), label, fill="black", font=font)
    return canvas


def render_image(
    qr_id: str,
    label: Optional[str] = None,
    *,
    origin: Optional[str] = None,
    box_size: int = BOX_SIZE,
    border: int = BORDER,
    font_path: Optional[str] = None,
) -> Image.Image:
    """Render ``qr_id`` (or its scan URL when ``origin`` is given) as a PIL image."""
    payload = scan_url(qr_id, origin) if origin else qr_id
    code = _qr_image(payload, box_size, border)
    if label:
        return _with_label(code, label, font_path)
    return code


def render(qr_id: str, label: Optional[str] = None, **kwargs) -> bytes:
    """Render to PNG bytes."""
    img = render_image(qr_id, label, **kwargs)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def to_data_url(png: bytes) -> str:
    return PNG_DATA_URL_PREFIX + base64.b64encode(png).decode("ascii")


def from_data_url(data_url: str) -> bytes:
    if data_url.startswith(PNG_DATA_URL_PREFIX):
        data_url = data_url[len(PNG_DATA_URL_PREFIX):]
    return base64.b64decode(data_url)


def render_pdf(images: Iterable[bytes]) -> bytes:
    """Lay out PNGs one per page in a single PDF (print-all sheet)."""
    pages = [Image.open(io.BytesIO(png)).convert("RGB") for png in images]
    if not pages:
        raise EncodingError("Nothing to print.")
    out = io.BytesIO()
    pages[0].save(out, format="PDF", save_all=True, append_images=pages[1:], resolution=150)
    return out.getvalue()
