import base64
import io
import logging
from typing import List

import qrcode
import qrcode.constants
from PIL import Image
from qrcode.main import QRCode

from models.session import PairingCode, PairingFormat

logger = logging.getLogger(__name__)

PNG_DATA_URL_PREFIX = "data:image/png;base64,"


def _qr(payload: str, box_size: int = 10, border: int = 2) -> QRCode:
    qr = QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def _png_modules(png: bytes) -> List[List[bool]]:
    """Sample a rendered QR image back into its module grid (True = dark)."""
    img = Image.open(io.BytesIO(png)).convert("L")
    dark = img.point(lambda p: 255 if p < 128 else 0)
    bbox = dark.getbbox()
    if bbox is None:
        raise ValueError("QR image has no dark pixels")
    left, top, right, bottom = bbox

    # the top-left finder pattern starts with a 7-module dark run
    run = 0
    while left + run < right and dark.getpixel((left + run, top)):
        run += 1
    module = run / 7
    cols = round((right - left) / module)
    rows = round((bottom - top) / module)
    return [
        [bool(dark.getpixel((int(left + (c + 0.5) * module), int(top + (r + 0.5) * module))))
         for c in range(cols)]
        for r in range(rows)
    ]


def _modules_to_text(modules: List[List[bool]]) -> str:
    # light modules are drawn, dark ones left blank, plus a one-module quiet zone
    width = len(modules[0]) if modules else 0
    rows = [[False] * width] + modules + [[False] * width]
    return "\n".join("██" + "".join("  " if m else "██" for m in row) + "██" for row in rows) + "\n"


def render_ascii(code: PairingCode) -> str:
    """Terminal rendering for the operator console."""
    if code.format == PairingFormat.QR_STRING:
        return _modules_to_text(_qr(code.value, border=0).get_matrix())
    try:
        return _modules_to_text(_png_modules(render_png(code)))
    except (OSError, ValueError) as e:
        logger.warning("Could not render pairing image as text: %s", e)
        return "(pairing QR available as image at /api/whatsapp/qr/image)"


def render_png(code: PairingCode) -> bytes:
    if code.format == PairingFormat.PNG_BASE64:
        value = code.value
        if value.startswith(PNG_DATA_URL_PREFIX):
            value = value[len(PNG_DATA_URL_PREFIX):]
        return base64.b64decode(value)

    img = _qr(code.value).make_image(fill_color="black", back_color="white")
    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    return buffered.getvalue()


def to_data_url(code: PairingCode) -> str:
    return PNG_DATA_URL_PREFIX + base64.b64encode(render_png(code)).decode()
