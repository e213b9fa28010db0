import base64
import binascii
import re

import fitz  # PyMuPDF

DATA_URL_PATTERN = re.compile(r"^data:image/png;base64,[A-Za-z0-9+/]+=*$")
RAW_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*$")

SIGNATURE_MAX_WIDTH = 200
SIGNATURE_MAX_HEIGHT = 50
SIGNATURE_RIGHT_MARGIN = 50
SIGNATURE_BOTTOM_OFFSET = 100
STAMP_GAP = 15
STAMP_FONT_SIZE = 8
STAMP_COLOR = (0.4, 0.4, 0.4)


class SignatureError(ValueError):
    pass


def is_valid_signature_data(data):
    if not isinstance(data, str) or not data:
        return False
    return bool(DATA_URL_PATTERN.match(data) or RAW_BASE64_PATTERN.match(data))


def decode_signature(data):
    if not is_valid_signature_data(data):
        raise SignatureError("Invalid signature data")
    payload = data.split(",", 1)[1] if data.startswith("data:") else data
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureError("Invalid signature data") from exc


def _fit(width, height):
    scale = min(SIGNATURE_MAX_WIDTH / width, SIGNATURE_MAX_HEIGHT / height)
    return width * scale, height * scale


def embed_signature(pdf_bytes, signature_png, signed_at):
    """Stamp the signature image and timestamp onto the last page.

    Placement is measured from the bottom-right corner: the image sits
    50pt from the right edge with its lower edge 100pt above the bottom, and
    the "Signed electronically" line 15pt below that.
    """
    try:
        with fitz.open(stream=signature_png, filetype="png") as image_doc:
            image_rect = image_doc[0].rect
    except (RuntimeError, ValueError) as exc:
        raise SignatureError("Invalid signature image") from exc
    if image_rect.width <= 0 or image_rect.height <= 0:
        raise SignatureError("Invalid signature image")

    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        page = doc[doc.page_count - 1]
        page_width, page_height = page.rect.width, page.rect.height
        sig_width, sig_height = _fit(image_rect.width, image_rect.height)

        x0 = page_width - sig_width - SIGNATURE_RIGHT_MARGIN
        y1 = page_height - SIGNATURE_BOTTOM_OFFSET
        page.insert_image(fitz.Rect(x0, y1 - sig_height, x0 + sig_width, y1), stream=signature_png)
        page.insert_text(
            fitz.Point(x0, y1 + STAMP_GAP),
            f"Signed electronically on {signed_at.isoformat()}",
            fontsize=STAMP_FONT_SIZE,
            color=STAMP_COLOR,
        )
        return doc.tobytes()
    finally:
        doc.close()
