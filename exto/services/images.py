from __future__ import annotations

import base64
import binascii
from io import BytesIO
import logging

import pdfplumber
from PIL import Image, UnidentifiedImageError

from exto.core.errors import InvalidInputError


logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = (128, 128)
THUMBNAIL_QUALITY = 60
FULL_IMAGE_QUALITY = 80
PDF_RENDER_DPI = 150

_PDF_MAGIC = b"%PDF"


def is_pdf(data: bytes) -> bool:
    return data[:4] == _PDF_MAGIC


def _jpeg_data_url(image: Image.Image, *, quality: int) -> str:
    buffer = BytesIO()
    # JPEG has no alpha channel or palette.
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return "data:image/jpeg;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _render_first_pdf_page(data: bytes) -> Image.Image:
    with pdfplumber.open(BytesIO(data)) as pdf:
        if not pdf.pages:
            raise InvalidInputError("PDF document has no pages")
        return pdf.pages[0].to_image(resolution=PDF_RENDER_DPI).original.copy()


def load_image(data: bytes) -> Image.Image:
    """Open raster bytes, or render the first page of a PDF."""
    if is_pdf(data):
        return _render_first_pdf_page(data)
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInputError("Uploaded file is not a supported image or PDF") from exc
    return image


def thumbnail_data_url(data: bytes) -> str:
    image = load_image(data)
    image.thumbnail(THUMBNAIL_SIZE)
    return _jpeg_data_url(image, quality=THUMBNAIL_QUALITY)


def image_data_url(data: bytes) -> str:
    return _jpeg_data_url(load_image(data), quality=FULL_IMAGE_QUALITY)


def decode_base64_image(value: str) -> bytes:
    # Accept bare base64 or a data URL.
    if "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("base64_image is not valid base64") from exc
