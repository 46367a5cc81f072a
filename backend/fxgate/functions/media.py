"""Image input/output helpers shared by the media handlers."""
import base64
import binascii
import io
import re
from typing import Any, Dict

from PIL import Image, UnidentifiedImageError

from fxgate.core.errors import MediaError
from fxgate.core.validation import FieldSpec, validate_image_bytes
from fxgate.functions.base import FunctionContext

_DATA_URI_PREFIX = re.compile(r"^data:[\w/+.-]+;base64,")

# Fields accepted by every handler that takes an image
IMAGE_INPUT_SCHEMA = {
    "buffer": FieldSpec("string", required=False),
    "base64Data": FieldSpec("string", required=False),
    "url": FieldSpec("string", required=False, format="url"),
}


def decode_base64(value: str) -> bytes:
    """Decode base64 with or without a ``data:`` URI prefix."""
    try:
        return base64.b64decode(_DATA_URI_PREFIX.sub("", value.strip()), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise MediaError("Image data is not valid base64", code="INVALID_MEDIA") from exc


async def load_image_input(data: Dict[str, Any], context: FunctionContext) -> bytes:
    """Resolve ``buffer`` / ``base64Data`` / ``url`` to validated image bytes.

    Raises:
        MediaError: no input given, or the bytes are not a supported image.
    """
    if data.get("buffer"):
        content = decode_base64(data["buffer"])
    elif data.get("base64Data"):
        content = decode_base64(data["base64Data"])
    elif data.get("url"):
        downloaded = await context.http.download(
            data["url"],
            max_bytes=context.storage.max_file_bytes,
            timeout=context.config.http.timeout_seconds,
            retries=0,
        )
        content = downloaded.content
    else:
        raise MediaError("Provide buffer, base64Data, or url", code="MISSING_FIELD")

    valid, message = validate_image_bytes(content)
    if not valid:
        raise MediaError(message, code="INVALID_MEDIA")
    return content


def open_image(content: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise MediaError("The input image format is not supported", code="UNSUPPORTED_FORMAT") from exc
    return image


def encode_image(image: Image.Image, fmt: str, **options) -> bytes:
    """Save *image* as *fmt* (PIL format name) and return the bytes."""
    buf = io.BytesIO()
    image.save(buf, format=fmt, **options)
    return buf.getvalue()


def fit_square(image: Image.Image, size: int) -> Image.Image:
    """Centre-crop to a square and resize to ``size`` x ``size``."""
    width, height = image.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    square = image.crop((left, top, left + side, top + side))
    return square.resize((size, size), Image.LANCZOS)