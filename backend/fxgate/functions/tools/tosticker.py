"""Image to chat sticker (512x512 WebP, at most 1 MB)."""
import logging
from typing import Any, Dict

from PIL import Image

from fxgate.core.errors import MediaError
from fxgate.core.response import media_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest
from fxgate.functions.media import IMAGE_INPUT_SCHEMA, encode_image, fit_square, load_image_input, open_image

logger = logging.getLogger(__name__)

STICKER_SIZE = 512
MAX_STICKER_BYTES = 1024 * 1024
MIN_QUALITY = 20
QUALITY_STEP = 15


def make_sticker(content: bytes, quality: int = 85) -> Dict[str, Any]:
    """Render *content* as a sticker, lowering quality until it fits.

    Raises:
        MediaError: ``FILE_TOO_LARGE`` if even the lowest quality is over 1 MB.
    """
    source = open_image(content)
    original_size = source.size
    has_alpha = source.mode in ("RGBA", "LA") or "transparency" in source.info
    sticker = fit_square(source.convert("RGBA"), STICKER_SIZE)

    current = max(1, min(quality, 100))
    webp = encode_image(sticker, "WEBP", quality=current, method=6)
    for _ in range(5):
        if len(webp) <= MAX_STICKER_BYTES:
            break
        current = max(MIN_QUALITY, current - QUALITY_STEP)
        webp = encode_image(sticker, "WEBP", quality=current, method=6)
    if len(webp) > MAX_STICKER_BYTES:
        raise MediaError(
            f"Sticker size ({len(webp)} bytes) exceeds the 1MB limit. Try a simpler image.",
            code="FILE_TOO_LARGE",
            details={"size": len(webp), "maxSize": MAX_STICKER_BYTES},
        )
    return {
        "content": webp,
        "quality": current,
        "originalWidth": original_size[0],
        "originalHeight": original_size[1],
        "hasTransparency": has_alpha,
    }


class ToStickerHandler(FunctionHandler):
    category = "tools"
    name = "tosticker"
    description = "Convert an image to a 512x512 WebP sticker"
    schema = {
        **IMAGE_INPUT_SCHEMA,
        "packName": FieldSpec("string", required=False, max_length=128),
        "author": FieldSpec("string", required=False, max_length=128),
        "categories": FieldSpec("array", required=False, max_items=3, items=FieldSpec("string")),
        "quality": FieldSpec("integer", required=False, min=1, max=100),
    }
    example = {"url": "https://example.com/cat.png", "packName": "Cats", "author": "me"}

    async def warmup(self) -> None:
        encode_image(Image.new("RGBA", (8, 8)), "WEBP")

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        content = await load_image_input(data, self.context)
        sticker = make_sticker(content, int(float(data.get("quality") or 85)))
        webp = sticker["content"]

        record = self.context.storage.create_temp_file(
            webp, "sticker.webp", mime_type="image/webp", tags=["sticker"]
        )
        logger.info("[%s] Sticker %s created (%d bytes)", request.request_id, record.id, len(webp))

        pack = {
            "packName": data.get("packName") or "My Sticker Pack",
            "author": data.get("author") or "fxgate",
            "categories": data.get("categories") or ["🤖", "😊"],
        }
        return media_response(
            record.filename,
            "image/webp",
            content=webp,
            url=record.download_url,
            dimensions={
                "width": STICKER_SIZE,
                "height": STICKER_SIZE,
                "originalWidth": sticker["originalWidth"],
                "originalHeight": sticker["originalHeight"],
            },
            fmt="webp",
            extra={
                **pack,
                "fileId": record.id,
                "downloadUrl": record.download_url,
                "quality": sticker["quality"],
                "hasTransparency": sticker["hasTransparency"],
                "compliant": True,
                "maxSizeAllowed": MAX_STICKER_BYTES,
                "formatted": (
                    "🎨 *Sticker Created!*\n\n"
                    f"📦 *Pack:* {pack['packName']}\n"
                    f"✍️ *Author:* {pack['author']}\n"
                    f"📐 *Size:* {STICKER_SIZE}x{STICKER_SIZE}\n"
                    f"💾 *File size:* {len(webp) / 1024:.1f} KB"
                ),
            },
        )
