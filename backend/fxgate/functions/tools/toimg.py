"""Sticker (or any image) to a regular image format."""
import logging
from typing import Any, Dict, Tuple

from PIL import Image

from fxgate.core.response import media_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest
from fxgate.functions.media import IMAGE_INPUT_SCHEMA, encode_image, load_image_input, open_image

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("jpeg", "png", "webp", "gif", "tiff")


def convert_image(content: bytes, target: str = "jpeg", quality: int = 85) -> Tuple[bytes, Image.Image]:
    """Return ``(converted_bytes, source_image)``."""
    source = open_image(content)
    quality = max(1, min(quality, 100))

    if target == "jpeg":
        # JPEG has no alpha; flatten onto white
        image = source.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.getchannel("A"))
        return encode_image(background, "JPEG", quality=quality), source
    if target == "png":
        return encode_image(source, "PNG", compress_level=max(0, min(9, (100 - quality) // 10))), source
    if target == "webp":
        return encode_image(source, "WEBP", quality=quality), source
    if target == "gif":
        return encode_image(source.convert("P", palette=Image.ADAPTIVE), "GIF"), source
    return encode_image(source.convert("RGB"), "TIFF"), source


class ToImageHandler(FunctionHandler):
    category = "tools"
    name = "toimg"
    description = "Convert a sticker or image to JPEG, PNG, WebP, GIF or TIFF"
    schema = {
        **IMAGE_INPUT_SCHEMA,
        "targetFormat": FieldSpec("string", required=False, enum=OUTPUT_FORMATS),
        "quality": FieldSpec("integer", required=False, min=1, max=100),
    }
    example = {"base64Data": "data:image/webp;base64,...", "targetFormat": "png"}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        target = data.get("targetFormat") or "jpeg"
        content = await load_image_input(data, self.context)
        converted, source = convert_image(content, target, int(float(data.get("quality") or 85)))

        extension = "jpg" if target == "jpeg" else target
        mime_type = f"image/{target}"
        record = self.context.storage.create_temp_file(
            converted, f"converted.{extension}", mime_type=mime_type, tags=["toimg"]
        )
        logger.info("[%s] Converted %s to %s (%d bytes)", request.request_id, source.format, target, len(converted))

        return media_response(
            record.filename,
            mime_type,
            content=converted,
            url=record.download_url,
            dimensions={"width": source.width, "height": source.height},
            fmt=target,
            extra={
                "originalFormat": (source.format or "unknown").lower(),
                "originalSize": len(content),
                "compressionRatio": f"{len(converted) / len(content) * 100:.1f}%",
                "fileId": record.id,
                "downloadUrl": record.download_url,
                "formatted": (
                    "🖼️ *Image Converted!*\n\n"
                    f"📦 *Format:* {target.upper()}\n"
                    f"📐 *Size:* {source.width}x{source.height}\n"
                    f"💾 *File size:* {len(converted) / 1024:.1f} KB"
                ),
            },
        )
