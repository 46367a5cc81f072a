"""QR code generation (PNG or SVG) stored in temp storage."""
import base64
import io
import logging
import re
import uuid
from typing import Any, Dict, Tuple
from urllib.parse import quote

import qrcode
import qrcode.image.svg
from PIL import Image

from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

ERROR_CORRECTION = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}

EC_LABELS = {"L": "Low (7%)", "M": "Medium (15%)", "Q": "Quartile (25%)", "H": "High (30%)"}

QR_TYPES = ("url", "wifi", "contact", "sms", "email", "text")

_WIFI = re.compile(r"ssid:(.+?),pass:(.+?),type:(.+)", re.IGNORECASE)
_CONTACT = re.compile(r"name:(.+?),phone:(.+?),email:(.+)", re.IGNORECASE)
_SMS = re.compile(r"number:(.+?),message:(.+)", re.IGNORECASE)
_EMAIL = re.compile(r"to:(.+?),subject:(.+?),body:(.+)", re.IGNORECASE)


def prepare_qr_data(text: str, qr_type: str) -> str:
    """Encode *text* for the given QR payload type."""
    qr_type = qr_type.lower()
    if qr_type == "url":
        if not text.startswith(("http://", "https://", "ftp://")):
            return f"https://{text}"
        return text
    if qr_type == "wifi":
        match = _WIFI.search(text)
        if match:
            ssid, password, security = match.groups()
            return f"WIFI:S:{ssid};T:{security.upper()};P:{password};;"
    elif qr_type == "contact":
        match = _CONTACT.search(text)
        if match:
            name, phone, email = match.groups()
            return f"BEGIN:VCARD\nVERSION:3.0\nFN:{name}\nTEL:{phone}\nEMAIL:{email}\nEND:VCARD"
    elif qr_type == "sms":
        match = _SMS.search(text)
        if match:
            number, message = match.groups()
            return f"SMSTO:{number}:{quote(message, safe='')}"
    elif qr_type == "email":
        match = _EMAIL.search(text)
        if match:
            to, subject, body = match.groups()
            return f"mailto:{to}?subject={quote(subject, safe='')}&body={quote(body, safe='')}"
    return text


def _hex(color: str) -> str:
    return color if color.startswith("#") else f"#{color}"


def render_qr(
    data: str,
    size: int,
    margin: int,
    error_correction: str,
    fmt: str,
    dark: str = "#000000",
    light: str = "#ffffff",
) -> Tuple[bytes, str]:
    """Return ``(content, mime_type)`` for a QR code of *data*."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECTION[error_correction],
        box_size=10,
        border=margin,
    )
    qr.add_data(data)
    qr.make(fit=True)

    if fmt == "svg":
        img = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
        return img.to_string(), "image/svg+xml"

    img = qr.make_image(fill_color=_hex(dark), back_color=_hex(light))
    bio = io.BytesIO()
    img.save(bio)
    image = Image.open(io.BytesIO(bio.getvalue())).convert("RGB")
    image = image.resize((size, size), Image.NEAREST)
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue(), "image/png"


def format_qr_response(data: str, size: int, fmt: str, margin: int, error_correction: str) -> str:
    preview = data[:100] + "..." if len(data) > 100 else data
    return (
        "📱 *QR Code Generated!*\n\n"
        f"📊 *Size:* {size}x{size}px\n"
        f"📦 *Format:* {fmt.upper()}\n"
        f"📐 *Margin:* {margin}\n"
        f"🛡️ *Error Correction:* {EC_LABELS.get(error_correction, error_correction)}\n"
        f"📝 *Data:* {preview}\n\n"
        "💡 *QR Code Types:* url, wifi, contact, sms, email, text\n\n"
        "🎮 *Usage:* !qr <data> type:<type> size:<size> format:<png/svg>"
    )


class QrHandler(FunctionHandler):
    category = "tools"
    name = "qr"
    description = "Generate a QR code (url, wifi, contact, sms, email or text) as PNG or SVG"
    schema = {
        "text": FieldSpec("string", max_length=2000),
        "type": FieldSpec("string", required=False, enum=QR_TYPES),
        "size": FieldSpec("integer", required=False, min=100, max=2000),
        "margin": FieldSpec("integer", required=False, min=0, max=10),
        "color": FieldSpec("object", required=False, properties={
            "dark": FieldSpec("string", required=False, format="hex_color"),
            "light": FieldSpec("string", required=False, format="hex_color"),
        }),
        "errorCorrection": FieldSpec("string", required=False, enum=tuple(ERROR_CORRECTION)),
        "format": FieldSpec("string", required=False, enum=("png", "svg")),
    }
    example = {"text": "https://example.com", "type": "url", "size": 300}

    async def warmup(self) -> None:
        render_qr("warmup", 100, 1, "L", "png")

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        text = data["text"]
        qr_type = data.get("type") or "url"
        size = int(float(data.get("size") or 300))
        margin = int(float(data.get("margin") if data.get("margin") is not None else 1))
        error_correction = data.get("errorCorrection") or "M"
        fmt = data.get("format") or "png"
        color = data.get("color") or {}

        payload = prepare_qr_data(text, qr_type)
        content, mime_type = render_qr(
            payload,
            size,
            margin,
            error_correction,
            fmt,
            dark=color.get("dark", "#000000"),
            light=color.get("light", "#ffffff"),
        )

        qr_id = str(uuid.uuid4())
        filename = f"qr_{qr_id}.{fmt}"
        record = self.context.storage.create_temp_file(
            content, filename, mime_type=mime_type, tags=["qr"], metadata={"qrId": qr_id}
        )
        logger.info("[%s] QR %s generated (%s, %d bytes)", request.request_id, qr_id, fmt, len(content))

        return success_response(
            {
                "qrId": qr_id,
                "filename": filename,
                "data": payload,
                "originalText": text,
                "type": qr_type,
                "size": size,
                "format": fmt,
                "margin": margin,
                "errorCorrection": error_correction,
                "mimeType": mime_type,
                "image": base64.b64encode(content).decode("ascii"),
                "fileId": record.id,
                "downloadUrl": record.download_url,
                "expiresAt": record.to_dict()["expiresAt"],
                "formatted": format_qr_response(payload, size, fmt, margin, error_correction),
            },
            "QR code generated successfully",
        )
