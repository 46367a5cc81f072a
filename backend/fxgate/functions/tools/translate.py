"""Text translation via LibreTranslate, then MyMemory.

When both providers fail the text is returned unchanged with
``translated: false`` instead of an error, so chat front-ends can still
echo something useful.
"""
import logging
from typing import Any, Dict

from fxgate.core.errors import FxError, UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

LIBRETRANSLATE_URL = "https://libretranslate.com/translate"
MYMEMORY_URL = "https://api.mymemory.translated.net/get"

LANGUAGES = {
    "auto": "Automatic",
    "af": "Afrikaans",
    "ar": "Arabic",
    "bg": "Bulgarian",
    "bn": "Bengali",
    "ca": "Catalan",
    "cs": "Czech",
    "cy": "Welsh",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "et": "Estonian",
    "fa": "Persian",
    "fi": "Finnish",
    "fr": "French",
    "ga": "Irish",
    "he": "Hebrew",
    "hi": "Hindi",
    "hr": "Croatian",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "ms": "Malay",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "sr": "Serbian",
    "sv": "Swedish",
    "sw": "Swahili",
    "ta": "Tamil",
    "th": "Thai",
    "tl": "Filipino",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "ur": "Urdu",
    "vi": "Vietnamese",
    "yo": "Yoruba",
    "zh": "Chinese",
    "zu": "Zulu",
}


def format_translation(result: Dict[str, Any]) -> str:
    source_name = LANGUAGES.get(result["sourceLanguage"], result["sourceLanguage"])
    target_name = LANGUAGES.get(result["targetLanguage"], result["targetLanguage"])
    header = "🌍 *Translation Complete!*" if result["translated"] else "⚠️ *Translation unavailable, showing original text*"
    lines = [
        header,
        "",
        f"📝 *Original ({source_name}):*",
        result["original"],
        "",
        f"✨ *Translated ({target_name}):*",
        result["translatedText"],
        "",
    ]
    if result.get("confidence"):
        lines.append(f"📊 *Confidence:* {result['confidence'] * 100:.1f}%")
    lines += [f"✅ *Source:* {result['source']}", "", "🎮 *Translate more:* !tr <text> target:<lang> source:<lang/auto>"]
    return "\n".join(lines)


class TranslateHandler(FunctionHandler):
    category = "tools"
    name = "translate"
    description = "Translate text between languages (source may be auto-detected)"
    schema = {
        "text": FieldSpec("string", min_length=1, max_length=5000),
        "target": FieldSpec("string", required=False, enum=tuple(code for code in LANGUAGES if code != "auto")),
        "source": FieldSpec("string", required=False, enum=tuple(LANGUAGES)),
    }
    example = {"text": "Hello world", "target": "es", "source": "auto"}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        text = request.data["text"]
        target = request.data.get("target") or "en"
        source = request.data.get("source") or "auto"
        if source == target:
            raise FxError(
                "Source and target languages are the same",
                code="INVALID_REQUEST",
                details={"source": source, "target": target},
            )

        result = await self.translate(text, source, target)
        result["formatted"] = format_translation(result)
        message = "Translation completed" if result["translated"] else "Translation providers unavailable"
        return success_response(result, message)

    async def translate(self, text: str, source: str, target: str) -> Dict[str, Any]:
        http = self.context.http
        timeout = self.context.lookup_timeout
        base = {"original": text, "targetLanguage": target}

        try:
            payload = await http.post_json(
                LIBRETRANSLATE_URL,
                json={
                    "q": text,
                    "source": source,
                    "target": target,
                    "format": "text",
                    "api_key": self.context.api_keys.libretranslate or "",
                },
                timeout=timeout,
                retries=0,
            )
            detected = payload.get("detectedLanguage") or {}
            return {
                **base,
                "translatedText": payload["translatedText"],
                "sourceLanguage": detected.get("language") or source,
                "confidence": (detected.get("confidence") or 80) / 100,
                "translated": True,
                "source": "LibreTranslate",
            }
        except (UpstreamError, KeyError, TypeError, AttributeError) as exc:
            logger.info("LibreTranslate failed: %s", exc)

        try:
            payload = await http.get_json(
                MYMEMORY_URL,
                params={"q": text, "langpair": f"{'autodetect' if source == 'auto' else source}|{target}"},
                timeout=timeout,
                retries=0,
            )
            if int(payload.get("responseStatus", 0)) != 200:
                raise UpstreamError(str(payload.get("responseDetails") or "MyMemory error"), url=MYMEMORY_URL)
            data = payload["responseData"]
            return {
                **base,
                "translatedText": data["translatedText"],
                "sourceLanguage": source,
                "confidence": float(data.get("match") or 0) or None,
                "translated": True,
                "source": "MyMemory",
            }
        except (UpstreamError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.info("MyMemory failed: %s", exc)

        return {
            **base,
            "translatedText": text,
            "sourceLanguage": source,
            "confidence": None,
            "translated": False,
            "source": "none",
        }
