"""Bible verse lookup via bible-api.com with a handful of built-in verses."""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fxgate.core.errors import FxError, UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

BIBLE_API_URL = "https://bible-api.com"

TRANSLATIONS = ("kjv", "web", "bbe", "asv", "ylt", "darby", "oeb-us", "webbe")

_REFERENCE = re.compile(r"^\s*([1-3]?\s?[A-Za-z]+)\s+(\d+):(\d+)(?:-(\d+))?\s*$")

# (book, chapter, verse) -> KJV text
BUILTIN_VERSES = {
    ("john", 3, 16): "For God so loved the world, that he gave his only begotten Son, that whosoever "
                     "believeth in him should not perish, but have everlasting life.",
    ("psalm", 23, 1): "The LORD is my shepherd; I shall not want.",
    ("psalms", 23, 1): "The LORD is my shepherd; I shall not want.",
    ("philippians", 4, 13): "I can do all things through Christ which strengtheneth me.",
    ("jeremiah", 29, 11): "For I know the thoughts that I think toward you, saith the LORD, thoughts of "
                          "peace, and not of evil, to give you an expected end.",
    ("romans", 8, 28): "And we know that all things work together for good to them that love God, to "
                       "them who are the called according to his purpose.",
    ("proverbs", 3, 5): "Trust in the LORD with all thine heart; and lean not unto thine own understanding.",
    ("proverbs", 3, 6): "In all thy ways acknowledge him, and he shall direct thy paths.",
    ("genesis", 1, 1): "In the beginning God created the heaven and the earth.",
}


def parse_reference(reference: str) -> Optional[Dict[str, Any]]:
    match = _REFERENCE.match(reference)
    if not match:
        return None
    book, chapter, verse, end = match.groups()
    start = int(verse)
    end_verse = int(end) if end else None
    if end_verse is not None and end_verse < start:
        return None
    return {"book": " ".join(book.split()).title(), "chapter": int(chapter), "verse": start, "endVerse": end_verse}


def builtin_passage(ref: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    book = ref["book"].lower()
    last = ref["endVerse"] or ref["verse"]
    verses: List[Dict[str, Any]] = []
    for number in range(ref["verse"], last + 1):
        text = BUILTIN_VERSES.get((book, ref["chapter"], number))
        if text is None:
            return None
        verses.append({"verse": number, "text": text})
    suffix = f"-{ref['endVerse']}" if ref["endVerse"] else ""
    return {
        "reference": f"{ref['book']} {ref['chapter']}:{ref['verse']}{suffix}",
        "text": " ".join(item["text"] for item in verses),
        "version": "King James Version",
        "book": ref["book"],
        "chapter": ref["chapter"],
        "verse": ref["verse"],
        "verses": verses,
        "source": "built-in",
    }


def format_passage(passage: Dict[str, Any]) -> str:
    lines = [f"📖 *{passage['reference']} ({passage['version']})*", ""]
    if len(passage["verses"]) > 1:
        lines += [f"*{item['verse']}.* {item['text'].strip()}" for item in passage["verses"]]
    else:
        lines.append(passage["text"].strip())
    lines += ["", f"_{passage['book']} {passage['chapter']}:{passage['verse']}_"]
    return "\n".join(lines)


class VerseHandler(FunctionHandler):
    category = "god"
    name = "verse"
    description = "Look up a Bible verse or short passage (e.g. John 3:16, Proverbs 3:5-6)"
    schema = {
        "reference": FieldSpec("string", max_length=60, format="bible_reference"),
        "version": FieldSpec("string", required=False, enum=TRANSLATIONS + tuple(t.upper() for t in TRANSLATIONS)),
    }
    example = {"reference": "John 3:16", "version": "KJV"}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        reference = request.data["reference"]
        version = (request.data.get("version") or "kjv").lower()
        ref = parse_reference(reference)
        if ref is None:
            raise FxError(
                "Invalid Bible reference format. Use format like: John 3:16",
                code="INVALID_FORMAT",
                details={"field": "reference", "value": reference},
            )

        passage = await self._fetch(ref, version)
        if passage is None:
            passage = builtin_passage(ref)
        if passage is None:
            raise FxError(
                "Bible service is unavailable and the verse is not in the offline set",
                code="SERVICE_UNAVAILABLE",
                details={"reference": reference},
                status_code=503,
            )
        passage["formatted"] = format_passage(passage)
        return success_response(passage, f"{passage['reference']} retrieved")

    async def _fetch(self, ref: Dict[str, Any], version: str) -> Optional[Dict[str, Any]]:
        suffix = f"-{ref['endVerse']}" if ref["endVerse"] else ""
        path = quote(f"{ref['book']} {ref['chapter']}:{ref['verse']}{suffix}")
        try:
            data = await self.context.http.get_json(
                f"{BIBLE_API_URL}/{path}",
                params={"translation": version},
                timeout=self.context.lookup_timeout,
                retries=0,
            )
        except UpstreamError as exc:
            if exc.upstream_status == 404:
                raise FxError(
                    f"Verse not found: {ref['book']} {ref['chapter']}:{ref['verse']}{suffix}",
                    code="NOT_FOUND",
                    details={"reference": ref},
                )
            logger.info("bible-api.com failed: %s", exc)
            return None
        if not isinstance(data, dict) or not data.get("text"):
            return None
        return {
            "reference": data.get("reference") or f"{ref['book']} {ref['chapter']}:{ref['verse']}{suffix}",
            "text": data["text"],
            "version": data.get("translation_name") or version.upper(),
            "book": (data.get("verses") or [{}])[0].get("book_name") or ref["book"],
            "chapter": ref["chapter"],
            "verse": ref["verse"],
            "verses": [
                {"verse": item.get("verse"), "text": item.get("text", "")}
                for item in data.get("verses") or []
            ],
            "source": "bible-api.com",
        }
