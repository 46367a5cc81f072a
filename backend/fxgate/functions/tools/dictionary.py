"""Word definitions from the Free Dictionary API, Oxford, or a built-in list."""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fxgate.core.errors import FxError, UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

FREE_DICTIONARY_URL = "https://api.dictionaryapi.dev/api/v2/entries"
OXFORD_URL = "https://od-api.oxforddictionaries.com/api/v2/entries"

MINI_DICTIONARY: Dict[str, Dict[str, Any]] = {
    "hello": {
        "phonetic": "həˈləʊ",
        "definitions": [
            {"partOfSpeech": "interjection", "definition": "used as a greeting or to begin a telephone conversation"},
            {"partOfSpeech": "noun", "definition": 'an utterance of "hello"; a greeting'},
        ],
        "synonyms": ["hi", "greetings", "salutations", "hey", "howdy"],
        "antonyms": ["goodbye", "farewell"],
        "examples": [
            "Hello there! How are you today?",
            "She gave me a cheerful hello as I entered the room.",
        ],
        "etymology": "Early 19th century: variant of earlier hollo; related to holla.",
    },
    "world": {
        "phonetic": "wəːld",
        "definitions": [
            {"partOfSpeech": "noun", "definition": "the earth, together with all of its countries and peoples"},
            {"partOfSpeech": "noun", "definition": "a particular region or group of countries"},
        ],
        "synonyms": ["earth", "globe", "planet", "universe", "cosmos"],
        "antonyms": [],
        "examples": ["She traveled around the world.", "The ancient world had different customs."],
        "etymology": 'Old English weorold, from a Germanic compound meaning "age of man".',
    },
    "computer": {
        "phonetic": "kəmˈpjuːtə",
        "definitions": [
            {"partOfSpeech": "noun", "definition": "an electronic device for storing and processing data"},
        ],
        "synonyms": ["PC", "machine", "processor", "calculator", "device"],
        "antonyms": [],
        "examples": [
            "I use my computer for work and entertainment.",
            "Modern computers are incredibly powerful.",
        ],
        "etymology": "Mid 17th century: from compute + -er.",
    },
    "knowledge": {
        "phonetic": "ˈnɒlɪdʒ",
        "definitions": [
            {
                "partOfSpeech": "noun",
                "definition": "facts, information, and skills acquired through experience or education",
            },
        ],
        "synonyms": ["understanding", "wisdom", "expertise", "know-how", "awareness"],
        "antonyms": ["ignorance", "unawareness"],
        "examples": ["He has extensive knowledge of history.", "The pursuit of knowledge is important."],
        "etymology": "Middle English: from an Old English compound based on cnāwan (see know).",
    },
}


def _unique(items: List[str], limit: int) -> List[str]:
    return list(dict.fromkeys(item for item in items if item))[:limit]


def parse_free_dictionary(entries: List[Dict[str, Any]], language: str) -> Dict[str, Any]:
    entry = entries[0]
    definitions, synonyms, antonyms, examples = [], [], [], []
    for meaning in entry.get("meanings") or []:
        synonyms += meaning.get("synonyms") or []
        antonyms += meaning.get("antonyms") or []
        for item in meaning.get("definitions") or []:
            definitions.append({
                "partOfSpeech": meaning.get("partOfSpeech"),
                "definition": item.get("definition"),
                "example": item.get("example"),
            })
            if item.get("example"):
                examples.append(item["example"])
    phonetics = entry.get("phonetics") or []
    return {
        "word": entry["word"],
        "phonetic": entry.get("phonetic"),
        "pronunciation": next((p["audio"] for p in phonetics if p.get("audio")), None),
        "language": language,
        "definitions": definitions,
        "synonyms": _unique(synonyms, 10),
        "antonyms": _unique(antonyms, 10),
        "examples": _unique(examples, 5),
        "etymology": entry.get("origin"),
        "source": "Free Dictionary API",
    }


def parse_oxford(payload: Dict[str, Any], word: str, language: str) -> Dict[str, Any]:
    definitions, examples, synonyms = [], [], []
    for lexical in payload["results"][0].get("lexicalEntries") or []:
        part_of_speech = (lexical.get("lexicalCategory") or {}).get("text")
        for entry in lexical.get("entries") or []:
            for sense in entry.get("senses") or []:
                for text in sense.get("definitions") or []:
                    definitions.append({"partOfSpeech": part_of_speech, "definition": text})
                examples += [item["text"] for item in sense.get("examples") or []]
                synonyms += [item["text"] for item in sense.get("synonyms") or []]
    if not definitions:
        raise LookupError(f"No Oxford senses for {word!r}")
    return {
        "word": word,
        "phonetic": None,
        "pronunciation": None,
        "language": language,
        "definitions": definitions[:10],
        "synonyms": _unique(synonyms, 10),
        "antonyms": [],
        "examples": _unique(examples, 5),
        "etymology": None,
        "source": "Oxford Dictionary API",
    }


def lookup_builtin(word: str, language: str) -> Optional[Dict[str, Any]]:
    entry = MINI_DICTIONARY.get(word) if language == "en" else None
    if entry is None:
        return None
    return {"word": word, "pronunciation": None, "language": language, "source": "Built-in Dictionary", **entry}


def format_definition(entry: Dict[str, Any], detailed: bool) -> str:
    limit = 10 if detailed else 3
    lines = [f"📚 *Dictionary: {entry['word'].capitalize()}*", ""]
    if entry.get("phonetic"):
        lines.append(f"🔊 *Phonetic:* /{entry['phonetic'].strip('/')}/")
    if entry.get("pronunciation"):
        lines.append("🎵 *Pronunciation:* Available (audio)")
    lines += [f"🌍 *Language:* {entry['language'].upper()}", "", "📖 *Definitions:*"]

    for index, item in enumerate(entry["definitions"][:limit], 1):
        pos = f"*{item['partOfSpeech']}* " if item.get("partOfSpeech") else ""
        lines.append(f"{index}. {pos}{item['definition']}")
        if detailed and item.get("example"):
            lines.append(f'   *Example:* "{item["example"]}"')
        lines.append("")
    extra = len(entry["definitions"]) - limit
    if extra > 0:
        lines += [f"📋 *{extra} more definitions available*", ""]

    if entry.get("synonyms"):
        lines.append(f"🔄 *Synonyms:* {', '.join(entry['synonyms'][:5])}")
    if entry.get("antonyms"):
        lines.append(f"⚖️ *Antonyms:* {', '.join(entry['antonyms'][:5])}")
    if detailed and entry.get("etymology"):
        lines += ["", f"📜 *Etymology:* {entry['etymology']}"]
    if detailed and entry.get("examples"):
        lines += ["", "💬 *Examples:*"]
        lines += [f'{index}. "{example}"' for index, example in enumerate(entry["examples"][:3], 1)]

    lines += ["", f"✅ *Source:* {entry['source']}"]
    if not detailed:
        lines += ["", f"💡 *For detailed information:* !dict {entry['word']} detailed:true"]
    return "\n".join(lines)


class DictionaryHandler(FunctionHandler):
    category = "tools"
    name = "dictionary"
    description = "Definitions, synonyms and examples for a word"
    schema = {
        "word": FieldSpec("string", min_length=2, max_length=100),
        "language": FieldSpec("string", required=False, format="language_code"),
        "detailed": FieldSpec("boolean", required=False),
    }
    example = {"word": "knowledge", "language": "en"}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        word = request.data["word"].strip().lower()
        language = request.data.get("language") or "en"
        detailed = request.data.get("detailed") in (True, "true")

        entry = await self.lookup(word, language)
        if entry is None:
            raise FxError(
                f'No definition found for "{word}"',
                code="WORD_NOT_FOUND",
                details={"word": word, "language": language},
            )
        entry["formatted"] = format_definition(entry, detailed)
        return success_response(entry, f"Definition of {word}")

    async def lookup(self, word: str, language: str) -> Optional[Dict[str, Any]]:
        http = self.context.http
        timeout = self.context.lookup_timeout
        try:
            entries = await http.get_json(
                f"{FREE_DICTIONARY_URL}/{language}/{quote(word)}", timeout=timeout, retries=0
            )
            if entries:
                return parse_free_dictionary(entries, language)
        except (UpstreamError, LookupError, TypeError, AttributeError) as exc:
            logger.info("Free Dictionary lookup failed for %r: %s", word, exc)

        keys = self.context.api_keys
        if keys.oxford_app_id and keys.oxford_app_key:
            try:
                payload = await http.get_json(
                    f"{OXFORD_URL}/{language}/{quote(word)}",
                    headers={"app_id": keys.oxford_app_id, "app_key": keys.oxford_app_key},
                    timeout=timeout,
                    retries=0,
                )
                return parse_oxford(payload, word, language)
            except (UpstreamError, LookupError, TypeError, AttributeError) as exc:
                logger.info("Oxford lookup failed for %r: %s", word, exc)

        return lookup_builtin(word, language)
