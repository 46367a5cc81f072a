"""Jokes from JokeAPI with a local fallback collection."""
import logging
import random
from typing import Any, Dict, Optional

from fxgate.core.errors import UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

JOKEAPI_URL = "https://v2.jokeapi.dev/joke"

CATEGORIES = ("any", "programming", "misc", "dark", "pun", "spooky", "christmas", "dad", "knock-knock")
# JokeAPI has no dad or knock-knock category; those are served locally
REMOTE_CATEGORIES = {"any", "programming", "misc", "dark", "pun", "spooky", "christmas"}

CATEGORY_EMOJI = {
    "programming": "💻",
    "dad": "👨",
    "knock-knock": "🚪",
    "dark": "🌚",
    "pun": "📝",
    "spooky": "👻",
    "christmas": "🎄",
    "misc": "🎭",
}

LOCAL_JOKES = {
    "programming": {
        "single": [
            "Why do programmers prefer dark mode? Because light attracts bugs!",
            "Why do programmers confuse Halloween and Christmas? Because Oct 31 == Dec 25.",
            "How many programmers does it take to change a light bulb? None, that's a hardware problem.",
            "Why did the programmer quit his job? He didn't get arrays.",
        ],
        "twopart": [
            ("Why did the programmer go broke?", "Because he used up all his cache!"),
            ("Why do programmers hate nature?", "It has too many bugs."),
        ],
    },
    "dad": {
        "single": [
            "I'm reading a book on anti-gravity. It's impossible to put down!",
            "Did you hear about the restaurant on the moon? Great food, no atmosphere.",
            "What do you call a fake noodle? An impasta.",
        ],
        "twopart": [
            ("What do you call a bear with no teeth?", "A gummy bear!"),
            ("Why don't eggs tell jokes?", "They'd crack each other up."),
        ],
    },
    "knock-knock": {
        "single": [],
        "twopart": [
            ("Knock knock.\nWho's there?\nLettuce.", "Lettuce who?\nLettuce in, it's cold out here!"),
            ("Knock knock.\nWho's there?\nTank.", "Tank who?\nYou're welcome!"),
            ("Knock knock.\nWho's there?\nBoo.", "Boo who?\nDon't cry, it's just a joke!"),
        ],
    },
    "any": {
        "single": [
            "What do you call a fish wearing a bowtie? Sofishticated.",
            "What do you call a factory that makes okay products? A satisfactory.",
            "Why did the scarecrow win an award? He was outstanding in his field.",
            "Why don't skeletons fight each other? They don't have the guts.",
        ],
        "twopart": [
            ("Why don't scientists trust atoms?", "Because they make up everything!"),
            ("What do you call a sleeping bull?", "A bulldozer!"),
        ],
    },
}


def local_joke(category: str, joke_type: str, rng: random.Random) -> Dict[str, Any]:
    """Pick from the local collection, falling back to ``any``."""
    pool = LOCAL_JOKES.get(category, {}).get(joke_type) or LOCAL_JOKES["any"][joke_type]
    if not LOCAL_JOKES.get(category, {}).get(joke_type):
        category = "any"
    picked = rng.choice(pool)
    if joke_type == "twopart":
        setup, delivery = picked
        return {"type": "twopart", "setup": setup, "delivery": delivery, "category": category, "source": "local"}
    return {"type": "single", "joke": picked, "category": category, "source": "local"}


def format_joke(joke: Dict[str, Any]) -> str:
    category = joke["category"]
    lines = [
        f"{CATEGORY_EMOJI.get(category.lower(), '😄')} *Joke Time!*",
        "",
        f"📂 *Category:* {category.capitalize()}",
        "",
    ]
    if joke["type"] == "twopart":
        lines += [f"🎤 *Setup:* {joke['setup']}", "", f"🎉 *Delivery:* {joke['delivery']}"]
    else:
        lines.append(f"😄 *Joke:* {joke['joke']}")
    lines += ["", "🎮 *Get another:* !joke category:<category> type:<single/twopart>"]
    return "\n".join(lines)


class JokeHandler(FunctionHandler):
    category = "fun"
    name = "joke"
    description = "Tell a joke (single line or setup and delivery)"
    schema = {
        "category": FieldSpec("string", required=False, enum=CATEGORIES),
        "type": FieldSpec("string", required=False, enum=("single", "twopart")),
        "language": FieldSpec("string", required=False, format="language_code"),
    }
    example = {"category": "programming", "type": "twopart"}

    def __init__(self, context: FunctionContext, rng: Optional[random.Random] = None):
        super().__init__(context)
        self.rng = rng or random.SystemRandom()

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        category = request.data.get("category") or "any"
        joke_type = request.data.get("type") or "single"
        language = request.data.get("language") or "en"

        joke = None
        if category in REMOTE_CATEGORIES:
            joke = await self._fetch(category, joke_type, language)
        if joke is None:
            joke = local_joke(category, joke_type, self.rng)
        joke["formatted"] = format_joke(joke)
        return success_response(joke, "Here's a joke")

    async def _fetch(self, category: str, joke_type: str, language: str) -> Optional[Dict[str, Any]]:
        params = {"type": joke_type, "lang": language}
        if category != "dark":
            params["safe-mode"] = ""
        try:
            data = await self.context.http.get_json(
                f"{JOKEAPI_URL}/{category.capitalize()}",
                params=params,
                timeout=self.context.lookup_timeout,
                retries=0,
            )
        except UpstreamError as exc:
            logger.info("JokeAPI failed: %s", exc)
            return None
        if not isinstance(data, dict) or data.get("error") or data.get("type") not in ("single", "twopart"):
            logger.info("JokeAPI returned no usable joke: %r", data)
            return None
        joke = {"type": data["type"], "category": (data.get("category") or category).lower(), "source": "JokeAPI"}
        if data["type"] == "twopart":
            joke.update(setup=data.get("setup", ""), delivery=data.get("delivery", ""))
        else:
            joke["joke"] = data.get("joke", "")
        return joke
