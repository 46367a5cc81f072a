"""Quotes from Quotable, with a small local collection as fallback."""
import logging
import random
from typing import Any, Dict, List, Optional

from fxgate.core.errors import UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

QUOTABLE_URL = "https://api.quotable.io"

LOCAL_QUOTES = {
    "inspirational": [
        ("The only way to do great work is to love what you do.", "Steve Jobs"),
        ("Believe you can and you're halfway there.", "Theodore Roosevelt"),
        ("Your time is limited, don't waste it living someone else's life.", "Steve Jobs"),
        ("The future belongs to those who believe in the beauty of their dreams.", "Eleanor Roosevelt"),
        ("It always seems impossible until it's done.", "Nelson Mandela"),
    ],
    "motivational": [
        ("Don't watch the clock; do what it does. Keep going.", "Sam Levenson"),
        ("The only place where success comes before work is in the dictionary.", "Vidal Sassoon"),
        ("Success is not final, failure is not fatal: it is the courage to continue that counts.", "Winston Churchill"),
        ("The harder I work, the more luck I seem to have.", "Thomas Jefferson"),
    ],
    "life": [
        ("In the end, it's not the years in your life that count. It's the life in your years.", "Abraham Lincoln"),
        ("Life is what happens to you while you're busy making other plans.", "Allen Saunders"),
        ("The purpose of our lives is to be happy.", "Dalai Lama"),
    ],
    "wisdom": [
        ("The only true wisdom is in knowing you know nothing.", "Socrates"),
        ("Knowing yourself is the beginning of all wisdom.", "Aristotle"),
        ("The journey of a thousand miles begins with one step.", "Lao Tzu"),
    ],
}

CATEGORIES = tuple(LOCAL_QUOTES) + ("random",)


def local_quotes(category: str, author: Optional[str], count: int, rng: random.Random) -> List[Dict[str, Any]]:
    if category == "random" or category not in LOCAL_QUOTES:
        pool = [(text, who, cat) for cat, quotes in LOCAL_QUOTES.items() for text, who in quotes]
    else:
        pool = [(text, who, category) for text, who in LOCAL_QUOTES[category]]
    if author:
        by_author = [entry for entry in pool if author.lower() in entry[1].lower()]
        pool = by_author or pool
    picked = rng.sample(pool, min(count, len(pool)))
    return [{"content": text, "author": who, "category": cat, "tags": [cat], "source": "local"} for text, who, cat in picked]


def format_quotes(quotes: List[Dict[str, Any]]) -> str:
    lines = ["💬 *Quote of the Moment*" if len(quotes) == 1 else f"💬 *{len(quotes)} Quotes*", ""]
    for quote in quotes:
        lines += [f"_\"{quote['content']}\"_", f"   — {quote['author']}", ""]
    lines.append("🎮 *More:* !quote category:<category> author:<name>")
    return "\n".join(lines)


class QuoteHandler(FunctionHandler):
    category = "fun"
    name = "quote"
    description = "Famous quotes by category or author"
    schema = {
        "category": FieldSpec("string", required=False, enum=CATEGORIES),
        "author": FieldSpec("string", required=False, max_length=100),
        "count": FieldSpec("integer", required=False, min=1, max=5),
    }
    example = {"category": "inspirational"}

    def __init__(self, context: FunctionContext, rng: Optional[random.Random] = None):
        super().__init__(context)
        self.rng = rng or random.SystemRandom()

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        category = request.data.get("category") or "inspirational"
        author = request.data.get("author")
        count = int(float(request.data.get("count") or 1))

        quotes = await self._fetch(category, author, count)
        if not quotes:
            quotes = local_quotes(category, author, count, self.rng)
        return success_response(
            {
                "category": category,
                "author": author,
                "count": len(quotes),
                "quotes": quotes,
                "formatted": format_quotes(quotes),
            },
            "Quote retrieved",
        )

    async def _fetch(self, category: str, author: Optional[str], count: int) -> List[Dict[str, Any]]:
        if author:
            url, params = f"{QUOTABLE_URL}/quotes", {"author": author, "limit": count}
        elif category != "random":
            url, params = f"{QUOTABLE_URL}/quotes", {"tags": category, "limit": count}
        else:
            url, params = f"{QUOTABLE_URL}/quotes/random", {"limit": count}
        try:
            payload = await self.context.http.get_json(
                url, params=params, timeout=self.context.lookup_timeout, retries=0
            )
        except UpstreamError as exc:
            logger.info("Quotable failed: %s", exc)
            return []
        results = payload.get("results", []) if isinstance(payload, dict) else payload
        quotes = []
        for item in (results or [])[:count]:
            if not isinstance(item, dict) or not item.get("content"):
                continue
            tags = item.get("tags") or [category]
            quotes.append({
                "content": item["content"],
                "author": item.get("author", "Unknown"),
                "category": tags[0],
                "tags": tags,
                "source": "Quotable",
            })
        return quotes
