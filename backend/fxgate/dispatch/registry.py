"""Function registry: explicit (category, name) -> handler class table.

Handler modules are imported lazily on first use and the instance is
cached under ``"category:name"`` until :meth:`FunctionRegistry.clear_cache`
is called (``DELETE /cache``).
"""
import importlib
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from fxgate.core.errors import FunctionNotFound
from fxgate.functions.base import FunctionContext, FunctionHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionSpec:
    """One registry entry.

    Attributes:
        category: Category the function is addressed under.
        name: Function name within the category.
        target: ``"package.module:ClassName"`` of the handler.
        description: One line shown by discovery endpoints.
    """
    category: str
    name: str
    target: str
    description: str = ""

    @property
    def key(self) -> str:
        return f"{self.category}:{self.name}"


_F = "fxgate.functions"

FUNCTION_TABLE: Tuple[FunctionSpec, ...] = (
    # tools
    FunctionSpec("tools", "qr", f"{_F}.tools.qr:QrHandler", "Generate a QR code image"),
    FunctionSpec("tools", "weather", f"{_F}.tools.weather:WeatherHandler", "Current weather and forecast"),
    FunctionSpec("tools", "currency", f"{_F}.tools.currency:CurrencyHandler", "Convert between currencies"),
    FunctionSpec("tools", "dictionary", f"{_F}.tools.dictionary:DictionaryHandler", "Look up a word"),
    FunctionSpec("tools", "translate", f"{_F}.tools.translate:TranslateHandler", "Translate text"),
    FunctionSpec("tools", "shortlink", f"{_F}.tools.shortlink:ShortlinkHandler", "Create a short link"),
    FunctionSpec("tools", "tosticker", f"{_F}.tools.tosticker:ToStickerHandler", "Turn an image into a sticker"),
    FunctionSpec("tools", "toimg", f"{_F}.tools.toimg:ToImageHandler", "Convert a sticker or image format"),
    # fun
    FunctionSpec("fun", "dice", f"{_F}.fun.dice:DiceHandler", "Roll dice in XdY+Z notation"),
    FunctionSpec("fun", "rps", f"{_F}.fun.rps:RockPaperScissorsHandler", "Play rock paper scissors"),
    FunctionSpec("fun", "joke", f"{_F}.fun.joke:JokeHandler", "Tell a joke"),
    FunctionSpec("fun", "advice", f"{_F}.fun.advice:AdviceHandler", "Give some advice"),
    FunctionSpec("fun", "quote", f"{_F}.fun.quote:QuoteHandler", "Share a quote"),
    # ai
    FunctionSpec("ai", "gpt", f"{_F}.ai.gpt:GptHandler", "Chat completion via OpenAI"),
    # god
    FunctionSpec("god", "verse", f"{_F}.god.verse:VerseHandler", "Look up a Bible verse"),
    # group
    FunctionSpec("group", "tagall", f"{_F}.group.tagall:TagAllHandler", "Mention every group member"),
)


class FunctionRegistry:
    """Resolves and caches handler instances."""

    def __init__(self, context: FunctionContext, table: Sequence[FunctionSpec] = FUNCTION_TABLE):
        self.context = context
        self._specs: "OrderedDict[str, FunctionSpec]" = OrderedDict((spec.key, spec) for spec in table)
        self._cache: Dict[str, FunctionHandler] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def exists(self, category: str, name: str) -> bool:
        return f"{category}:{name}" in self._specs

    def is_cached(self, category: str, name: str) -> bool:
        return f"{category}:{name}" in self._cache

    def get(self, category: str, name: str) -> Tuple[FunctionHandler, bool]:
        """Return ``(handler, cache_hit)``.

        Raises:
            FunctionNotFound: If no handler is registered for the pair.
        """
        key = f"{category}:{name}"
        spec = self._specs.get(key)
        if spec is None:
            raise FunctionNotFound(category, name, self.categories())

        with self._lock:
            handler = self._cache.get(key)
            if handler is not None:
                return handler, True
            handler = self._load(spec)
            self._cache[key] = handler
        logger.info("Loaded function %s from %s", key, spec.target)
        return handler, False

    def _load(self, spec: FunctionSpec) -> FunctionHandler:
        module_name, _, class_name = spec.target.partition(":")
        module = importlib.import_module(module_name)
        handler_cls = getattr(module, class_name)
        if not (isinstance(handler_cls, type) and issubclass(handler_cls, FunctionHandler)):
            raise TypeError(f"{spec.target} is not a FunctionHandler subclass")
        return handler_cls(self.context)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def categories(self) -> List[str]:
        return list(dict.fromkeys(spec.category for spec in self._specs.values()))

    def specs(self, category: Optional[str] = None) -> List[FunctionSpec]:
        return [spec for spec in self._specs.values() if category is None or spec.category == category]

    def list_available(self) -> Dict[str, object]:
        """Discovery payload for ``GET /functions``."""
        by_category: Dict[str, List[Dict[str, str]]] = {}
        functions = []
        for spec in self._specs.values():
            by_category.setdefault(spec.category, []).append(
                {"name": spec.name, "category": spec.category, "description": spec.description}
            )
            functions.append({
                "name": spec.name,
                "category": spec.category,
                "description": spec.description,
                "endpoint": "/execute",
                "method": "POST",
                "exampleRequest": {
                    "category": spec.category,
                    "function": spec.name,
                    "data": {},
                    "metadata": {},
                },
            })
        return {
            "total": len(functions),
            "categories": list(by_category),
            "functions": functions,
            "byCategory": by_category,
        }

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def cached_keys(self) -> List[str]:
        return list(self._cache)

    def clear_cache(self) -> int:
        """Drop every cached handler and return how many were dropped."""
        with self._lock:
            cleared = len(self._cache)
            self._cache.clear()
        logger.info("Function cache cleared (%d entries)", cleared)
        return cleared
