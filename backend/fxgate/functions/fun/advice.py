"""Bite-sized advice by topic."""
import logging
import random
from typing import Any, Dict, List, Optional

from fxgate.core.errors import UpstreamError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

ADVICE_SLIP_URL = "https://api.adviceslip.com/advice"

ADVICE = {
    "general": [
        "Take one day at a time.",
        "Learn from your mistakes.",
        "Be kind to yourself and others.",
        "Stay curious and keep learning.",
        "Don't compare your journey to others.",
        "Practice gratitude daily.",
        "Trust your instincts.",
        "Celebrate small victories.",
    ],
    "work": [
        "Prioritize your tasks.",
        "Take regular breaks to avoid burnout.",
        "Communicate clearly with your team.",
        "Set realistic deadlines.",
        "Learn to say no when necessary.",
        "Ask for feedback regularly.",
    ],
    "study": [
        "Create a consistent study schedule.",
        "Break large tasks into smaller ones.",
        "Use active recall for better memory.",
        "Teach what you learn to someone else.",
        "Get enough sleep before exams.",
        "Don't cram; space out your learning.",
    ],
    "relationships": [
        "Communicate openly and honestly.",
        "Listen more than you speak.",
        "Show appreciation regularly.",
        "Respect each other's boundaries.",
        "Learn to forgive and let go.",
    ],
    "health": [
        "Drink plenty of water daily.",
        "Get 7-8 hours of sleep each night.",
        "Exercise for at least 30 minutes daily.",
        "Eat more fruits and vegetables.",
        "Take regular screen breaks.",
    ],
    "money": [
        "Create and stick to a budget.",
        "Build an emergency fund.",
        "Avoid unnecessary debt.",
        "Invest for the long term.",
        "Live below your means.",
    ],
    "motivation": [
        "Start before you feel ready.",
        "Progress over perfection.",
        "Small steps lead to big changes.",
        "Action breeds confidence.",
        "Believe in yourself.",
    ],
}

TOPIC_EMOJI = {
    "general": "💡",
    "work": "💼",
    "study": "📚",
    "relationships": "❤️",
    "health": "🏃",
    "money": "💰",
    "motivation": "🔥",
    "random": "🎲",
}

TOPICS = tuple(ADVICE) + ("random",)


def pick_local(topic: str, count: int, rng: random.Random) -> List[Dict[str, Any]]:
    """Distinct entries while they last, then repeats."""
    pool = ADVICE.get(topic, ADVICE["general"])
    indices = rng.sample(range(len(pool)), min(count, len(pool)))
    while len(indices) < count:
        indices.append(rng.randrange(len(pool)))
    return [
        {"id": f"{topic}_{index}", "advice": pool[index], "topic": topic, "source": "local"}
        for index in indices
    ]


class AdviceHandler(FunctionHandler):
    category = "fun"
    name = "advice"
    description = "Get one or more pieces of advice on a topic"
    schema = {
        "topic": FieldSpec("string", required=False, enum=TOPICS),
        "count": FieldSpec("integer", required=False, min=1, max=10),
    }
    example = {"topic": "work", "count": 3}

    def __init__(self, context: FunctionContext, rng: Optional[random.Random] = None):
        super().__init__(context)
        self.rng = rng or random.SystemRandom()
        self.served: Dict[str, int] = {}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        topic = request.data.get("topic") or "general"
        count = int(float(request.data.get("count") or 1))

        items: List[Dict[str, Any]] = []
        if topic == "random":
            items = await self._fetch_slips(count)
        if len(items) < count:
            items += pick_local("general" if topic == "random" else topic, count - len(items), self.rng)
        self.served[topic] = self.served.get(topic, 0) + len(items)

        emoji = TOPIC_EMOJI.get(topic, "💡")
        lines = [f"{emoji} *Advice: {topic.capitalize()}*", ""]
        lines += [f"{index}. {item['advice']}" for index, item in enumerate(items, 1)]
        lines += ["", "🎮 *More:* !advice topic:<topic> count:<1-10>"]
        return success_response(
            {"topic": topic, "count": len(items), "advice": items, "formatted": "\n".join(lines)},
            "Advice retrieved",
        )

    async def _fetch_slips(self, count: int) -> List[Dict[str, Any]]:
        items = []
        for _ in range(count):
            try:
                payload = await self.context.http.get_json(
                    ADVICE_SLIP_URL, timeout=self.context.lookup_timeout, retries=0
                )
                slip = payload["slip"]
                items.append({"id": str(slip["id"]), "advice": slip["advice"], "topic": "random", "source": "Advice Slip"})
            except (UpstreamError, KeyError, TypeError) as exc:
                logger.info("Advice Slip failed: %s", exc)
                break
        return items
