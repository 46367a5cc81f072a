"""Rock paper scissors, classic or with lizard and Spock."""
import random
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fxgate.core.errors import FxError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

# winner -> {loser: verb phrase}
RULES = {
    "rock": {"scissors": "Rock crushes scissors", "lizard": "Rock crushes lizard"},
    "paper": {"rock": "Paper covers rock", "spock": "Paper disproves Spock"},
    "scissors": {"paper": "Scissors cuts paper", "lizard": "Scissors decapitates lizard"},
    "lizard": {"spock": "Lizard poisons Spock", "paper": "Lizard eats paper"},
    "spock": {"scissors": "Spock smashes scissors", "rock": "Spock vaporizes rock"},
}

MODES = {
    "classic": ("rock", "paper", "scissors"),
    "extended": ("rock", "paper", "scissors", "lizard", "spock"),
}

ALIASES = {"r": "rock", "p": "paper", "s": "scissors", "l": "lizard", "sp": "spock"}

EMOJI = {"rock": "🪨", "paper": "📄", "scissors": "✂️", "lizard": "🦎", "spock": "🖖"}

OUTCOME_MESSAGES = {"win": "You win!", "lose": "You lose!", "draw": "It's a draw!"}
OUTCOME_EMOJI = {"win": "🎉", "lose": "😢", "draw": "🤝"}


def normalize_choice(choice: str, mode: str) -> Optional[str]:
    value = choice.strip().lower()
    value = ALIASES.get(value, value)
    return value if value in MODES[mode] else None


def decide(player: str, bot: str) -> Dict[str, Any]:
    if player == bot:
        return {"outcome": "draw", "playerScore": 0.5, "botScore": 0.5, "explanation": "Both chose the same!"}
    if bot in RULES[player]:
        return {"outcome": "win", "playerScore": 1, "botScore": 0, "explanation": RULES[player][bot]}
    return {"outcome": "lose", "playerScore": 0, "botScore": 1, "explanation": RULES[bot][player]}


@dataclass
class RpsStats:
    games: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    streak: int = 0
    best_streak: int = 0

    def record(self, outcome: str) -> None:
        self.games += 1
        if outcome == "win":
            self.wins += 1
            self.streak += 1
            self.best_streak = max(self.best_streak, self.streak)
        else:
            self.streak = 0
            if outcome == "lose":
                self.losses += 1
            else:
                self.draws += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "games": self.games,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "winRate": round(self.wins / self.games * 100, 1) if self.games else 0,
            "currentStreak": self.streak,
            "bestStreak": self.best_streak,
        }


class RockPaperScissorsHandler(FunctionHandler):
    category = "fun"
    name = "rps"
    description = "Play rock paper scissors (classic or extended with lizard and Spock)"
    schema = {
        "playerChoice": FieldSpec("string", max_length=20),
        "mode": FieldSpec("string", required=False, enum=tuple(MODES)),
        "userId": FieldSpec("string", required=False),
    }
    example = {"playerChoice": "rock", "mode": "classic", "userId": "user123"}

    def __init__(self, context: FunctionContext, rng: Optional[random.Random] = None):
        super().__init__(context)
        self.rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self.stats: Dict[str, RpsStats] = {}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        mode = request.data.get("mode") or "classic"
        player = normalize_choice(request.data["playerChoice"], mode)
        if player is None:
            raise FxError(
                f"For {mode} mode, valid choices are: {', '.join(MODES[mode])}",
                code="INVALID_FORMAT",
                details={"field": "playerChoice", "choices": list(MODES[mode])},
            )
        bot = self.rng.choice(MODES[mode])
        outcome = decide(player, bot)

        stats = None
        if request.user_id != "anonymous":
            with self._lock:
                entry = self.stats.setdefault(request.user_id, RpsStats())
                entry.record(outcome["outcome"])
                stats = entry.to_dict()

        message = OUTCOME_MESSAGES[outcome["outcome"]]
        headline = f"{OUTCOME_EMOJI[outcome['outcome']]} *{message}*"
        lines = [
            f"✊ *Rock Paper Scissors ({mode})*",
            "",
            f"👤 *You:* {EMOJI[player]} {player}",
            f"🤖 *Bot:* {EMOJI[bot]} {bot}",
            "",
            headline,
            outcome["explanation"],
        ]
        if stats:
            lines += ["", f"📊 *Record:* {stats['wins']}W / {stats['losses']}L / {stats['draws']}D"]
        return success_response(
            {
                "mode": mode,
                "playerChoice": player,
                "botChoice": bot,
                "result": outcome["outcome"],
                "playerScore": outcome["playerScore"],
                "botScore": outcome["botScore"],
                "explanation": outcome["explanation"],
                "stats": stats,
                "formatted": "\n".join(lines),
            },
            message,
        )
