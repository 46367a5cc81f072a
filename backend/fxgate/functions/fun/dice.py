"""Dice rolling with ``XdY±Z`` notation, optional bets and per-user stats."""
import random
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fxgate.core.errors import FxError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

_NOTATION = re.compile(r"^(\d+)?d(\d+)([+-]\d+)?$", re.IGNORECASE)

MAX_DICE = 100
MAX_SIDES = 1000
MAX_ROLLS = 100


@dataclass
class DiceSpec:
    count: int
    sides: int
    modifier: int

    @property
    def notation(self) -> str:
        return f"{self.count}d{self.sides}{self.modifier:+d}"


def parse_notation(notation: str, extra_modifier: int = 0) -> Optional[DiceSpec]:
    """``"2d20+5"`` -> ``DiceSpec(2, 20, 5)``; ``None`` when out of range."""
    match = _NOTATION.match(notation.strip())
    if not match:
        return None
    count = int(match.group(1)) if match.group(1) else 1
    sides = int(match.group(2))
    modifier = int(match.group(3) or 0) + extra_modifier
    if not 1 <= count <= MAX_DICE or not 2 <= sides <= MAX_SIDES:
        return None
    return DiceSpec(count, sides, modifier)


def roll_set(spec: DiceSpec, rng: random.Random) -> Dict[str, Any]:
    faces = [rng.randint(1, spec.sides) for _ in range(spec.count)]
    dice_total = sum(faces)
    return {
        "individualResults": [
            {"die": f"{i}d{spec.sides}", "result": face, "isCrit": face == spec.sides, "isFumble": face == 1}
            for i, face in enumerate(faces, 1)
        ],
        "diceTotal": dice_total,
        "modifier": spec.modifier,
        "total": dice_total + spec.modifier,
        "hasCrit": spec.sides in faces,
        "hasFumble": 1 in faces,
    }


def evaluate_bet(total: int, rolls: int, target: float, amount: float) -> Dict[str, Any]:
    """A multi-roll bet is won when the average meets the target."""
    score = total / rolls if rolls > 1 else total
    won = score >= target
    return {
        "won": won,
        "amount": amount * 2 if won else 0,
        "profit": amount if won else -amount,
        "score": score,
        "target": target,
    }


@dataclass
class DiceStats:
    total_rolls: int = 0
    total_dice: int = 0
    total_sum: int = 0
    highest: Optional[int] = None
    lowest: Optional[int] = None
    criticals: int = 0
    fumbles: int = 0
    by_notation: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRolls": self.total_rolls,
            "totalDiceRolled": self.total_dice,
            "averageRoll": round(self.total_sum / self.total_rolls, 2) if self.total_rolls else 0,
            "highestRoll": self.highest,
            "lowestRoll": self.lowest,
            "naturalCriticals": self.criticals,
            "naturalFumbles": self.fumbles,
            "favoriteDice": max(self.by_notation, key=self.by_notation.get) if self.by_notation else None,
        }


def format_roll(result: Dict[str, Any]) -> str:
    lines = [f"🎲 *Dice Roll: {result['diceNotation']}*", ""]
    for index, roll in enumerate(result["results"][:10], 1):
        faces = ", ".join(str(die["result"]) for die in roll["individualResults"])
        flags = (" 💥" if roll["hasCrit"] else "") + (" 💀" if roll["hasFumble"] else "")
        prefix = f"Roll {index}: " if result["rolls"] > 1 else ""
        lines.append(f"{prefix}[{faces}] {roll['modifier']:+d} = *{roll['total']}*{flags}")
    if result["rolls"] > 10:
        lines.append(f"... and {result['rolls'] - 10} more rolls")
    lines.append("")
    if result["rolls"] > 1:
        lines += [f"📊 *Total:* {result['total']}", f"📈 *Average:* {result['average']:.2f}"]
    if result["naturalCriticals"]:
        lines.append(f"💥 *Natural criticals:* {result['naturalCriticals']}")
    if result["naturalFumbles"]:
        lines.append(f"💀 *Natural fumbles:* {result['naturalFumbles']}")
    bet = result.get("betResult")
    if bet:
        verdict = f"🏆 *You won {bet['amount']}!*" if bet["won"] else f"😢 *You lost {-bet['profit']}*"
        lines += ["", f"🎯 *Target:* {bet['target']} | *Score:* {bet['score']:g}", verdict]
    lines += ["", "🎮 *Roll again:* !dice 2d20+5 rolls:3"]
    return "\n".join(lines)


class DiceHandler(FunctionHandler):
    category = "fun"
    name = "dice"
    description = "Roll dice using XdY+Z notation, with optional bets and per-user stats"
    schema = {
        "dice": FieldSpec("string", required=False, max_length=20),
        "modifier": FieldSpec("integer", required=False, min=-1000, max=1000),
        "rolls": FieldSpec("integer", required=False, min=1, max=MAX_ROLLS),
        "bet": FieldSpec("number", required=False, min=0),
        "target": FieldSpec("number", required=False),
        "userId": FieldSpec("string", required=False),
        "action": FieldSpec("string", required=False, enum=("roll", "stats")),
    }
    example = {"dice": "2d20+5", "rolls": 1, "userId": "user123"}

    def __init__(self, context: FunctionContext, rng: Optional[random.Random] = None):
        super().__init__(context)
        self.rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self.stats: Dict[str, DiceStats] = {}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        if data.get("action") == "stats":
            stats = self.stats.get(request.user_id, DiceStats()).to_dict()
            stats["formatted"] = (
                f"🎲 *Dice stats for {request.user_id}*\n\n"
                f"🔢 *Rolls:* {stats['totalRolls']}\n"
                f"📈 *Average:* {stats['averageRoll']}\n"
                f"💥 *Criticals:* {stats['naturalCriticals']} | 💀 *Fumbles:* {stats['naturalFumbles']}"
            )
            return success_response(stats, "Dice statistics")

        spec = parse_notation(str(data.get("dice") or "1d6"), int(float(data.get("modifier") or 0)))
        if spec is None:
            raise FxError(
                "Invalid dice notation. Use format like: 2d20+5, d6, 3d10-2",
                code="INVALID_FORMAT",
                details={"field": "dice", "value": data.get("dice")},
            )
        rolls = int(float(data.get("rolls") or 1))

        results = [roll_set(spec, self.rng) for _ in range(rolls)]
        total = sum(roll["total"] for roll in results)
        result = {
            "diceNotation": spec.notation,
            "rolls": rolls,
            "results": results,
            "total": total,
            "average": total / rolls,
            "naturalCriticals": sum(1 for roll in results if roll["hasCrit"]),
            "naturalFumbles": sum(1 for roll in results if roll["hasFumble"]),
            "betResult": None,
        }
        bet = float(data.get("bet") or 0)
        if bet > 0 and data.get("target") is not None:
            result["betResult"] = evaluate_bet(total, rolls, float(data["target"]), bet)

        if request.user_id != "anonymous":
            self._update_stats(request.user_id, spec, results)
        result["formatted"] = format_roll(result)
        return success_response(result, f"Rolled {spec.notation}")

    def _update_stats(self, user_id: str, spec: DiceSpec, results: List[Dict[str, Any]]) -> None:
        with self._lock:
            stats = self.stats.setdefault(user_id, DiceStats())
            for roll in results:
                stats.total_rolls += 1
                stats.total_dice += spec.count
                stats.total_sum += roll["total"]
                stats.highest = roll["total"] if stats.highest is None else max(stats.highest, roll["total"])
                stats.lowest = roll["total"] if stats.lowest is None else min(stats.lowest, roll["total"])
                stats.criticals += int(roll["hasCrit"])
                stats.fumbles += int(roll["hasFumble"])
            stats.by_notation[spec.notation] = stats.by_notation.get(spec.notation, 0) + len(results)
