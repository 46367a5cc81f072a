"""Mention every member of a group.

The caller supplies the member list; this handler only filters it,
builds the mention text and enforces a per-group cooldown.
"""
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from fxgate.core.errors import FxError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

COOLDOWN_SECONDS = 5 * 60
MENTIONS_PER_LINE = 5


def normalize_member(member: Any) -> Dict[str, Any]:
    if isinstance(member, str):
        return {"id": member, "number": member, "name": None, "isAdmin": False}
    return {
        "id": str(member.get("id") or member.get("number")),
        "number": str(member.get("number") or member.get("id")),
        "name": member.get("name"),
        "isAdmin": bool(member.get("isAdmin")),
    }


def build_mentions(members: List[Dict[str, Any]]) -> str:
    rows = [
        " ".join(f"@{member['number'].lstrip('@')}" for member in members[start: start + MENTIONS_PER_LINE])
        for start in range(0, len(members), MENTIONS_PER_LINE)
    ]
    return "\n".join(rows)


def _member_ok(value: Any, data: Dict[str, Any]) -> Optional[str]:
    for member in value:
        if isinstance(member, str):
            if not member.strip():
                return "Member ids must be non-empty"
        elif not isinstance(member, dict) or not (member.get("id") or member.get("number")):
            return "Each member needs an id or number"
    return None


class TagAllHandler(FunctionHandler):
    category = "group"
    name = "tagall"
    description = "Build a message that mentions every group member"
    schema = {
        "members": FieldSpec("array", min_items=1, max_items=1024, check=_member_ok),
        "groupId": FieldSpec("string", required=False),
        "message": FieldSpec("string", required=False, max_length=1000),
        "excludeAdmins": FieldSpec("boolean", required=False),
        "excludeUserId": FieldSpec("string", required=False),
    }
    example = {
        "groupId": "family",
        "message": "Dinner at 8!",
        "members": [{"id": "u1", "number": "15550001"}, {"id": "u2", "number": "15550002", "isAdmin": True}],
    }

    def __init__(self, context: FunctionContext, clock: Callable[[], float] = time.monotonic):
        super().__init__(context)
        self._clock = clock
        self._lock = threading.Lock()
        self.last_used: Dict[str, float] = {}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        group_id = data.get("groupId")
        if group_id:
            self._check_cooldown(group_id)

        members = [normalize_member(member) for member in data["members"]]
        selected = members
        if data.get("excludeAdmins") in (True, "true"):
            selected = [member for member in selected if not member["isAdmin"]]
        if data.get("excludeUserId"):
            selected = [member for member in selected if member["id"] != data["excludeUserId"]]
        if not selected:
            raise FxError("No members left to tag after filtering", code="INVALID_REQUEST")

        mentions = build_mentions(selected)
        message = data.get("message") or ""
        lines = ["🏷️ *Tag All Members*", ""]
        if message:
            lines += [f"💬 *Message:* {message}", ""]
        lines.append(f"👥 *Tagging {len(selected)} members*")
        if len(selected) > 50:
            lines.append("⚠️ *Note:* Large group mentions may be rate-limited")

        if group_id:
            with self._lock:
                self.last_used[group_id] = self._clock()
        return success_response(
            {
                "groupId": group_id,
                "message": f"{message}\n\n{mentions}" if message else mentions,
                "mentions": mentions,
                "mentionedIds": [member["id"] for member in selected],
                "memberCount": len(selected),
                "totalMembers": len(members),
                "formatted": "\n".join(lines),
            },
            f"Tagging {len(selected)} members",
        )

    def _check_cooldown(self, group_id: str) -> None:
        with self._lock:
            last = self.last_used.get(group_id)
        if last is None:
            return
        remaining = COOLDOWN_SECONDS - (self._clock() - last)
        if remaining > 0:
            raise FxError(
                "Tag all was used recently in this group",
                code="LIMIT_EXCEEDED",
                details={"groupId": group_id, "retryAfter": int(remaining) + 1},
            )
