"""In-memory URL shortener.

Links live on the handler instance, so they survive for as long as the
registry keeps the handler cached and vanish on ``DELETE /cache``.
"""
import hashlib
import logging
import re
import secrets
import string
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fxgate.core.errors import FxError
from fxgate.core.response import success_response
from fxgate.core.validation import FieldSpec, validate_url
from fxgate.functions.base import FunctionHandler, FunctionContext, FunctionRequest

logger = logging.getLogger(__name__)

SHORT_BASE_URL = "https://short.example.com"
MAX_LINKS_PER_USER = 100
DEFAULT_LIFETIME = timedelta(days=30)

_SLUG_ALPHABET = string.ascii_lowercase + string.digits
_EXPIRES_IN = re.compile(r"^(\d+)([dhm])$")
_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


def parse_expires_in(expires_in: Optional[str], now: datetime) -> Optional[datetime]:
    """``"7d"`` / ``"12h"`` / ``"30m"``; anything else means 30 days."""
    if not expires_in:
        return None
    match = _EXPIRES_IN.match(str(expires_in))
    if not match:
        return now + DEFAULT_LIFETIME
    value, unit = match.groups()
    return now + timedelta(**{_UNITS[unit]: int(value)})


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


@dataclass
class ShortLink:
    id: str
    slug: str
    original_url: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    password_hash: Optional[str] = None
    clicks: int = 0
    last_clicked: Optional[datetime] = None

    @property
    def short_url(self) -> str:
        return f"{SHORT_BASE_URL}/{self.slug}"

    @property
    def stats_url(self) -> str:
        return f"{SHORT_BASE_URL}/stats/{self.slug}"

    def expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "originalUrl": self.original_url,
            "shortUrl": self.short_url,
            "statsUrl": self.stats_url,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "clicks": self.clicks,
            "lastClicked": self.last_clicked.isoformat() if self.last_clicked else None,
            "hasPassword": self.password_hash is not None,
        }


def format_link(link: ShortLink) -> str:
    original = link.original_url if len(link.original_url) <= 80 else link.original_url[:80] + "..."
    lines = [
        "🔗 *Short Link Created!*",
        "",
        "📝 *Original URL:*",
        original,
        "",
        "✨ *Short URL:*",
        link.short_url,
        "",
        f"📊 *Stats URL:* {link.stats_url}",
        f"📅 *Created:* {link.created_at.date().isoformat()}",
        f"⏰ *Expires:* {link.expires_at.date().isoformat() if link.expires_at else 'Never'}",
        f"👆 *Clicks:* {link.clicks}",
    ]
    if link.password_hash:
        lines += ["", "🔒 *Password Protected*"]
    lines += ["", "🎮 *Create another:* !short <url> custom:<slug> expires:<time>"]
    return "\n".join(lines)


class ShortlinkHandler(FunctionHandler):
    category = "tools"
    name = "shortlink"
    description = "Create, resolve and inspect short links (in-memory)"
    schema = {
        "action": FieldSpec("string", required=False, enum=("create", "resolve", "stats")),
        "url": FieldSpec("string", required=False, max_length=2048),
        "slug": FieldSpec("string", required=False),
        "customSlug": FieldSpec("string", required=False, min_length=3, max_length=30,
                                pattern=r"^[A-Za-z0-9_-]+$"),
        "expiresIn": FieldSpec("string", required=False),
        "password": FieldSpec("string", required=False, max_length=100),
        "userId": FieldSpec("string", required=False),
    }
    example = {"url": "https://example.com/some/long/path", "customSlug": "my-link", "expiresIn": "7d"}

    def __init__(self, context: FunctionContext):
        super().__init__(context)
        self._lock = threading.Lock()
        self.links: Dict[str, ShortLink] = {}
        self.user_links: Dict[str, List[str]] = {}

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        action = request.data.get("action") or "create"
        if action == "resolve":
            return self.resolve(request.data)
        if action == "stats":
            return self.stats(request.data)
        return self.create(request.data)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        url = data.get("url")
        if not url:
            raise FxError("URL to shorten is required", code="MISSING_FIELD", details={"field": "url"})
        valid, message = validate_url(url, require_protocol=True)
        if not valid:
            raise FxError(message, code="INVALID_FORMAT", details={"field": "url"})

        now = datetime.now(timezone.utc)
        user_id = data.get("userId")
        password = data.get("password")
        with self._lock:
            self._drop_expired(now)
            slug = self._claim_slug(data.get("customSlug"))
            link = ShortLink(
                id=str(uuid.uuid4()),
                slug=slug,
                original_url=url,
                created_at=now,
                expires_at=parse_expires_in(data.get("expiresIn"), now),
                user_id=user_id,
                password_hash=_hash_password(password) if password else None,
            )
            self.links[slug] = link
            if user_id:
                owned = self.user_links.setdefault(user_id, [])
                owned.append(slug)
                if len(owned) > MAX_LINKS_PER_USER:
                    oldest = self.links.get(owned[0])
                    if oldest is not None and oldest.user_id == user_id:
                        self._forget(oldest)
                    else:
                        owned.pop(0)

        logger.info("Short link %s -> %s", slug, url)
        return success_response({**link.to_dict(), "formatted": format_link(link)}, "Short link created")

    def resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        link = self._lookup(data.get("slug"))
        if link.password_hash:
            supplied = data.get("password")
            if not supplied or not secrets.compare_digest(_hash_password(supplied), link.password_hash):
                raise FxError("Password required or incorrect", code="FORBIDDEN", details={"slug": link.slug})
        with self._lock:
            link.clicks += 1
            link.last_clicked = datetime.now(timezone.utc)
        return success_response(
            {
                "slug": link.slug,
                "url": link.original_url,
                "clicks": link.clicks,
                "formatted": f"🔗 {link.short_url} → {link.original_url}",
            },
            "Short link resolved",
        )

    def stats(self, data: Dict[str, Any]) -> Dict[str, Any]:
        link = self._lookup(data.get("slug"))
        user_id = data.get("userId")
        if user_id and link.user_id and link.user_id != user_id:
            raise FxError("You do not have permission to view these stats", code="FORBIDDEN")
        info = link.to_dict()
        info["formatted"] = (
            f"📊 *Stats for {link.short_url}*\n\n"
            f"👆 *Clicks:* {link.clicks}\n"
            f"🕒 *Last clicked:* {info['lastClicked'] or 'Never'}"
        )
        return success_response(info, "Short link statistics")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup(self, slug: Optional[str]) -> ShortLink:
        if not slug:
            raise FxError("slug is required", code="MISSING_FIELD", details={"field": "slug"})
        now = datetime.now(timezone.utc)
        with self._lock:
            link = self.links.get(slug)
            if link is not None and link.expired(now):
                self._forget(link)
                link = None
        if link is None:
            raise FxError("Short link not found", code="NOT_FOUND", details={"slug": slug})
        return link

    def _claim_slug(self, custom: Optional[str]) -> str:
        if custom:
            if custom in self.links:
                raise FxError(
                    "Custom slug is already taken. Try a different one.",
                    code="SLUG_UNAVAILABLE",
                    details={"slug": custom},
                )
            return custom
        for length in (6, 6, 6, 8, 8, 8, 10, 10, 10, 12):
            slug = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(length))
            if slug not in self.links:
                return slug
        raise FxError("Failed to generate a unique slug", code="CONFLICT")

    def _drop_expired(self, now: datetime) -> None:
        for link in [link for link in self.links.values() if link.expired(now)]:
            self._forget(link)

    def _forget(self, link: ShortLink) -> None:
        """Remove *link* from the slug table and from its owner's list."""
        self.links.pop(link.slug, None)
        owned = self.user_links.get(link.user_id) if link.user_id else None
        if owned is not None:
            if link.slug in owned:
                owned.remove(link.slug)
            if not owned:
                del self.user_links[link.user_id]
