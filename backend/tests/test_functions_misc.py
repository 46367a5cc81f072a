"""Tests for ai/gpt, god/verse and group/tagall."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from fxgate.core.errors import FxError, ValidationFailed
from fxgate.functions.ai.gpt import GptHandler
from fxgate.functions.base import FunctionRequest
from fxgate.functions.god.verse import VerseHandler, builtin_passage, parse_reference
from fxgate.functions.group.tagall import COOLDOWN_SECONDS, TagAllHandler, build_mentions, normalize_member


def _request(category: str, function: str, data: dict) -> FunctionRequest:
    return FunctionRequest(category=category, function=function, data=data, request_id="req_test")


# ---------------------------------------------------------------------------
# ai/gpt
# ---------------------------------------------------------------------------

def _completion(content: str = "DNS maps names to addresses.", model: str = "gpt-4o-mini-2024-07-18", tokens=42):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
        usage=SimpleNamespace(total_tokens=tokens) if tokens is not None else None,
    )


def _client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class TestGpt:
    @pytest.mark.asyncio
    async def test_missing_key(self, context):
        with pytest.raises(FxError) as excinfo:
            await GptHandler(context).invoke(_request("ai", "gpt", {"prompt": "hi"}))
        assert excinfo.value.code == "SERVICE_UNAVAILABLE"
        assert excinfo.value.to_response()["error"]["httpStatus"] == 503

    @pytest.mark.asyncio
    async def test_completion(self, context):
        create = AsyncMock(return_value=_completion())
        handler = GptHandler(context, client=_client(create))
        result = await handler.invoke(_request("ai", "gpt", {"prompt": "  Explain DNS  "}))

        data = result["data"]
        assert data["content"] == data["response"] == "DNS maps names to addresses."
        assert data["model"] == "gpt-4o-mini-2024-07-18"
        assert data["tokens"] == 42
        assert data["prompt"] == "Explain DNS"
        assert result["metadata"]["aiProvider"] == "openai"

        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 1000
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"][0]["role"] == "system"
        assert "1000 tokens" in kwargs["messages"][0]["content"]
        assert kwargs["messages"][1] == {"role": "user", "content": "Explain DNS"}

    @pytest.mark.asyncio
    async def test_overrides_and_missing_usage(self, context):
        create = AsyncMock(return_value=_completion(content="x" * 40, model=None, tokens=None))
        handler = GptHandler(context, client=_client(create))
        result = await handler.invoke(_request("ai", "gpt", {
            "prompt": "hi", "model": "gpt-4o", "maxTokens": 50, "temperature": 0,
        }))
        assert result["data"]["model"] == "gpt-4o"
        assert result["data"]["tokens"] == 10
        kwargs = create.await_args.kwargs
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_timeout(self, context):
        create = AsyncMock(side_effect=openai.APITimeoutError(request=OPENAI_REQUEST))
        with pytest.raises(FxError) as excinfo:
            await GptHandler(context, client=_client(create)).invoke(_request("ai", "gpt", {"prompt": "hi"}))
        assert excinfo.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_rate_limited(self, context):
        error = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=OPENAI_REQUEST), body=None
        )
        create = AsyncMock(side_effect=error)
        with pytest.raises(FxError) as excinfo:
            await GptHandler(context, client=_client(create)).invoke(_request("ai", "gpt", {"prompt": "hi"}))
        assert excinfo.value.code == "RATE_LIMITED"
        assert excinfo.value.to_response()["error"]["httpStatus"] == 429

    @pytest.mark.asyncio
    async def test_prompt_length(self, context):
        with pytest.raises(ValidationFailed):
            await GptHandler(context).invoke(_request("ai", "gpt", {"prompt": "x" * 4001}))


# ---------------------------------------------------------------------------
# god/verse
# ---------------------------------------------------------------------------

class TestVerseReference:
    def test_parse(self):
        assert parse_reference("john 3:16") == {"book": "John", "chapter": 3, "verse": 16, "endVerse": None}
        assert parse_reference("1 Corinthians 13:4-7")["book"] == "1 Corinthians"
        assert parse_reference("Proverbs 3:5-6")["endVerse"] == 6

    def test_rejects(self):
        assert parse_reference("John") is None
        assert parse_reference("John 3:18-16") is None

    def test_builtin_needs_every_verse(self):
        assert builtin_passage(parse_reference("Genesis 1:1"))["verses"][0]["verse"] == 1
        assert builtin_passage(parse_reference("Genesis 1:1-2")) is None


class TestVerseHandler:
    @pytest.mark.asyncio
    async def test_bible_api(self, context, upstream):
        upstream.add("https://bible-api.com/", {
            "reference": "John 3:16",
            "text": "For God so loved the world...\n",
            "translation_name": "World English Bible",
            "verses": [{"book_name": "John", "chapter": 3, "verse": 16, "text": "For God so loved the world...\n"}],
        })
        result = await VerseHandler(context).invoke(_request("god", "verse", {
            "reference": "John 3:16", "version": "WEB",
        }))
        data = result["data"]
        assert data["source"] == "bible-api.com"
        assert data["version"] == "World English Bible"
        assert data["verses"] == [{"verse": 16, "text": "For God so loved the world...\n"}]
        call = upstream.called("https://bible-api.com/")[0]
        assert call.url.params["translation"] == "web"
        assert call.url.path == "/John 3:16"

    @pytest.mark.asyncio
    async def test_not_found(self, context, upstream):
        upstream.add("https://bible-api.com/", {"error": "not found"}, status=404)
        with pytest.raises(FxError) as excinfo:
            await VerseHandler(context).invoke(_request("god", "verse", {"reference": "John 99:1"}))
        assert excinfo.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_builtin_fallback(self, context):
        result = await VerseHandler(context).invoke(_request("god", "verse", {"reference": "John 3:16"}))
        data = result["data"]
        assert data["source"] == "built-in"
        assert data["text"].startswith("For God so loved the world")
        assert data["version"] == "King James Version"

    @pytest.mark.asyncio
    async def test_builtin_range(self, context):
        result = await VerseHandler(context).invoke(_request("god", "verse", {"reference": "Proverbs 3:5-6"}))
        data = result["data"]
        assert data["reference"] == "Proverbs 3:5-6"
        assert [item["verse"] for item in data["verses"]] == [5, 6]
        assert "*5.*" in data["formatted"]

    @pytest.mark.asyncio
    async def test_unavailable_offline(self, context):
        with pytest.raises(FxError) as excinfo:
            await VerseHandler(context).invoke(_request("god", "verse", {"reference": "Mark 1:1"}))
        assert excinfo.value.code == "SERVICE_UNAVAILABLE"
        assert excinfo.value.to_response()["error"]["httpStatus"] == 503

    @pytest.mark.asyncio
    async def test_reversed_range(self, context):
        with pytest.raises(FxError) as excinfo:
            await VerseHandler(context).invoke(_request("god", "verse", {"reference": "John 3:18-16"}))
        assert excinfo.value.code == "INVALID_FORMAT"

    @pytest.mark.asyncio
    async def test_malformed_reference(self, context):
        with pytest.raises(ValidationFailed):
            await VerseHandler(context).invoke(_request("god", "verse", {"reference": "John"}))


# ---------------------------------------------------------------------------
# group/tagall
# ---------------------------------------------------------------------------

MEMBERS = [
    "@111",
    "222",
    {"id": "u3", "number": "333", "isAdmin": True},
    {"number": "444", "name": "Dee"},
    "555",
    "666",
]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTagAllHelpers:
    def test_normalize(self):
        assert normalize_member("123") == {"id": "123", "number": "123", "name": None, "isAdmin": False}
        assert normalize_member({"number": "9"})["id"] == "9"

    def test_mentions_wrap(self):
        members = [normalize_member(member) for member in MEMBERS]
        assert build_mentions(members) == "@111 @222 @333 @444 @555\n@666"


class TestTagAllHandler:
    @pytest.mark.asyncio
    async def test_tag_everyone(self, context):
        result = await TagAllHandler(context).invoke(_request("group", "tagall", {
            "members": MEMBERS, "message": "Dinner at 8!",
        }))
        data = result["data"]
        assert data["memberCount"] == 6
        assert data["message"] == "Dinner at 8!\n\n@111 @222 @333 @444 @555\n@666"
        assert data["mentionedIds"][0] == "@111"

    @pytest.mark.asyncio
    async def test_filters(self, context):
        result = await TagAllHandler(context).invoke(_request("group", "tagall", {
            "members": MEMBERS, "excludeAdmins": True, "excludeUserId": "222",
        }))
        data = result["data"]
        assert data["mentionedIds"] == ["@111", "444", "555", "666"]
        assert data["totalMembers"] == 6

    @pytest.mark.asyncio
    async def test_nobody_left(self, context):
        with pytest.raises(FxError) as excinfo:
            await TagAllHandler(context).invoke(_request("group", "tagall", {
                "members": [{"id": "a", "isAdmin": True}], "excludeAdmins": True,
            }))
        assert excinfo.value.code == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_cooldown_per_group(self, context):
        clock = FakeClock()
        handler = TagAllHandler(context, clock=clock)
        await handler.invoke(_request("group", "tagall", {"members": ["1"], "groupId": "g1"}))

        clock.now += 60
        with pytest.raises(FxError) as excinfo:
            await handler.invoke(_request("group", "tagall", {"members": ["1"], "groupId": "g1"}))
        assert excinfo.value.code == "LIMIT_EXCEEDED"
        assert excinfo.value.details["retryAfter"] == COOLDOWN_SECONDS - 60 + 1

        other = await handler.invoke(_request("group", "tagall", {"members": ["1"], "groupId": "g2"}))
        assert other["success"] is True

        clock.now += COOLDOWN_SECONDS
        again = await handler.invoke(_request("group", "tagall", {"members": ["1"], "groupId": "g1"}))
        assert again["success"] is True

    @pytest.mark.asyncio
    async def test_invalid_member(self, context):
        with pytest.raises(ValidationFailed) as excinfo:
            await TagAllHandler(context).invoke(_request("group", "tagall", {"members": [{"name": "nobody"}]}))
        assert excinfo.value.details[0]["field"] == "members"
