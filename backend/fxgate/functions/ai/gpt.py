"""Chat completion through the OpenAI API.

Usage:
    POST /execute {"category": "ai", "function": "gpt",
                   "data": {"prompt": "Explain DNS in one paragraph"}}
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fxgate.core.errors import FxError, UpstreamError
from fxgate.core.response import ai_response
from fxgate.core.validation import FieldSpec
from fxgate.functions.base import FunctionContext, FunctionHandler, FunctionRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_PROMPT_CHARS = 4000

MODEL_NAMES = {
    "gpt-3.5-turbo": "GPT-3.5 Turbo",
    "gpt-4": "GPT-4",
    "gpt-4-turbo": "GPT-4 Turbo",
    "gpt-4o": "GPT-4o",
    "gpt-4o-mini": "GPT-4o mini",
}

SYSTEM_PROMPT = (
    "You are a helpful assistant. Respond concisely and helpfully. "
    "Format responses for mobile chat display, using *bold* and _italic_. "
    "Keep responses under {max_tokens} tokens."
)


def format_answer(content: str, model: str, tokens: int) -> str:
    display = MODEL_NAMES.get(model, model)
    return (
        f"🧠 *{display} Response*\n\n"
        f"{content}\n\n"
        "━━━━━━━━━━━━━━━━━━━━\n"
        f"⚡ *Model:* {display}\n"
        f"🔢 *Tokens:* {tokens}\n"
        f"🕒 *Generated:* {datetime.now(timezone.utc).strftime('%H:%M:%S UTC')}"
    )


class GptHandler(FunctionHandler):
    """OpenAI chat completions.

    The SDK client is created on first use so that importing the module
    (and listing functions) works without an API key.

    Attributes:
        client: Optional pre-built ``openai.AsyncOpenAI``; tests inject a mock.
    """

    category = "ai"
    name = "gpt"
    description = "Ask an OpenAI chat model a question"
    schema = {
        "prompt": FieldSpec("string", min_length=1, max_length=MAX_PROMPT_CHARS),
        "model": FieldSpec("string", required=False, max_length=64),
        "maxTokens": FieldSpec("integer", required=False, min=1, max=4096),
        "temperature": FieldSpec("number", required=False, min=0, max=2),
    }
    example = {"prompt": "Give me three tips for learning Python", "maxTokens": 300}

    def __init__(self, context: FunctionContext, client: Optional[Any] = None):
        super().__init__(context)
        self.client = client

    def _get_client(self) -> Any:
        """Get or create the OpenAI client.

        Raises:
            FxError: ``SERVICE_UNAVAILABLE`` when no API key is configured.
        """
        if self.client is None:
            api_key = self.context.api_keys.openai
            if not api_key:
                raise FxError(
                    "OpenAI API key not configured",
                    code="SERVICE_UNAVAILABLE",
                    status_code=503,
                )
            import openai

            self.client = openai.AsyncOpenAI(api_key=api_key, timeout=self.context.config.http.timeout_seconds)
        return self.client

    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        data = request.data
        prompt = data["prompt"].strip()
        if not prompt:
            raise FxError("Prompt is required", code="MISSING_FIELD", details={"field": "prompt"})
        model = data.get("model") or DEFAULT_MODEL
        max_tokens = int(float(data.get("maxTokens") or 1000))
        temperature = float(data.get("temperature") if data.get("temperature") is not None else 0.7)

        client = self._get_client()
        import openai

        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT.format(max_tokens=max_tokens)},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APITimeoutError as exc:
            raise UpstreamError(f"OpenAI request timed out: {exc}", url="openai", code="TIMEOUT")
        except openai.RateLimitError as exc:
            raise UpstreamError(f"OpenAI rate limit: {exc}", url="openai", status=429, code="RATE_LIMITED")
        except openai.APIStatusError as exc:
            raise UpstreamError(f"OpenAI error: {exc.message}", url="openai", status=exc.status_code)
        except openai.APIError as exc:
            raise UpstreamError(f"OpenAI error: {exc}", url="openai")

        content = completion.choices[0].message.content or ""
        used_model = completion.model or model
        tokens = completion.usage.total_tokens if completion.usage else len(content) // 4
        logger.info("[%s] %s answered with %d tokens", request.request_id, used_model, tokens)

        envelope = ai_response(content, used_model, {"tokens": tokens, "provider": "openai"})
        envelope["data"].update({
            "response": content,
            "model": used_model,
            "tokens": tokens,
            "prompt": prompt,
            "formatted": format_answer(content, used_model, tokens),
        })
        return envelope
