"""LLM capability used by the conversation driver.

The driver only depends on ``LLMCapability.respond``. ``OpenAICompatibleLLM``
implements it on any OpenAI-compatible chat completions endpoint, asking for a
JSON object holding the reply and the structured extractions of the turn.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from convoforms.config import Settings, get_settings
from convoforms.core.errors import ProviderError
from convoforms.core.logging import get_logger
from convoforms.schemas.conversational import Message, MessageRole

logger = get_logger(__name__)


class LLMReply(BaseModel):
    """What one model call produced for a turn."""

    assistant_text: str
    extractions: dict[str, Any] | None = None
    confidence: float | None = None
    field_confidence: dict[str, float] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class LLMCapability(Protocol):
    async def respond(self, system_prompt: str, messages: list[Message]) -> LLMReply:
        """Return the assistant's next message.

        Raises ProviderError on network, quota or model failure.
        """
        ...


# openai exception classes -> retryable?
_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)
_FATAL_ERRORS: tuple[type[Exception], ...] = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
    openai.BadRequestError,
)


def _clamp(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


def parse_reply(raw: str) -> LLMReply:
    """Parse the model's JSON payload.

    Output that is not a JSON object with a ``reply`` string is used verbatim as
    the assistant text, with no extractions (keyword coverage applies instead).
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("llm_reply_not_json", preview=raw[:120])
        return LLMReply(assistant_text=raw.strip())

    if not isinstance(data, dict) or not isinstance(data.get("reply"), str):
        logger.warning("llm_reply_missing_text")
        return LLMReply(assistant_text=raw.strip())

    extractions = data.get("extractions")
    if not isinstance(extractions, dict):
        extractions = None

    field_confidence: dict[str, float] = {}
    raw_field_confidence = data.get("fieldConfidence") or data.get("field_confidence") or {}
    if isinstance(raw_field_confidence, dict):
        for name, value in raw_field_confidence.items():
            clamped = _clamp(value)
            if clamped is not None:
                field_confidence[name] = clamped

    warnings = data.get("warnings")
    return LLMReply(
        assistant_text=data["reply"],
        extractions=extractions or None,
        confidence=_clamp(data.get("confidence")),
        field_confidence=field_confidence,
        warnings=[str(w) for w in warnings] if isinstance(warnings, list) else [],
    )


class OpenAICompatibleLLM:
    """``LLMCapability`` over an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or AsyncOpenAI(
            api_key=self.settings.llm_api_key,
            base_url=self.settings.llm_base_url,
            timeout=self.settings.llm_timeout_seconds,
        )

    async def respond(self, system_prompt: str, messages: list[Message]) -> LLMReply:
        payload = [{"role": "system", "content": system_prompt}]
        payload += [
            {"role": m.role.value, "content": m.content}
            for m in messages
            if m.role != MessageRole.SYSTEM
        ]

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.llm_model,
                messages=payload,
                max_tokens=self.settings.llm_max_tokens,
                temperature=self.settings.llm_temperature,
                response_format={"type": "json_object"},
            )
        except _FATAL_ERRORS as e:
            logger.error("provider_call_failed", error=str(e), retryable=False)
            raise ProviderError(str(e), code=type(e).__name__, retryable=False) from e
        except _RETRYABLE_ERRORS as e:
            logger.warning("provider_call_failed", error=str(e), retryable=True)
            raise ProviderError(str(e), code=type(e).__name__, retryable=True) from e
        except openai.APIError as e:
            logger.warning("provider_call_failed", error=str(e), retryable=True)
            raise ProviderError(str(e)) from e

        raw = response.choices[0].message.content or ""
        if not raw.strip():
            raise ProviderError("Empty response from model", code="empty_response")

        reply = parse_reply(raw)
        usage = getattr(response, "usage", None)
        logger.info(
            "provider_call_completed",
            model=self.settings.llm_model,
            tokens_input=getattr(usage, "prompt_tokens", 0),
            tokens_output=getattr(usage, "completion_tokens", 0),
            extracted_fields=len(reply.extractions or {}),
        )
        return reply
