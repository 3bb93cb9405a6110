"""Test helpers: small form configs, a scripted LLM capability and a mock OpenAI client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from convoforms.core.errors import ProviderError
from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    ConversationLimits,
    ConversationTopic,
    ExtractionSchemaField,
    FieldType,
    Message,
    TopicDepth,
    TopicPriority,
)
from convoforms.services.llm import LLMReply


def make_config(
    *,
    max_turns: int = 5,
    min_confidence: float = 0.5,
    max_duration: float = 30,
) -> ConversationalFormConfig:
    """One required topic (t1 -> issueCategory) plus an optional one (t2 -> notes)."""
    return ConversationalFormConfig(
        objective="Collect IT ticket details",
        topics=[
            ConversationTopic(
                id="t1",
                name="Issue Category",
                description="hardware or software",
                priority=TopicPriority.REQUIRED,
                depth=TopicDepth.MODERATE,
                extraction_field="issueCategory",
            ),
            ConversationTopic(
                id="t2",
                name="Notes",
                description="anything else",
                priority=TopicPriority.OPTIONAL,
                depth=TopicDepth.SURFACE,
                extraction_field="notes",
            ),
        ],
        extraction_schema=[
            ExtractionSchemaField(
                field="issueCategory",
                type=FieldType.ENUM,
                required=True,
                description="Category",
                options=["hardware", "software"],
                topic_id="t1",
            ),
            ExtractionSchemaField(
                field="notes",
                type=FieldType.STRING,
                description="Free text",
                topic_id="t2",
            ),
        ],
        conversation_limits=ConversationLimits(
            max_turns=max_turns,
            max_duration=max_duration,
            min_confidence=min_confidence,
        ),
    )


class ScriptedLLM:
    """LLMCapability returning queued replies (or raising queued errors)."""

    def __init__(self, *replies: LLMReply | ProviderError) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, list[Message]]] = []

    async def respond(self, system_prompt: str, messages: list[Message]) -> LLMReply:
        self.calls.append((system_prompt, list(messages)))
        reply = self.replies.pop(0)
        if isinstance(reply, ProviderError):
            raise reply
        return reply


def mock_openai_client(content=None, *, side_effect=None):
    """AsyncOpenAI stand-in whose chat completion returns ``content``."""
    mock_message = MagicMock()
    mock_message.content = content
    mock_choice = MagicMock()
    mock_choice.message = mock_message
    mock_response = MagicMock()
    mock_response.choices = [mock_choice]

    mock_client = AsyncMock()
    mock_client.chat.completions.create = AsyncMock(
        return_value=mock_response, side_effect=side_effect
    )
    return mock_client
