"""Conversational form schemas: static config, per-conversation state, reports.

Field names are snake_case in Python and camelCase on the wire, so configs
authored by the form builder (``extractionSchema``, ``topicId``...) validate
as-is and stored state round-trips through ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Enums ────────────────────────────────────────────────────────────


class TopicPriority(StrEnum):
    REQUIRED = "required"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class TopicDepth(StrEnum):
    SURFACE = "surface"
    MODERATE = "moderate"
    DEEP = "deep"


class FieldType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"


class PersonaStyle(StrEnum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    CASUAL = "casual"
    EMPATHETIC = "empathetic"
    CUSTOM = "custom"


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    ERROR = "error"


# ── Static config ────────────────────────────────────────────────────


class ConversationTopic(CamelModel):
    """A discussion subject the conversation should surface."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    description: str
    priority: TopicPriority
    depth: TopicDepth
    extraction_field: str | None = None


class FieldValidation(CamelModel):
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None


class ExtractionSchemaField(CamelModel):
    """One field of the structured output the conversation must produce."""

    field: str
    type: FieldType
    required: bool = False
    description: str = ""
    options: list[str] | None = None
    validation: FieldValidation | None = None
    topic_id: str | None = None


class ConversationPersona(CamelModel):
    style: PersonaStyle = PersonaStyle.FRIENDLY
    tone: str | None = None
    behaviors: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    custom_prompt: str | None = None


class ConversationLimits(CamelModel):
    max_turns: int = Field(default=15, ge=1)
    max_duration: float = Field(default=30, gt=0)  # minutes
    min_confidence: float = Field(default=0.75, ge=0.0, le=1.0)


class ConversationalFormConfig(CamelModel):
    """Everything needed to run one conversational form."""

    template_id: str | None = None
    objective: str
    context: str | None = None
    topics: list[ConversationTopic] = Field(default_factory=list)
    persona: ConversationPersona = Field(default_factory=ConversationPersona)
    extraction_schema: list[ExtractionSchemaField] = Field(default_factory=list)
    conversation_limits: ConversationLimits = Field(default_factory=ConversationLimits)

    def topic(self, topic_id: str) -> ConversationTopic | None:
        for topic in self.topics:
            if topic.id == topic_id:
                return topic
        return None


# ── Per-conversation state ───────────────────────────────────────────


class Message(CamelModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class TopicCoverage(CamelModel):
    """How far one topic has been discussed. Depth only ever increases."""

    topic_id: str
    name: str
    covered: bool = False
    depth: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: TopicPriority
    turn_count: int = 0
    last_mentioned_turn: int | None = None


class ConversationState(CamelModel):
    """Aggregate root for one dialogue."""

    conversation_id: str
    form_id: str
    messages: list[Message] = Field(default_factory=list)
    topics: list[TopicCoverage] = Field(default_factory=list)
    partial_extractions: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    turn_count: int = 0
    max_turns: int
    status: ConversationStatus = ConversationStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    completion_reason: str | None = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ConversationStatus.ACTIVE

    def topic(self, topic_id: str) -> TopicCoverage | None:
        for topic in self.topics:
            if topic.topic_id == topic_id:
                return topic
        return None

    def required_topics(self) -> list[TopicCoverage]:
        return [t for t in self.topics if t.priority == TopicPriority.REQUIRED]


# ── Reports ──────────────────────────────────────────────────────────


class CompletionCheck(CamelModel):
    should_complete: bool
    reason: str | None = None


class CoverageSummary(CamelModel):
    total_topics: int
    covered_topics: int
    required_topics: int
    covered_required_topics: int
    important_topics: int = 0
    covered_important_topics: int = 0
    average_depth: float


class ExtractionValidation(CamelModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
