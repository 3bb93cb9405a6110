"""Conversation template definition.

A template bundles everything a use case needs (objective, persona, limits,
topics, extraction schema) and renders a ConversationalFormConfig from it.
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import Field

from convoforms.schemas.conversational import (
    CamelModel,
    ConversationalFormConfig,
    ConversationLimits,
    ConversationPersona,
    ConversationTopic,
    ExtractionSchemaField,
)


class TemplateCategory(StrEnum):
    SUPPORT = "support"
    FEEDBACK = "feedback"
    INTAKE = "intake"
    APPLICATION = "application"
    GENERAL = "general"


class TemplateMetadata(CamelModel):
    preview_description: str | None = None
    use_cases: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    estimated_duration: int | None = None  # minutes
    author: str | None = None
    updated_at: date | None = None


class TemplateDefaults(CamelModel):
    objective: str
    context: str | None = None
    persona: ConversationPersona = Field(default_factory=ConversationPersona)
    conversation_limits: ConversationLimits = Field(default_factory=ConversationLimits)


class ConversationTemplate(CamelModel):
    id: str
    name: str
    description: str
    category: TemplateCategory
    version: str = "1.0.0"
    is_built_in: bool = False
    defaults: TemplateDefaults
    topics: list[ConversationTopic] = Field(default_factory=list)
    extraction_schema: list[ExtractionSchemaField] = Field(default_factory=list)
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)

    def to_config(self, overrides: dict[str, Any] | None = None) -> ConversationalFormConfig:
        """Build a config from the template defaults.

        ``overrides`` replaces whole top-level config keys (snake_case or
        camelCase), e.g. ``{"conversationLimits": {"maxTurns": 8}}``.
        """
        base = ConversationalFormConfig(
            template_id=self.id,
            objective=self.defaults.objective,
            context=self.defaults.context,
            persona=self.defaults.persona,
            conversation_limits=self.defaults.conversation_limits,
            topics=self.topics,
            extraction_schema=self.extraction_schema,
        )
        if not overrides:
            return base.model_copy(deep=True)

        data = base.model_dump(by_alias=True)
        for key, value in overrides.items():
            field_info = ConversationalFormConfig.model_fields.get(key)
            data[field_info.alias if field_info and field_info.alias else key] = value
        return ConversationalFormConfig.model_validate(data)
