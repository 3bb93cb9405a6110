"""Submission schemas: form field targets, mapping report and processor output."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from convoforms.schemas.conversational import CamelModel, Message

CompletionReason = Literal["completed", "user_confirmed", "turn_limit", "duration_limit"]


class FormField(CamelModel):
    """A target field of the owning form (dot paths allowed for nesting)."""

    path: str
    label: str | None = None
    required: bool = False
    included: bool = True


class MappingReportEntry(CamelModel):
    extraction_field: str
    form_field_path: str | None = None
    matched: bool
    strategy: str | None = None  # exact | case-insensitive | case-conversion | label-match


class TopicSnapshot(CamelModel):
    topic_id: str
    name: str
    covered: bool
    depth: float


class SchemaFieldSummary(CamelModel):
    field: str
    type: str
    required: bool


class ConversationMetadata(CamelModel):
    """Conversation provenance stored alongside the submitted data."""

    submission_type: Literal["conversational"] = "conversational"
    conversation_id: str
    transcript: list[Message] = Field(default_factory=list)
    turn_count: int
    confidence: float
    completion_reason: CompletionReason
    partial: bool = False
    duration: int  # seconds
    topics_covered: list[TopicSnapshot] = Field(default_factory=list)
    extraction_schema: list[SchemaFieldSummary] = Field(default_factory=list)
    mapping_report: list[MappingReportEntry] = Field(default_factory=list)
    validation_warnings: list[str] = Field(default_factory=list)
    missing_required_fields: list[str] = Field(default_factory=list)
    unmapped_fields: dict[str, Any] | None = None


class SubmissionData(CamelModel):
    data: dict[str, Any]
    meta: ConversationMetadata = Field(alias="_meta")


class ProcessorResult(CamelModel):
    success: bool
    submission: SubmissionData | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    missing_required_fields: list[str] = Field(default_factory=list)
