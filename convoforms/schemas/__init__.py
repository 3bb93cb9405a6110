"""Pydantic schemas for conversational form configs, state and reports."""

from convoforms.schemas.conversational import (
    CompletionCheck,
    ConversationalFormConfig,
    ConversationLimits,
    ConversationPersona,
    ConversationState,
    ConversationStatus,
    ConversationTopic,
    CoverageSummary,
    ExtractionSchemaField,
    ExtractionValidation,
    FieldType,
    FieldValidation,
    Message,
    MessageRole,
    PersonaStyle,
    TopicCoverage,
    TopicDepth,
    TopicPriority,
)
from convoforms.schemas.submission import (
    ConversationMetadata,
    FormField,
    MappingReportEntry,
    ProcessorResult,
    SubmissionData,
)

__all__ = [
    "CompletionCheck",
    "ConversationalFormConfig",
    "ConversationLimits",
    "ConversationMetadata",
    "ConversationPersona",
    "ConversationState",
    "ConversationStatus",
    "ConversationTopic",
    "CoverageSummary",
    "ExtractionSchemaField",
    "ExtractionValidation",
    "FieldType",
    "FieldValidation",
    "FormField",
    "MappingReportEntry",
    "Message",
    "MessageRole",
    "PersonaStyle",
    "ProcessorResult",
    "SubmissionData",
    "TopicCoverage",
    "TopicDepth",
    "TopicPriority",
]
