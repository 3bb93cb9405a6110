"""Turn a finished conversation into form submission data.

Maps ``partial_extractions`` onto the form's field paths, checks required form
fields, and attaches conversation provenance under ``_meta``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import ValidationError

from convoforms.core.logging import get_logger
from convoforms.core.mapping import map_extracted_data, validate_mapped_data
from convoforms.core.state import (
    DURATION_REASON,
    MAX_TURNS_REASON,
    USER_CONFIRMED_REASON,
    is_partial,
)
from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    ConversationState,
    ExtractionSchemaField,
    utcnow,
)
from convoforms.schemas.submission import (
    CompletionReason,
    ConversationMetadata,
    FormField,
    ProcessorResult,
    SchemaFieldSummary,
    SubmissionData,
    TopicSnapshot,
)

logger = get_logger(__name__)

_REASON_CODES: dict[str, CompletionReason] = {
    MAX_TURNS_REASON: "turn_limit",
    DURATION_REASON: "duration_limit",
    USER_CONFIRMED_REASON: "user_confirmed",
}


def completion_reason_code(state: ConversationState) -> CompletionReason:
    if state.completion_reason in _REASON_CODES:
        return _REASON_CODES[state.completion_reason]
    if state.turn_count >= state.max_turns:
        return "turn_limit"
    return "completed"


def conversation_duration(state: ConversationState, now: datetime | None = None) -> int:
    """Elapsed seconds, measured to ``completed_at`` when the conversation ended."""
    end = state.completed_at or now or utcnow()
    return round((end - state.started_at).total_seconds())


class ConversationProcessor:
    """Builds SubmissionData from a ConversationState.

    Usage::

        processor = ConversationProcessor()
        result = processor.process(state, config, form_fields)
        if result.success:
            save(result.submission.model_dump(by_alias=True))
    """

    def __init__(
        self,
        *,
        include_transcript: bool = True,
        include_mapping_report: bool = True,
        custom_schema: list[ExtractionSchemaField] | None = None,
    ) -> None:
        self.include_transcript = include_transcript
        self.include_mapping_report = include_mapping_report
        self.custom_schema = custom_schema

    def process(
        self,
        state: ConversationState,
        config: ConversationalFormConfig,
        form_fields: list[FormField],
    ) -> ProcessorResult:
        schema = self.custom_schema if self.custom_schema is not None else config.extraction_schema

        try:
            mapping = map_extracted_data(state.partial_extractions, schema, form_fields)
            warnings, missing = validate_mapped_data(mapping.mapped_data, form_fields)

            metadata = ConversationMetadata(
                conversation_id=state.conversation_id,
                transcript=list(state.messages) if self.include_transcript else [],
                turn_count=state.turn_count,
                confidence=state.confidence,
                completion_reason=completion_reason_code(state),
                partial=is_partial(state, config),
                duration=conversation_duration(state),
                topics_covered=[
                    TopicSnapshot(
                        topic_id=t.topic_id, name=t.name, covered=t.covered, depth=t.depth
                    )
                    for t in state.topics
                ],
                extraction_schema=[
                    SchemaFieldSummary(field=f.field, type=f.type.value, required=f.required)
                    for f in schema
                ],
                mapping_report=mapping.report if self.include_mapping_report else [],
                validation_warnings=warnings,
                missing_required_fields=missing,
                unmapped_fields=mapping.unmapped_fields or None,
            )
        except (ValidationError, ValueError, TypeError) as exc:
            logger.error(
                "submission_processing_failed",
                conversation_id=state.conversation_id,
                error=str(exc),
            )
            return ProcessorResult(success=False, error=str(exc) or "Failed to process conversation")

        logger.info(
            "submission_processed",
            conversation_id=state.conversation_id,
            mapped_fields=sum(1 for e in mapping.report if e.matched),
            unmapped_fields=len(mapping.unmapped_fields),
            missing_required=len(missing),
            partial=metadata.partial,
        )
        return ProcessorResult(
            success=True,
            submission=SubmissionData(data=mapping.mapped_data, meta=metadata),
            warnings=warnings,
            missing_required_fields=missing,
        )
