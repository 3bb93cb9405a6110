"""Checks and scoring for values extracted from a conversation.

- validate_extracted_data: type / length / range / enum / pattern checks
- calculate_overall_confidence: required fields count twice
- missing_required_fields: schema fields still absent from partial extractions
- merge_final_extraction: combine accumulated partials with a final pass
"""

from __future__ import annotations

import re
from typing import Any

from convoforms.core.logging import get_logger
from convoforms.schemas.conversational import (
    ConversationState,
    ExtractionSchemaField,
    ExtractionValidation,
    FieldType,
)

logger = get_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.7
PARTIAL_FIELD_CONFIDENCE = 0.5


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_field(schema_field: ExtractionSchemaField, value: Any) -> list[str]:
    name = schema_field.field
    rules = schema_field.validation
    errors: list[str] = []

    match schema_field.type:
        case FieldType.STRING:
            if not isinstance(value, str):
                return [f"Field '{name}' must be a string"]
            if rules is None:
                return []
            if rules.min_length and len(value) < rules.min_length:
                errors.append(f"Field '{name}' must be at least {rules.min_length} characters")
            if rules.max_length and len(value) > rules.max_length:
                errors.append(f"Field '{name}' must be at most {rules.max_length} characters")
            if rules.pattern and not re.search(rules.pattern, value):
                errors.append(f"Field '{name}' does not match required pattern")

        case FieldType.NUMBER:
            if not _is_number(value):
                return [f"Field '{name}' must be a number"]
            if rules is None:
                return []
            if rules.min is not None and value < rules.min:
                errors.append(f"Field '{name}' must be at least {rules.min:g}")
            if rules.max is not None and value > rules.max:
                errors.append(f"Field '{name}' must be at most {rules.max:g}")

        case FieldType.BOOLEAN:
            if not isinstance(value, bool):
                errors.append(f"Field '{name}' must be a boolean")

        case FieldType.ENUM:
            if not schema_field.options:
                errors.append(f"Field '{name}' is enum type but has no options defined")
            elif value not in schema_field.options:
                errors.append(
                    f"Field '{name}' must be one of: {', '.join(schema_field.options)}"
                )

        case FieldType.ARRAY:
            if not isinstance(value, list):
                errors.append(f"Field '{name}' must be an array")

        case FieldType.OBJECT:
            if not isinstance(value, dict):
                errors.append(f"Field '{name}' must be an object")

    return errors


def validate_extracted_data(
    data: dict[str, Any],
    confidences: dict[str, float],
    schema: list[ExtractionSchemaField],
    *,
    low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
    extra_warnings: list[str] | None = None,
) -> ExtractionValidation:
    """Validate ``data`` against ``schema``.

    Missing required fields and type/rule violations are errors; fields whose
    confidence falls under ``low_confidence_threshold`` produce warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    for schema_field in schema:
        if schema_field.required and _is_missing(data.get(schema_field.field)):
            errors.append(f"Required field '{schema_field.field}' is missing")

    for schema_field in schema:
        value = data.get(schema_field.field)
        if value is None:
            continue

        errors.extend(_check_field(schema_field, value))

        confidence = confidences.get(schema_field.field)
        if confidence is not None and confidence < low_confidence_threshold:
            warnings.append(
                f"Low confidence ({round(confidence * 100)}%) for field '{schema_field.field}'"
            )

    warnings.extend(extra_warnings or [])
    return ExtractionValidation(is_valid=not errors, errors=errors, warnings=warnings)


def calculate_overall_confidence(
    field_confidences: dict[str, float],
    schema: list[ExtractionSchemaField],
) -> float:
    """Weighted mean of per-field confidence; required fields weigh 2, others 1.

    Fields not in the schema are ignored. Returns 0.0 when nothing is scored.
    """
    total_weight = 0
    weighted_sum = 0.0
    for schema_field in schema:
        confidence = field_confidences.get(schema_field.field)
        if confidence is None:
            continue
        weight = 2 if schema_field.required else 1
        weighted_sum += confidence * weight
        total_weight += weight

    return weighted_sum / total_weight if total_weight else 0.0


def missing_required_fields(
    state: ConversationState,
    schema: list[ExtractionSchemaField],
) -> list[str]:
    return [
        f.field for f in schema
        if f.required and _is_missing(state.partial_extractions.get(f.field))
    ]


def merge_final_extraction(
    partial_extractions: dict[str, Any],
    final_data: dict[str, Any],
    final_confidence: dict[str, float],
) -> tuple[dict[str, Any], dict[str, float], float]:
    """Overlay a final extraction pass on the accumulated partials.

    Final values win. Partials the final pass did not mention are kept with a
    flat confidence of 0.5. Returns ``(data, field_confidence, overall)`` where
    ``overall`` is the unweighted mean of the field confidences.
    """
    merged = dict(partial_extractions)
    confidence: dict[str, float] = {}

    for field_name, value in final_data.items():
        merged[field_name] = value
        confidence[field_name] = final_confidence.get(field_name) or PARTIAL_FIELD_CONFIDENCE

    for field_name in partial_extractions:
        if field_name not in final_data:
            confidence[field_name] = PARTIAL_FIELD_CONFIDENCE

    overall = sum(confidence.values()) / len(confidence) if confidence else 0.0
    logger.debug(
        "final_extraction_merged",
        fields=len(merged),
        overall_confidence=round(overall, 3),
    )
    return merged, confidence, overall
