"""Map extracted conversation fields onto the owning form's field paths.

Matching strategies, first hit wins:
1. exact path
2. case-insensitive path
3. camelCase / snake_case conversion of the extraction field
4. field label (case- and whitespace-insensitive)
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field

from convoforms.schemas.conversational import ExtractionSchemaField
from convoforms.schemas.submission import FormField, MappingReportEntry

UNMAPPED_KEY = "_unmappedFields"

_WORD_START = re.compile(r"(?:^\w|[A-Z]|\b\w)")


def to_camel_case(value: str) -> str:
    def _repl(match: re.Match[str]) -> str:
        word = match.group(0)
        return word.lower() if match.start() == 0 else word.upper()

    camel = _WORD_START.sub(_repl, re.sub(r"[-_]+", " ", value))
    return re.sub(r"\s+", "", camel)


def to_snake_case(value: str) -> str:
    snake = re.sub(r"([A-Z])", r"_\1", value).lower()
    snake = re.sub(r"[- ]", "_", snake)
    return snake.removeprefix("_")


def _squash(value: str) -> str:
    return re.sub(r"\s+", "", value.lower())


def find_matching_form_field(
    extraction_field: str,
    form_fields: list[FormField],
) -> tuple[FormField, str] | None:
    """Return ``(form_field, strategy)`` for the best match, or None."""
    for form_field in form_fields:
        if form_field.path == extraction_field:
            return form_field, "exact"

    lowered = extraction_field.lower()
    for form_field in form_fields:
        if form_field.path.lower() == lowered:
            return form_field, "case-insensitive"

    conversions = {to_camel_case(extraction_field), to_snake_case(extraction_field)}
    for form_field in form_fields:
        if form_field.path in conversions:
            return form_field, "case-conversion"

    squashed = _squash(extraction_field)
    for form_field in form_fields:
        if form_field.label and _squash(form_field.label) == squashed:
            return form_field, "label-match"

    return None


def set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dot-separated ``path``, creating dicts on the way."""
    *parents, leaf = path.split(".")
    for key in parents:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[leaf] = value


def get_nested_value(source: dict[str, Any], path: str) -> Any:
    value: Any = source
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class MappingResult(BaseModel):
    mapped_data: dict[str, Any] = Field(default_factory=dict)
    unmapped_fields: dict[str, Any] = Field(default_factory=dict)
    report: list[MappingReportEntry] = Field(default_factory=list)


def map_extracted_data(
    extracted: dict[str, Any],
    schema: list[ExtractionSchemaField],
    form_fields: list[FormField],
) -> MappingResult:
    """Place every non-null extracted schema field at its form path.

    Fields with no matching form field are collected under ``_unmappedFields``
    in the mapped data so nothing the user said is silently dropped.
    """
    result = MappingResult()

    for schema_field in schema:
        value = extracted.get(schema_field.field)
        if value is None:
            continue

        match = find_matching_form_field(schema_field.field, form_fields)
        if match is None:
            result.unmapped_fields[schema_field.field] = value
            result.report.append(
                MappingReportEntry(extraction_field=schema_field.field, matched=False)
            )
            continue

        form_field, strategy = match
        set_nested_value(result.mapped_data, form_field.path, value)
        result.report.append(
            MappingReportEntry(
                extraction_field=schema_field.field,
                form_field_path=form_field.path,
                matched=True,
                strategy=strategy,
            )
        )

    if result.unmapped_fields:
        result.mapped_data[UNMAPPED_KEY] = dict(result.unmapped_fields)

    return result


def validate_mapped_data(
    mapped_data: dict[str, Any],
    form_fields: list[FormField],
) -> tuple[list[str], list[str]]:
    """Return ``(warnings, missing_required_paths)`` for required form fields."""
    warnings: list[str] = []
    missing: list[str] = []

    for form_field in form_fields:
        if not form_field.required or not form_field.included:
            continue
        value = get_nested_value(mapped_data, form_field.path)
        if value is None or value == "":
            missing.append(form_field.path)
            warnings.append(f"Required field '{form_field.label or form_field.path}' is missing")

    return warnings, missing
