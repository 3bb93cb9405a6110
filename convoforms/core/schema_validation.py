"""Referential-integrity checks for conversational form configs.

``validate_config`` is the hard gate run before a conversation may start.
``design_warnings`` reports softer problems (e.g. a required field that no
required topic leads to) which are logged but never block a conversation.
"""

from __future__ import annotations

import re

from convoforms.core.errors import ConfigurationError
from convoforms.core.logging import get_logger
from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    FieldType,
    TopicPriority,
)

logger = get_logger(__name__)


def collect_config_problems(config: ConversationalFormConfig) -> list[str]:
    """Return every hard problem in ``config`` (empty list when valid)."""
    problems: list[str] = []

    topic_ids: set[str] = set()
    for topic in config.topics:
        if topic.id in topic_ids:
            problems.append(f"Duplicate topic id '{topic.id}'")
        topic_ids.add(topic.id)

    field_names: set[str] = set()
    for schema_field in config.extraction_schema:
        if schema_field.field in field_names:
            problems.append(f"Duplicate extraction field '{schema_field.field}'")
        field_names.add(schema_field.field)

        if schema_field.topic_id is not None and schema_field.topic_id not in topic_ids:
            problems.append(
                f"Extraction field '{schema_field.field}' references unknown topic "
                f"'{schema_field.topic_id}'"
            )

        if schema_field.type == FieldType.ENUM and not schema_field.options:
            problems.append(
                f"Extraction field '{schema_field.field}' is enum type but has no options defined"
            )

        pattern = schema_field.validation.pattern if schema_field.validation else None
        if pattern:
            try:
                re.compile(pattern)
            except re.error as exc:
                problems.append(
                    f"Extraction field '{schema_field.field}' has an invalid pattern: {exc}"
                )

    return problems


def validate_config(config: ConversationalFormConfig) -> None:
    """Raise ConfigurationError if ``config`` cannot safely start a conversation."""
    problems = collect_config_problems(config)
    if problems:
        logger.error("config_validation_failed", problems=problems)
        raise ConfigurationError(problems)

    for warning in design_warnings(config):
        logger.warning("config_design_warning", warning=warning)


def design_warnings(config: ConversationalFormConfig) -> list[str]:
    """Non-fatal configuration smells."""
    warnings: list[str] = []
    required_topic_ids = {
        t.id for t in config.topics if t.priority == TopicPriority.REQUIRED
    }
    field_names = {f.field for f in config.extraction_schema}

    for schema_field in config.extraction_schema:
        if schema_field.required and schema_field.topic_id not in required_topic_ids:
            warnings.append(
                f"Required field '{schema_field.field}' is not reachable from a required topic"
            )

    for topic in config.topics:
        if topic.extraction_field and topic.extraction_field not in field_names:
            warnings.append(
                f"Topic '{topic.id}' names extraction field '{topic.extraction_field}' "
                "which is not in the extraction schema"
            )

    return warnings
