"""Conversation state machine.

Every transition takes a ConversationState and returns a new one; the input is
never modified, so a failed turn can simply drop its working copy. Mutating
transitions on a non-active conversation raise TerminalStateViolation.

Invariants maintained here:
- topic depth and overall confidence only ever go up (max of old and new)
- only user messages consume the turn budget
- a conversation reaches a terminal status exactly once
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any
from uuid import uuid4

from convoforms.core.errors import TerminalStateViolation
from convoforms.core.logging import get_logger
from convoforms.core.prompts import build_initial_system_message
from convoforms.core.schema_validation import validate_config
from convoforms.schemas.conversational import (
    CompletionCheck,
    ConversationalFormConfig,
    ConversationState,
    ConversationStatus,
    ConversationTopic,
    CoverageSummary,
    ExtractionSchemaField,
    Message,
    MessageRole,
    TopicCoverage,
    TopicPriority,
    utcnow,
)

logger = get_logger(__name__)

MAX_TURNS_REASON = "Maximum turns reached"
ALL_COVERED_REASON = "All required topics covered with sufficient confidence"
DURATION_REASON = "Maximum duration reached"
USER_CONFIRMED_REASON = "Confirmed by user"


# ── Helpers ─────────────────────────────────────────────────────────


def _ensure_active(state: ConversationState) -> None:
    if state.status != ConversationStatus.ACTIVE:
        raise TerminalStateViolation(state.conversation_id, state.status.value)


def _copy(state: ConversationState) -> ConversationState:
    return state.model_copy(deep=True)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _is_empty(value: Any) -> bool:
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return value is None or value == ""


# ── Creation ────────────────────────────────────────────────────────


def create_conversation_state(
    form_id: str,
    config: ConversationalFormConfig,
    *,
    conversation_id: str | None = None,
) -> ConversationState:
    """Start a fresh conversation for ``form_id``.

    Raises ConfigurationError if the config's schema references unknown topics.
    """
    validate_config(config)

    now = utcnow()
    topics = [
        TopicCoverage(
            topic_id=topic.id,
            name=topic.name,
            priority=topic.priority,
        )
        for topic in config.topics
    ]
    system_message = Message(
        role=MessageRole.SYSTEM,
        content=build_initial_system_message(config),
        timestamp=now,
    )

    state = ConversationState(
        conversation_id=conversation_id or f"conv_{uuid4().hex}",
        form_id=form_id,
        messages=[system_message],
        topics=topics,
        max_turns=config.conversation_limits.max_turns,
        started_at=now,
        updated_at=now,
    )
    logger.info(
        "conversation_created",
        conversation_id=state.conversation_id,
        form_id=form_id,
        topic_count=len(topics),
        max_turns=state.max_turns,
    )
    return state


# ── Transcript ──────────────────────────────────────────────────────


def append_message(
    state: ConversationState,
    role: MessageRole | str,
    content: str,
) -> ConversationState:
    """Append a timestamped message; user messages advance ``turn_count``."""
    _ensure_active(state)
    role = MessageRole(role)

    updated = _copy(state)
    now = utcnow()
    updated.messages.append(Message(role=role, content=content, timestamp=now))
    if role == MessageRole.USER:
        updated.turn_count += 1
    updated.updated_at = now
    return updated


# ── Topic coverage ──────────────────────────────────────────────────


def update_topic_coverage(
    state: ConversationState,
    topic_id: str,
    depth: float,
) -> ConversationState:
    """Deepen coverage of one topic. Unknown topic ids are logged and ignored."""
    _ensure_active(state)

    if state.topic(topic_id) is None:
        logger.warning(
            "unknown_topic_ignored",
            conversation_id=state.conversation_id,
            topic_id=topic_id,
        )
        return state

    updated = _copy(state)
    depth = _clamp(depth)
    topic = updated.topic(topic_id)
    topic.covered = topic.covered or depth > 0
    topic.depth = max(topic.depth, depth)
    topic.turn_count += 1
    topic.last_mentioned_turn = updated.turn_count
    updated.updated_at = utcnow()

    logger.debug(
        "topic_coverage_updated",
        conversation_id=updated.conversation_id,
        topic_id=topic_id,
        depth=round(topic.depth, 2),
        covered=topic.covered,
    )
    return updated


def keyword_depth(message: str, topic: ConversationTopic) -> float:
    """Rough depth estimate for ``topic`` in ``message`` (0.0 = not mentioned).

    Heuristic only: the topic name, description and extraction field are used
    as lower-cased substrings. Each matched keyword adds 0.2 on top of a 0.3
    base, and messages over 100 characters add 0.3.
    """
    message_lower = message.lower()
    keywords = [topic.name.lower(), topic.description.lower()]
    if topic.extraction_field:
        keywords.append(topic.extraction_field.lower())

    matched = sum(1 for keyword in keywords if keyword and keyword in message_lower)
    if matched == 0:
        return 0.0
    return min(1.0, 0.3 + matched * 0.2 + (0.3 if len(message) > 100 else 0.0))


def analyze_and_update_from_keywords(
    state: ConversationState,
    message: str,
    topics: list[ConversationTopic],
) -> ConversationState:
    """Fallback coverage update used when no structured extraction is available."""
    updated = state
    for topic in topics:
        depth = keyword_depth(message, topic)
        if depth > 0:
            updated = update_topic_coverage(updated, topic.id, depth)
    return updated


def extraction_depth(value: Any) -> float:
    """Depth estimate from the shape of an extracted value."""
    if isinstance(value, bool):
        return 0.3
    if isinstance(value, str):
        if len(value) > 100:
            return 1.0
        if len(value) > 50:
            return 0.7
        if len(value) > 20:
            return 0.5
        return 0.3
    if isinstance(value, (int, float)):
        return 0.3
    if isinstance(value, (list, tuple)):
        return 0.6
    if isinstance(value, dict):
        return 0.7
    return 0.5


def update_from_extractions(
    state: ConversationState,
    extractions: dict[str, Any],
    schema: list[ExtractionSchemaField],
) -> ConversationState:
    """Move topic coverage for every non-empty extracted field mapped to a topic."""
    field_to_topic = {f.field: f.topic_id for f in schema if f.topic_id}

    updated = state
    for field_name, value in extractions.items():
        if _is_empty(value):
            continue
        topic_id = field_to_topic.get(field_name)
        if not topic_id:
            continue
        updated = update_topic_coverage(updated, topic_id, extraction_depth(value))
    return updated


# ── Extractions ─────────────────────────────────────────────────────


def merge_extractions(
    state: ConversationState,
    extractions: dict[str, Any],
    confidence: float,
) -> ConversationState:
    """Last-write-wins merge per field; confidence is ratcheted, never lowered.

    Values are deep-copied so the caller's lists and dicts stay its own.
    """
    _ensure_active(state)

    updated = _copy(state)
    updated.partial_extractions.update(copy.deepcopy(extractions))
    updated.confidence = max(updated.confidence, _clamp(confidence))
    updated.updated_at = utcnow()
    return updated


# ── Completion ──────────────────────────────────────────────────────


def should_complete(
    state: ConversationState,
    config: ConversationalFormConfig,
) -> CompletionCheck:
    """Decide whether the conversation has gathered enough.

    The turn ceiling is checked first and wins even when required topics are
    still uncovered; such completions carry partial data.
    """
    if state.turn_count >= state.max_turns:
        return CompletionCheck(should_complete=True, reason=MAX_TURNS_REASON)

    required = state.required_topics()
    if any(not t.covered for t in required):
        return CompletionCheck(should_complete=False)

    if state.confidence < config.conversation_limits.min_confidence:
        return CompletionCheck(should_complete=False)

    return CompletionCheck(should_complete=True, reason=ALL_COVERED_REASON)


def elapsed_minutes(state: ConversationState, now: datetime | None = None) -> float:
    return ((now or utcnow()) - state.started_at).total_seconds() / 60


def is_partial(state: ConversationState, config: ConversationalFormConfig) -> bool:
    """True when required coverage or the confidence bar has not been met."""
    if any(not t.covered for t in state.required_topics()):
        return True
    return state.confidence < config.conversation_limits.min_confidence


def complete_conversation(
    state: ConversationState,
    reason: str | None = None,
) -> ConversationState:
    _ensure_active(state)
    updated = _copy(state)
    now = utcnow()
    updated.status = ConversationStatus.COMPLETED
    updated.completed_at = now
    updated.completion_reason = reason
    updated.updated_at = now
    logger.info(
        "conversation_completed",
        conversation_id=updated.conversation_id,
        reason=reason,
        turn_count=updated.turn_count,
        confidence=updated.confidence,
    )
    return updated


def abandon_conversation(
    state: ConversationState,
    reason: str | None = None,
) -> ConversationState:
    _ensure_active(state)
    updated = _copy(state)
    now = utcnow()
    updated.status = ConversationStatus.ABANDONED
    updated.completed_at = now
    updated.updated_at = now
    updated.error = reason
    logger.info(
        "conversation_abandoned",
        conversation_id=updated.conversation_id,
        reason=reason,
    )
    return updated


def mark_conversation_error(state: ConversationState, error: str) -> ConversationState:
    _ensure_active(state)
    updated = _copy(state)
    updated.status = ConversationStatus.ERROR
    updated.updated_at = utcnow()
    updated.error = error
    logger.error(
        "conversation_errored",
        conversation_id=updated.conversation_id,
        error=error,
    )
    return updated


def touch(state: ConversationState) -> ConversationState:
    """Refresh ``updated_at``; the only change allowed on a terminal state."""
    updated = _copy(state)
    updated.updated_at = utcnow()
    return updated


# ── Reporting ───────────────────────────────────────────────────────


def coverage_summary(state: ConversationState) -> CoverageSummary:
    topics = state.topics
    required = [t for t in topics if t.priority == TopicPriority.REQUIRED]
    important = [t for t in topics if t.priority == TopicPriority.IMPORTANT]
    average_depth = sum(t.depth for t in topics) / len(topics) if topics else 0.0

    return CoverageSummary(
        total_topics=len(topics),
        covered_topics=sum(1 for t in topics if t.covered),
        required_topics=len(required),
        covered_required_topics=sum(1 for t in required if t.covered),
        important_topics=len(important),
        covered_important_topics=sum(1 for t in important if t.covered),
        average_depth=average_depth,
    )


def uncovered_topics(
    state: ConversationState,
    priority: TopicPriority | None = None,
) -> list[TopicCoverage]:
    return [
        t for t in state.topics
        if not t.covered and (priority is None or t.priority == priority)
    ]
