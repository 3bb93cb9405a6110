"""Conversation driver: one LLM-backed turn at a time.

``step`` is the per-turn transition. It works on a copy of the state, so the
caller's state is untouched when the provider fails with a retryable error.

``ConversationDriver`` wraps ``step`` with everything around it:
- per-conversation locking for the whole load / step / save cycle
- turn and duration ceilings checked before a message is processed
- config resolution through an injected resolver (no global registry)
- optional turn events on a Redis Stream
- submission processing once the conversation is finished
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from convoforms.config import Settings, get_settings
from convoforms.core.errors import (
    ConversationLimitReached,
    ConversationNotFound,
    ProviderError,
    TerminalStateViolation,
)
from convoforms.core.extraction import calculate_overall_confidence, validate_extracted_data
from convoforms.core.locks import ConversationLocks
from convoforms.core.logging import bind_conversation, get_logger
from convoforms.core.processor import ConversationProcessor
from convoforms.core.prompts import (
    build_conversation_context,
    build_extraction_guidance,
    build_greeting_prompt,
    build_limit_warning,
    build_reply_format_instructions,
    build_wrap_up_prompt,
    next_topic_guidance,
    system_prompt_for,
)
from convoforms.core.state import (
    DURATION_REASON,
    MAX_TURNS_REASON,
    USER_CONFIRMED_REASON,
    abandon_conversation,
    analyze_and_update_from_keywords,
    append_message,
    complete_conversation,
    create_conversation_state,
    elapsed_minutes,
    is_partial,
    mark_conversation_error,
    merge_extractions,
    should_complete,
    update_from_extractions,
    uncovered_topics,
)
from convoforms.core.streams import ConversationStreamPublisher
from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    ConversationState,
    ConversationStatus,
    ExtractionValidation,
    MessageRole,
    TopicPriority,
    utcnow,
)
from convoforms.schemas.submission import FormField, ProcessorResult
from convoforms.services.llm import LLMCapability
from convoforms.services.persistence import ConversationStore
from convoforms.templates.registry import ConfigResolver

logger = get_logger(__name__)

TURN_LIMIT_MESSAGE = "We've covered a lot! Let's wrap up and submit what we have."
DURATION_LIMIT_MESSAGE = "Thanks for your time! Let's save your responses now."
PROVIDER_RETRY_MESSAGE = "Something went wrong on our side. Please try again."


@dataclass
class TurnResult:
    """Outcome of one user turn."""

    state: ConversationState
    assistant_text: str | None
    completed: bool = False
    reason: str | None = None
    partial: bool = False  # completed without full required coverage / confidence
    validation: ExtractionValidation | None = None
    error: str | None = None


# ── Prompt assembly ─────────────────────────────────────────────────


def build_turn_prompt(
    state: ConversationState,
    config: ConversationalFormConfig,
    *,
    wrap_up_warning: str | None = None,
) -> str:
    """System prompt plus per-turn guidance and the JSON reply contract.

    The contract is always present, with an empty field list for schema-less
    forms, because the provider runs in JSON mode.
    """
    topic, guidance = next_topic_guidance(state, config)
    sections = [
        system_prompt_for(config),
        build_conversation_context(state, config),
        f"## Guidance for This Turn\n{guidance}",
    ]
    if topic is not None:
        sections.append(build_extraction_guidance(topic, config))
    if not uncovered_topics(state, TopicPriority.REQUIRED):
        sections.append(build_wrap_up_prompt(state))
    if wrap_up_warning:
        sections.append(wrap_up_warning)
    sections.append(build_reply_format_instructions(config.extraction_schema))
    return "\n\n".join(sections)


def limit_warning(
    state: ConversationState,
    config: ConversationalFormConfig,
    *,
    now: datetime | None = None,
    turns_threshold: int = 2,
    minutes_threshold: float = 2.0,
) -> str | None:
    """Wrap-up instruction when the conversation is close to a ceiling."""
    turns_remaining = state.max_turns - state.turn_count
    minutes_remaining = config.conversation_limits.max_duration - elapsed_minutes(state, now)
    if turns_remaining <= turns_threshold or minutes_remaining <= minutes_threshold:
        return build_limit_warning(turns_remaining, minutes_remaining)
    return None


# ── Single turn ─────────────────────────────────────────────────────


async def step(
    state: ConversationState,
    user_message: str,
    config: ConversationalFormConfig,
    llm: LLMCapability,
    *,
    now: datetime | None = None,
    low_confidence_threshold: float = 0.7,
    wrap_up_turns_threshold: int = 2,
    wrap_up_minutes_threshold: float = 2.0,
) -> TurnResult:
    """Process one user message.

    Raises ProviderError (retryable) with ``state`` unchanged. A non-retryable
    provider failure moves the conversation to ``error`` instead; the user
    message is kept in the transcript.
    """
    working = append_message(state, MessageRole.USER, user_message)

    warning = None
    if not should_complete(working, config).should_complete:
        warning = limit_warning(
            state,
            config,
            now=now,
            turns_threshold=wrap_up_turns_threshold,
            minutes_threshold=wrap_up_minutes_threshold,
        )
    prompt = build_turn_prompt(working, config, wrap_up_warning=warning)

    try:
        reply = await llm.respond(prompt, working.messages)
    except ProviderError as e:
        if e.retryable:
            logger.warning(
                "turn_provider_error",
                conversation_id=state.conversation_id,
                code=e.code,
                error=str(e),
            )
            raise
        errored = mark_conversation_error(working, str(e))
        return TurnResult(state=errored, assistant_text=None, error=str(e))

    working = append_message(working, MessageRole.ASSISTANT, reply.assistant_text)

    schema = config.extraction_schema
    validation = None
    if reply.extractions:
        validation = validate_extracted_data(
            reply.extractions,
            reply.field_confidence,
            schema,
            low_confidence_threshold=low_confidence_threshold,
            extra_warnings=reply.warnings,
        )
        if validation.errors or validation.warnings:
            logger.warning(
                "extraction_validation_issues",
                conversation_id=state.conversation_id,
                errors=validation.errors,
                warnings=validation.warnings,
            )
        confidence = reply.confidence
        if confidence is None:
            confidence = calculate_overall_confidence(reply.field_confidence, schema)
        working = update_from_extractions(working, reply.extractions, schema)
        working = merge_extractions(working, reply.extractions, confidence)
    else:
        working = analyze_and_update_from_keywords(working, user_message, config.topics)

    check = should_complete(working, config)
    if not check.should_complete:
        return TurnResult(state=working, assistant_text=reply.assistant_text, validation=validation)

    partial = is_partial(working, config)
    working = complete_conversation(working, check.reason)
    return TurnResult(
        state=working,
        assistant_text=reply.assistant_text,
        completed=True,
        reason=check.reason,
        partial=partial,
        validation=validation,
    )


# ── Driver ──────────────────────────────────────────────────────────


PublisherFactory = Callable[[str], ConversationStreamPublisher]


class ConversationDriver:
    """Runs conversations against a store, a config resolver and an LLM.

    Usage::

        driver = ConversationDriver(store, resolver, llm)
        state = await driver.start("form_123", greet=True)
        result = await driver.send(state.conversation_id, "My laptop won't boot")
        if result.completed:
            submission = await driver.finalize(state.conversation_id, form_fields)
    """

    def __init__(
        self,
        store: ConversationStore,
        resolver: ConfigResolver,
        llm: LLMCapability,
        *,
        locks: ConversationLocks | None = None,
        publisher_factory: PublisherFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.llm = llm
        self.locks = locks or ConversationLocks()
        self.publisher_factory = publisher_factory
        self.settings = settings or get_settings()

    async def _publisher(self, conversation_id: str) -> ConversationStreamPublisher | None:
        if self.publisher_factory is None:
            return None
        publisher = self.publisher_factory(conversation_id)
        await publisher.setup(
            ttl=self.settings.conversation_stream_ttl,
            maxlen=self.settings.conversation_stream_maxlen,
        )
        return publisher

    async def _load(self, conversation_id: str) -> ConversationState:
        state = await self.store.load(conversation_id)
        if state is None:
            raise ConversationNotFound(conversation_id)
        bind_conversation(state.conversation_id, state.form_id)
        return state

    async def get(self, conversation_id: str) -> ConversationState:
        return await self._load(conversation_id)

    async def start(self, form_id: str, *, greet: bool = False) -> ConversationState:
        """Create and persist a new conversation.

        With ``greet`` the model writes the opening message straight away; a
        provider failure then propagates and nothing is stored.
        """
        config = self.resolver.resolve(form_id)
        state = create_conversation_state(form_id, config)
        bind_conversation(state.conversation_id, form_id)

        if greet:
            reply = await self.llm.respond(build_greeting_prompt(config), [])
            state = append_message(state, MessageRole.ASSISTANT, reply.assistant_text)

        await self.store.save(state)
        return state

    async def _finish_at_limit(
        self,
        state: ConversationState,
        reason: str,
        code: str,
        user_message: str,
    ) -> ConversationLimitReached:
        finished = complete_conversation(state, reason)
        await self.store.save(finished)
        publisher = await self._publisher(state.conversation_id)
        if publisher is not None:
            await publisher.emit_completed(reason=reason, partial=True)
        logger.info("conversation_limit_reached", conversation_id=state.conversation_id, code=code)
        return ConversationLimitReached(state.conversation_id, code, user_message)

    async def send(
        self,
        conversation_id: str,
        message: str,
        *,
        now: datetime | None = None,
    ) -> TurnResult:
        """Process one user message under the conversation's lock.

        Raises ConversationLimitReached when a turn or duration ceiling was
        already hit (the conversation is completed and saved first), and
        ProviderError when the model call failed and the turn may be retried.
        """
        async with self.locks.hold(conversation_id):
            state = await self._load(conversation_id)
            if not state.is_active:
                raise TerminalStateViolation(conversation_id, state.status.value)

            config = self.resolver.resolve(state.form_id)
            now = now or utcnow()

            if state.turn_count >= state.max_turns:
                raise await self._finish_at_limit(
                    state,
                    MAX_TURNS_REASON,
                    ConversationLimitReached.TURN_LIMIT_REACHED,
                    TURN_LIMIT_MESSAGE,
                )
            if elapsed_minutes(state, now) >= config.conversation_limits.max_duration:
                raise await self._finish_at_limit(
                    state,
                    DURATION_REASON,
                    ConversationLimitReached.DURATION_EXCEEDED,
                    DURATION_LIMIT_MESSAGE,
                )

            publisher = await self._publisher(conversation_id)
            if publisher is not None:
                await publisher.emit_status("thinking")

            try:
                result = await step(
                    state,
                    message,
                    config,
                    self.llm,
                    now=now,
                    low_confidence_threshold=self.settings.low_confidence_threshold,
                    wrap_up_turns_threshold=self.settings.wrap_up_turns_threshold,
                    wrap_up_minutes_threshold=self.settings.wrap_up_minutes_threshold,
                )
            except ProviderError as e:
                if publisher is not None:
                    await publisher.emit_error(e.code, PROVIDER_RETRY_MESSAGE)
                raise

            await self.store.save(result.state)
            if publisher is not None:
                await self._publish_turn(publisher, result)

            logger.info(
                "turn_processed",
                conversation_id=conversation_id,
                turn=result.state.turn_count,
                confidence=round(result.state.confidence, 3),
                completed=result.completed,
                status=result.state.status.value,
            )
            return result

    async def _publish_turn(
        self,
        publisher: ConversationStreamPublisher,
        result: TurnResult,
    ) -> None:
        state = result.state
        if state.status == ConversationStatus.ERROR:
            await publisher.emit_error("provider_failed", state.error)
            return

        await publisher.emit_reply(result.assistant_text or "", turn=state.turn_count)
        await publisher.emit_coverage(
            [t.model_dump(by_alias=True) for t in state.topics],
            confidence=state.confidence,
        )
        if result.completed:
            await publisher.emit_completed(reason=result.reason, partial=result.partial)

    async def complete(self, conversation_id: str) -> ConversationState:
        """End the conversation because the respondent confirmed it is done."""
        async with self.locks.hold(conversation_id):
            state = await self._load(conversation_id)
            completed = complete_conversation(state, USER_CONFIRMED_REASON)
            await self.store.save(completed)
            return completed

    async def abandon(self, conversation_id: str, reason: str | None = None) -> ConversationState:
        async with self.locks.hold(conversation_id):
            state = await self._load(conversation_id)
            abandoned = abandon_conversation(state, reason)
            await self.store.save(abandoned)
            publisher = await self._publisher(conversation_id)
            if publisher is not None:
                await publisher.emit_completed(status=abandoned.status.value, reason=reason)
            return abandoned

    async def finalize(
        self,
        conversation_id: str,
        form_fields: list[FormField],
        *,
        processor: ConversationProcessor | None = None,
    ) -> ProcessorResult:
        """Build submission data from whatever the conversation has gathered.

        Usually called once the conversation is completed; abandoned ones yield
        a partial submission.
        """
        state = await self._load(conversation_id)
        config = self.resolver.resolve(state.form_id)
        return (processor or ConversationProcessor()).process(state, config, form_fields)
