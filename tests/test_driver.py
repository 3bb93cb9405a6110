"""Tests for the turn transition and the conversation driver.

Covers:
- step(): extraction vs keyword coverage, completion, provider failures
- wrap-up warnings near the turn and duration ceilings
- ConversationDriver lifecycle (start / send / complete / abandon / finalize)
- turn events on the publisher and per-conversation serialization
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from convoforms.config import Settings
from convoforms.core.driver import (
    PROVIDER_RETRY_MESSAGE,
    ConversationDriver,
    build_turn_prompt,
    step,
)
from convoforms.core.errors import (
    ConversationLimitReached,
    ConversationNotFound,
    ProviderError,
    TerminalStateViolation,
)
from convoforms.core.state import (
    ALL_COVERED_REASON,
    DURATION_REASON,
    MAX_TURNS_REASON,
    USER_CONFIRMED_REASON,
    append_message,
    create_conversation_state,
    update_topic_coverage,
)
from convoforms.core.streams import ConversationStreamPublisher
from convoforms.schemas.conversational import (
    ConversationalFormConfig,
    ConversationStatus,
    MessageRole,
)
from convoforms.schemas.submission import FormField
from convoforms.services.llm import LLMReply, OpenAICompatibleLLM
from convoforms.services.persistence import InMemoryConversationStore
from convoforms.templates import TemplateConfigResolver, TemplateRegistry, default_registry
from tests.helpers import ScriptedLLM, make_config, mock_openai_client

HARDWARE = LLMReply(
    assistant_text="Thanks, I've logged a hardware issue.",
    extractions={"issueCategory": "hardware"},
    confidence=0.9,
)
CHATTY = LLMReply(assistant_text="Could you tell me a bit more?")


# ─── step() ──────────────────────────────────────────────────────────


class TestStep:
    async def test_extraction_completes_conversation(self, config):
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(HARDWARE)

        result = await step(state, "My laptop screen cracked", config, llm)

        assert result.completed is True
        assert result.reason == ALL_COVERED_REASON
        assert result.partial is False
        assert result.assistant_text == HARDWARE.assistant_text
        assert result.state.status == ConversationStatus.COMPLETED
        assert result.state.partial_extractions == {"issueCategory": "hardware"}
        assert result.state.topic("t1").covered
        assert [m.role for m in result.state.messages] == [
            MessageRole.SYSTEM,
            MessageRole.USER,
            MessageRole.ASSISTANT,
        ]

    async def test_input_state_is_not_mutated(self, config):
        state = create_conversation_state("form_1", config)
        await step(state, "hello", config, ScriptedLLM(HARDWARE))
        assert state.turn_count == 0
        assert len(state.messages) == 1
        assert state.status == ConversationStatus.ACTIVE

    async def test_llm_sees_user_message(self, config):
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(CHATTY)
        await step(state, "VPN drops every hour", config, llm)

        prompt, messages = llm.calls[0]
        assert messages[-1].content == "VPN drops every hour"
        assert "## Guidance for This Turn" in prompt

    async def test_keyword_fallback_without_extractions(self, config):
        state = create_conversation_state("form_1", config)
        result = await step(
            state, "The issue category is hardware or software, not sure", config, ScriptedLLM(CHATTY)
        )

        topic = result.state.topic("t1")
        assert topic.covered
        assert topic.depth == pytest.approx(0.7)
        assert result.state.confidence == 0.0
        assert result.completed is False
        assert result.validation is None

    async def test_missing_confidence_is_computed_from_fields(self, config):
        reply = LLMReply(
            assistant_text="Got it.",
            extractions={"issueCategory": "software"},
            field_confidence={"issueCategory": 0.6},
        )
        state = create_conversation_state("form_1", config)
        result = await step(state, "Excel crashes", config, ScriptedLLM(reply))
        assert result.state.confidence == pytest.approx(0.6)
        assert result.completed is True

    async def test_invalid_extractions_are_reported_and_kept(self, config):
        reply = LLMReply(
            assistant_text="Noted.",
            extractions={"issueCategory": "toaster"},
            field_confidence={"issueCategory": 0.3},
            confidence=0.3,
        )
        state = create_conversation_state("form_1", config)
        result = await step(state, "It's the toaster", config, ScriptedLLM(reply))

        assert "Field 'issueCategory' must be one of: hardware, software" in result.validation.errors
        assert "Low confidence (30%) for field 'issueCategory'" in result.validation.warnings
        assert result.state.partial_extractions["issueCategory"] == "toaster"
        assert result.completed is False

    async def test_retryable_provider_error_leaves_state_untouched(self, config):
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(ProviderError("timed out"))

        with pytest.raises(ProviderError):
            await step(state, "hello", config, llm)

        assert state.turn_count == 0
        assert len(state.messages) == 1

    async def test_fatal_provider_error_marks_conversation(self, config):
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(ProviderError("invalid api key", retryable=False))

        result = await step(state, "hello", config, llm)

        assert result.error == "invalid api key"
        assert result.assistant_text is None
        assert result.state.status == ConversationStatus.ERROR
        assert result.state.messages[-1].content == "hello"

    async def test_turn_ceiling_completes_with_partial_data(self):
        config = make_config(max_turns=1)
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(CHATTY)

        result = await step(state, "hello", config, llm)

        assert result.completed is True
        assert result.reason == MAX_TURNS_REASON
        assert result.partial is True
        assert "turns remaining" not in llm.calls[0][0]


class TestWrapUpWarnings:
    async def test_warns_near_turn_ceiling(self):
        config = make_config(max_turns=2)
        llm = ScriptedLLM(CHATTY)
        await step(create_conversation_state("form_1", config), "hello", config, llm)
        assert "2 turns remaining" in llm.calls[0][0]

    async def test_warns_near_duration_ceiling(self):
        config = make_config(max_turns=10, max_duration=30)
        state = create_conversation_state("form_1", config)
        llm = ScriptedLLM(CHATTY)
        await step(state, "hello", config, llm, now=state.started_at + timedelta(minutes=29))
        assert "1 minutes remaining" in llm.calls[0][0]

    async def test_no_warning_early_on(self):
        config = make_config(max_turns=10)
        llm = ScriptedLLM(CHATTY)
        await step(create_conversation_state("form_1", config), "hello", config, llm)
        assert "turns remaining" not in llm.calls[0][0]


class TestBuildTurnPrompt:
    def test_guides_toward_uncovered_required_topic(self, config):
        state = append_message(create_conversation_state("form_1", config), MessageRole.USER, "hi")
        prompt = build_turn_prompt(state, config)
        assert "Extract the issueCategory field (enum)" in prompt
        assert "Use these fields:" in prompt
        assert "You have gathered all required information" not in prompt

    def test_wraps_up_once_required_topics_are_covered(self, config):
        state = update_topic_coverage(create_conversation_state("form_1", config), "t1", 0.6)
        prompt = build_turn_prompt(state, config, wrap_up_warning="WRAP UP NOW")
        assert "You have gathered all required information" in prompt
        assert "WRAP UP NOW" in prompt

    def test_reply_format_without_schema(self):
        bare = ConversationalFormConfig(objective="Ask how the onboarding went")
        state = append_message(create_conversation_state("form_1", bare), MessageRole.USER, "hi")
        prompt = build_turn_prompt(state, bare)
        assert "Respond ONLY with a valid JSON object" in prompt
        assert prompt.endswith("Use these fields:\n{}")

    def test_it_helpdesk_config_uses_its_own_prompt(self):
        config = default_registry().apply("it-helpdesk").config
        state = create_conversation_state("form_1", config)
        prompt = build_turn_prompt(state, config)
        assert prompt.startswith("You are a helpful IT support agent")
        assert '"I lost my laptop" → Hardware' in prompt
        assert "Use these fields:" in prompt


# ─── ConversationDriver ──────────────────────────────────────────────


def _make_driver(llm, *, config=None, publisher=None, store=None):
    resolver = TemplateConfigResolver(TemplateRegistry(), settings=Settings())
    resolver.bind_config("form_1", config or make_config())
    factory = (lambda _conversation_id: publisher) if publisher is not None else None
    return ConversationDriver(
        store if store is not None else InMemoryConversationStore(),
        resolver,
        llm,
        publisher_factory=factory,
        settings=Settings(conversation_stream_ttl=120, conversation_stream_maxlen=50),
    )


@pytest.fixture
def publisher():
    return AsyncMock(spec=ConversationStreamPublisher)


class TestDriverStart:
    async def test_start_persists_state(self):
        driver = _make_driver(ScriptedLLM())
        state = await driver.start("form_1")
        assert await driver.get(state.conversation_id) == state
        assert len(state.messages) == 1

    async def test_start_with_greeting(self):
        llm = ScriptedLLM(LLMReply(assistant_text="Hi! What can I help with today?"))
        driver = _make_driver(llm)

        state = await driver.start("form_1", greet=True)

        prompt, history = llm.calls[0]
        assert history == []
        assert prompt.startswith(state.messages[0].content)
        assert "Respond ONLY with a valid JSON object" in prompt
        assert state.messages[-1].role == MessageRole.ASSISTANT
        assert state.turn_count == 0

    async def test_greeting_failure_stores_nothing(self):
        store = InMemoryConversationStore()
        driver = _make_driver(ScriptedLLM(ProviderError("down")), store=store)
        with pytest.raises(ProviderError):
            await driver.start("form_1", greet=True)
        assert len(store) == 0

    async def test_unknown_conversation(self):
        driver = _make_driver(ScriptedLLM())
        with pytest.raises(ConversationNotFound):
            await driver.send("conv_missing", "hello")


class TestJsonModeRequests:
    """The provider runs in JSON mode, so every request must ask for JSON."""

    def _request_text(self, client):
        messages = client.chat.completions.create.call_args.kwargs["messages"]
        return "\n".join(m["content"] for m in messages)

    async def test_greeting_request_mentions_json(self):
        client = mock_openai_client(json.dumps({"reply": "Hi! What can I help with?"}))
        driver = _make_driver(OpenAICompatibleLLM(Settings(), client=client))

        state = await driver.start("form_1", greet=True)

        assert "JSON" in self._request_text(client)
        assert state.messages[-1].content == "Hi! What can I help with?"

    async def test_schema_less_turn_request_mentions_json(self):
        bare = ConversationalFormConfig(objective="Ask how the onboarding went")
        client = mock_openai_client(json.dumps({"reply": "How was your first week?"}))
        driver = _make_driver(OpenAICompatibleLLM(Settings(), client=client), config=bare)
        state = await driver.start("form_1")

        result = await driver.send(state.conversation_id, "Pretty good")

        assert "JSON" in self._request_text(client)
        assert result.assistant_text == "How was your first week?"
        assert result.state.status == ConversationStatus.ACTIVE


class TestDriverSend:
    async def test_turn_events(self, publisher):
        driver = _make_driver(ScriptedLLM(HARDWARE), publisher=publisher)
        state = await driver.start("form_1")

        result = await driver.send(state.conversation_id, "My laptop screen cracked")

        assert result.completed is True
        stored = await driver.get(state.conversation_id)
        assert stored.status == ConversationStatus.COMPLETED
        publisher.setup.assert_awaited_with(ttl=120, maxlen=50)
        publisher.emit_status.assert_awaited_once_with("thinking")
        publisher.emit_reply.assert_awaited_once_with(HARDWARE.assistant_text, turn=1)
        coverage_args = publisher.emit_coverage.await_args
        assert coverage_args.kwargs["confidence"] == 0.9
        assert coverage_args.args[0][0]["topicId"] == "t1"
        publisher.emit_completed.assert_awaited_once_with(reason=ALL_COVERED_REASON, partial=False)

    async def test_finished_conversation_rejects_messages(self):
        driver = _make_driver(ScriptedLLM(HARDWARE))
        state = await driver.start("form_1")
        await driver.send(state.conversation_id, "broken laptop")

        with pytest.raises(TerminalStateViolation):
            await driver.send(state.conversation_id, "one more thing")

    async def test_turn_ceiling_checked_before_processing(self, publisher):
        store = InMemoryConversationStore()
        llm = ScriptedLLM()
        driver = _make_driver(llm, config=make_config(max_turns=2), publisher=publisher, store=store)
        state = await driver.start("form_1")
        for text in ("one", "two"):
            state = append_message(state, MessageRole.USER, text)
        await store.save(state)

        with pytest.raises(ConversationLimitReached) as exc_info:
            await driver.send(state.conversation_id, "three")

        assert exc_info.value.code == ConversationLimitReached.TURN_LIMIT_REACHED
        assert llm.calls == []
        stored = await driver.get(state.conversation_id)
        assert stored.status == ConversationStatus.COMPLETED
        assert stored.completion_reason == MAX_TURNS_REASON
        publisher.emit_completed.assert_awaited_once_with(reason=MAX_TURNS_REASON, partial=True)

    async def test_duration_ceiling_checked_before_processing(self):
        llm = ScriptedLLM()
        driver = _make_driver(llm, config=make_config(max_duration=10))
        state = await driver.start("form_1")

        with pytest.raises(ConversationLimitReached) as exc_info:
            await driver.send(
                state.conversation_id,
                "still there?",
                now=state.started_at + timedelta(minutes=11),
            )

        assert exc_info.value.code == ConversationLimitReached.DURATION_EXCEEDED
        stored = await driver.get(state.conversation_id)
        assert stored.completion_reason == DURATION_REASON

    async def test_retryable_error_can_be_retried(self, publisher):
        llm = ScriptedLLM(ProviderError("rate limited", code="RateLimitError"), CHATTY)
        driver = _make_driver(llm, publisher=publisher)
        state = await driver.start("form_1")

        with pytest.raises(ProviderError):
            await driver.send(state.conversation_id, "hello")

        publisher.emit_error.assert_awaited_once_with("RateLimitError", PROVIDER_RETRY_MESSAGE)
        assert (await driver.get(state.conversation_id)).turn_count == 0

        result = await driver.send(state.conversation_id, "hello")
        assert result.state.turn_count == 1
        assert result.assistant_text == CHATTY.assistant_text

    async def test_fatal_error_is_persisted(self, publisher):
        llm = ScriptedLLM(ProviderError("model not found", retryable=False))
        driver = _make_driver(llm, publisher=publisher)
        state = await driver.start("form_1")

        result = await driver.send(state.conversation_id, "hello")

        assert result.error == "model not found"
        stored = await driver.get(state.conversation_id)
        assert stored.status == ConversationStatus.ERROR
        publisher.emit_error.assert_awaited_once_with("provider_failed", "model not found")
        publisher.emit_reply.assert_not_awaited()

    async def test_turns_for_one_conversation_are_serialized(self):
        class SlowLLM:
            async def respond(self, system_prompt, messages):
                await asyncio.sleep(0.01)
                return CHATTY

        driver = _make_driver(SlowLLM())
        state = await driver.start("form_1")

        await asyncio.gather(
            driver.send(state.conversation_id, "first"),
            driver.send(state.conversation_id, "second"),
        )

        stored = await driver.get(state.conversation_id)
        assert stored.turn_count == 2
        assert [m.content for m in stored.messages if m.role == MessageRole.USER] == [
            "first",
            "second",
        ]
        assert len(driver.locks) == 0


class TestDriverEnding:
    FORM_FIELDS = [FormField(path="issueCategory", required=True)]

    async def test_complete_on_user_confirmation(self):
        driver = _make_driver(ScriptedLLM())
        state = await driver.start("form_1")

        completed = await driver.complete(state.conversation_id)

        assert completed.status == ConversationStatus.COMPLETED
        assert completed.completion_reason == USER_CONFIRMED_REASON
        result = await driver.finalize(state.conversation_id, self.FORM_FIELDS)
        assert result.submission.meta.completion_reason == "user_confirmed"

    async def test_abandon(self, publisher):
        driver = _make_driver(ScriptedLLM(), publisher=publisher)
        state = await driver.start("form_1")

        abandoned = await driver.abandon(state.conversation_id, "respondent left")

        assert abandoned.status == ConversationStatus.ABANDONED
        publisher.emit_completed.assert_awaited_once_with(
            status="abandoned", reason="respondent left"
        )
        with pytest.raises(TerminalStateViolation):
            await driver.complete(state.conversation_id)

    async def test_finalize_completed_conversation(self):
        driver = _make_driver(ScriptedLLM(HARDWARE))
        state = await driver.start("form_1")
        await driver.send(state.conversation_id, "My laptop screen cracked")

        result = await driver.finalize(state.conversation_id, self.FORM_FIELDS)

        assert result.success is True
        assert result.submission.data == {"issueCategory": "hardware"}
        assert result.submission.meta.partial is False
        assert result.missing_required_fields == []

    async def test_finalize_abandoned_conversation_is_partial(self):
        driver = _make_driver(ScriptedLLM(CHATTY))
        state = await driver.start("form_1")
        await driver.send(state.conversation_id, "hello")
        await driver.abandon(state.conversation_id)

        result = await driver.finalize(state.conversation_id, self.FORM_FIELDS)

        assert result.success is True
        assert result.submission.meta.partial is True
        assert result.missing_required_fields == ["issueCategory"]
