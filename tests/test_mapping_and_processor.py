"""Tests for field mapping and submission processing.

Covers:
- case conversion helpers and matching strategies
- nested paths and unmapped fields
- required form field checks
- ConversationProcessor metadata (reason codes, partial flag, duration)
"""

from datetime import timedelta

import pytest

from convoforms.core.mapping import (
    UNMAPPED_KEY,
    find_matching_form_field,
    map_extracted_data,
    set_nested_value,
    to_camel_case,
    to_snake_case,
    validate_mapped_data,
)
from convoforms.core.processor import (
    ConversationProcessor,
    completion_reason_code,
    conversation_duration,
)
from convoforms.core.state import (
    DURATION_REASON,
    MAX_TURNS_REASON,
    USER_CONFIRMED_REASON,
    append_message,
    complete_conversation,
    create_conversation_state,
    merge_extractions,
    update_topic_coverage,
)
from convoforms.schemas.conversational import MessageRole
from convoforms.schemas.submission import FormField

# ─── Case conversion ─────────────────────────────────────────────────


class TestCaseConversion:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("issue category", "issueCategory"),
            ("Issue Category", "issueCategory"),
            ("issue_category", "issueCategory"),
            ("issue-category", "issueCategory"),
            ("issueCategory", "issueCategory"),
        ],
    )
    def test_to_camel_case(self, value, expected):
        assert to_camel_case(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("issueCategory", "issue_category"),
            ("IssueCategory", "issue_category"),
            ("issue-category", "issue_category"),
            ("issue category", "issue_category"),
        ],
    )
    def test_to_snake_case(self, value, expected):
        assert to_snake_case(value) == expected


# ─── Matching ────────────────────────────────────────────────────────


class TestFindMatchingFormField:
    FIELDS = [
        FormField(path="urgency"),
        FormField(path="Priority"),
        FormField(path="issue_category"),
        FormField(path="ticket.summary", label="Subject Line"),
    ]

    @pytest.mark.parametrize(
        "extraction_field,path,strategy",
        [
            ("urgency", "urgency", "exact"),
            ("priority", "Priority", "case-insensitive"),
            ("issueCategory", "issue_category", "case-conversion"),
            ("subject line", "ticket.summary", "label-match"),
            ("SubjectLine", "ticket.summary", "label-match"),
        ],
    )
    def test_strategies(self, extraction_field, path, strategy):
        form_field, used = find_matching_form_field(extraction_field, self.FIELDS)
        assert form_field.path == path
        assert used == strategy

    def test_no_match(self):
        assert find_matching_form_field("affectedSystem", self.FIELDS) is None

    def test_exact_match_wins_over_case_insensitive(self):
        fields = [FormField(path="Email"), FormField(path="email")]
        form_field, strategy = find_matching_form_field("email", fields)
        assert form_field.path == "email"
        assert strategy == "exact"


class TestMapExtractedData:
    def test_nested_paths_and_unmapped_fields(self, config):
        form_fields = [FormField(path="ticket.category", label="issueCategory")]
        result = map_extracted_data(
            {"issueCategory": "hardware", "notes": "fan noise"},
            config.extraction_schema,
            form_fields,
        )
        assert result.mapped_data["ticket"] == {"category": "hardware"}
        assert result.unmapped_fields == {"notes": "fan noise"}
        assert result.mapped_data[UNMAPPED_KEY] == {"notes": "fan noise"}
        assert [e.matched for e in result.report] == [True, False]
        assert result.report[0].strategy == "label-match"
        assert result.report[1].form_field_path is None

    def test_none_values_are_skipped(self, config):
        result = map_extracted_data(
            {"issueCategory": None}, config.extraction_schema, [FormField(path="issueCategory")]
        )
        assert result.mapped_data == {}
        assert result.report == []

    def test_fields_outside_schema_are_ignored(self, config):
        result = map_extracted_data(
            {"stray": "value"}, config.extraction_schema, [FormField(path="stray")]
        )
        assert result.mapped_data == {}

    def test_set_nested_value_replaces_scalars(self):
        target = {"a": 1}
        set_nested_value(target, "a.b.c", 2)
        assert target == {"a": {"b": {"c": 2}}}


class TestValidateMappedData:
    def test_missing_required(self):
        form_fields = [
            FormField(path="ticket.subject", label="Subject", required=True),
            FormField(path="urgency", required=True),
            FormField(path="hidden", required=True, included=False),
            FormField(path="notes"),
        ]
        warnings, missing = validate_mapped_data({"ticket": {"subject": ""}}, form_fields)
        assert missing == ["ticket.subject", "urgency"]
        assert warnings == [
            "Required field 'Subject' is missing",
            "Required field 'urgency' is missing",
        ]

    def test_all_present(self):
        warnings, missing = validate_mapped_data(
            {"urgency": "high"}, [FormField(path="urgency", required=True)]
        )
        assert warnings == []
        assert missing == []


# ─── Processor ───────────────────────────────────────────────────────


@pytest.fixture
def finished_state(config):
    state = create_conversation_state("form_1", config)
    state = append_message(state, MessageRole.USER, "my laptop is broken")
    state = append_message(state, MessageRole.ASSISTANT, "Sorry to hear that!")
    state = update_topic_coverage(state, "t1", 0.3)
    state = merge_extractions(state, {"issueCategory": "hardware", "notes": "fan"}, 0.8)
    return state


class TestCompletionReasonCode:
    @pytest.mark.parametrize(
        "reason,code",
        [
            (MAX_TURNS_REASON, "turn_limit"),
            (DURATION_REASON, "duration_limit"),
            (USER_CONFIRMED_REASON, "user_confirmed"),
            ("All required topics covered with sufficient confidence", "completed"),
        ],
    )
    def test_reason_codes(self, finished_state, reason, code):
        assert completion_reason_code(complete_conversation(finished_state, reason)) == code

    def test_duration_uses_completed_at(self, finished_state):
        done = complete_conversation(finished_state)
        done = done.model_copy(update={"completed_at": done.started_at + timedelta(seconds=95)})
        assert conversation_duration(done) == 95


class TestConversationProcessor:
    FORM_FIELDS = [
        FormField(path="issueCategory", required=True),
        FormField(path="subject", required=True),
    ]

    def test_builds_submission(self, finished_state, config):
        done = complete_conversation(finished_state)
        result = ConversationProcessor().process(done, config, self.FORM_FIELDS)

        assert result.success is True
        submission = result.submission
        assert submission.data["issueCategory"] == "hardware"
        assert submission.data[UNMAPPED_KEY] == {"notes": "fan"}
        meta = submission.meta
        assert meta.submission_type == "conversational"
        assert meta.conversation_id == done.conversation_id
        assert meta.turn_count == 1
        assert meta.completion_reason == "completed"
        assert meta.partial is False
        assert len(meta.transcript) == 3
        assert [t.topic_id for t in meta.topics_covered] == ["t1", "t2"]
        assert meta.extraction_schema[0].field == "issueCategory"
        assert meta.unmapped_fields == {"notes": "fan"}
        assert result.missing_required_fields == ["subject"]
        assert meta.missing_required_fields == ["subject"]

    def test_serializes_meta_under_alias(self, finished_state, config):
        done = complete_conversation(finished_state)
        result = ConversationProcessor().process(done, config, self.FORM_FIELDS)
        dumped = result.submission.model_dump(by_alias=True)
        assert "_meta" in dumped
        assert dumped["_meta"]["completionReason"] == "completed"

    def test_turn_limited_completion_is_partial(self, config):
        state = create_conversation_state("form_1", config)
        for i in range(config.conversation_limits.max_turns):
            state = append_message(state, MessageRole.USER, f"msg {i}")
        done = complete_conversation(state, MAX_TURNS_REASON)

        result = ConversationProcessor().process(done, config, self.FORM_FIELDS)
        assert result.submission.meta.completion_reason == "turn_limit"
        assert result.submission.meta.partial is True

    def test_options_trim_metadata(self, finished_state, config):
        processor = ConversationProcessor(include_transcript=False, include_mapping_report=False)
        result = processor.process(complete_conversation(finished_state), config, self.FORM_FIELDS)
        assert result.submission.meta.transcript == []
        assert result.submission.meta.mapping_report == []

    def test_custom_schema_overrides_config(self, finished_state, config):
        processor = ConversationProcessor(custom_schema=config.extraction_schema[:1])
        result = processor.process(complete_conversation(finished_state), config, self.FORM_FIELDS)
        assert UNMAPPED_KEY not in result.submission.data
        assert [f.field for f in result.submission.meta.extraction_schema] == ["issueCategory"]
