"""Unit tests for comment composition."""

import pytest

from src.concierge.compose.formatting import (
    DISAGREEMENT_HINT,
    QUICK_COMMANDS,
    ResponseComposer,
    format_brief,
    format_escalation,
    format_off_topic,
    format_questions,
    format_self_resolution,
    format_stop_acknowledgement,
    sanitize_line,
    shared_finding_texts,
)
from src.concierge.orchestration import ExecutionState, LoopAction
from src.concierge.stages import ScoringResult
from src.concierge.stages.models import FollowUpQuestion, ResponseDraft
from src.concierge.stages.specpack import DEFAULT_SPEC_PACK
from src.concierge.state import ConversationState, SharedFinding, StateStore, UserConversation


def _questions(n):
    return [
        FollowUpQuestion(field=f"field_{i}", question=f"Question {i}?", why_needed=f"Because {i}")
        for i in range(n)
    ]


class TestSanitize:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("  hello  ", "hello"),
            ("line one\nline two", "line one line two"),
            ("a\r\n\r\nb", "a b"),
            ("", ""),
        ],
    )
    def test_sanitize_line(self, raw, expected):
        assert sanitize_line(raw) == expected


class TestQuestions:
    def test_numbered_and_capped(self):
        text = format_questions("alice", _questions(5), loop_number=2, max_loops=3)
        assert text.startswith("@alice")
        assert "1. **Question 0?**" in text
        assert "3. **Question 2?**" in text
        assert "Question 3?" not in text
        assert "_Because 0_" in text
        assert "Loop 2 of 3" in text
        assert text.endswith(QUICK_COMMANDS)

    def test_blank_questions_are_skipped(self):
        questions = [FollowUpQuestion(field="a", question="   "), FollowUpQuestion(field="b", question="Real?")]
        text = format_questions("@alice", questions, loop_number=1, max_loops=3)
        assert "1. **Real?**" in text
        assert text.startswith("@alice\n")


class TestBrief:
    def test_sections(self):
        draft = ResponseDraft(
            summary="Crash on startup\nin the renderer",
            solution="Clear the cache.",
            key_evidence=["a", "b", "c", "d"],
            next_steps=["Upgrade to the fixed build"],
        )
        scoring = ScoringResult(score=85, threshold=70, is_actionable=True, warnings=["OS looks unusual"])
        text = format_brief("alice", draft, scoring, redaction_warnings=["github_token"])

        assert "**Summary:** Crash on startup in the renderer" in text
        assert "**Suggested fix:** Clear the cache." in text
        assert "- c" in text and "- d" not in text
        assert "- OS looks unusual" in text
        assert "- github_token" in text
        assert "**Completeness Score:** 85/100 (threshold: 70)" in text
        assert DISAGREEMENT_HINT in text

    def test_empty_draft(self):
        text = format_brief("alice", ResponseDraft())
        assert "No summary available." in text
        assert "Completeness Score" not in text


class TestOtherComments:
    def test_escalation(self):
        execution = ExecutionState(
            loop_number=4,
            total_user_loops=3,
            information_gathered=1,
            missing_information=["version"],
            loop_action_taken=LoopAction.ESCALATE,
        )
        text = format_escalation(
            "alice",
            execution,
            facts={"error_message": "boom"},
            missing=["version"],
            mentions=["@acme/maintainers"],
            findings=["Similar to #12"],
        )
        assert "## Escalation Notice" in text
        assert "After 3 rounds" in text
        assert "- **error_message:** boom" in text
        assert "### Findings" in text
        assert "### Still Missing\n- version" in text
        assert text.endswith("Tagging for manual review: @acme/maintainers")

    def test_escalation_without_facts(self):
        text = format_escalation("alice", ExecutionState(), facts={}, missing=[], mentions=[])
        assert "Nothing structured could be extracted." in text
        assert "Tagging" not in text

    def test_stop(self):
        assert "`/stop`" in format_stop_acknowledgement("alice")

    def test_off_topic_blocked(self):
        assert "won't respond" in format_off_topic("alice", "Unrelated question", blocked=True)
        assert "won't respond" not in format_off_topic("alice")

    def test_self_resolution(self):
        text = format_self_resolution("alice", summary="Cache cleared")
        assert "Glad to hear" in text
        assert "**For reference:** Cache cleared" in text


class TestComposer:
    def test_embeds_pruned_state(self, config):
        store = StateStore(max_asked_fields_history=2)
        composer = ResponseComposer(config, store, DEFAULT_SPEC_PACK)
        conversation = UserConversation(username="alice", asked_fields=["a", "b", "c"])
        state = ConversationState(thread_key="acme/widgets#42").with_conversation(conversation)

        body = composer.questions("alice", _questions(1), 1, state)

        assert body.startswith("@alice")
        extracted = store.extract(body)
        assert extracted.get_conversation("alice").asked_fields == ["b", "c"]

    def test_escalation_tags_spec_pack_mentions(self, config):
        spec_pack = DEFAULT_SPEC_PACK.model_copy(update={"escalation_mentions": ["@acme/support"]})
        composer = ResponseComposer(config, StateStore(), spec_pack)
        state = ConversationState(thread_key="acme/widgets#42")
        body = composer.escalation("alice", ExecutionState(), state)
        assert "Tagging for manual review: @acme/support" in body

    def test_shared_finding_texts(self):
        state = ConversationState(thread_key="acme/widgets#42").with_finding(
            SharedFinding(discovered_by="alice", content="Known issue #9")
        )
        assert shared_finding_texts(state) == ["Known issue #9 (via @alice)"]
