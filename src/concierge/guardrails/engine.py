"""Per-invocation guardrail state machine.

The engine decides, for one incoming event, whether the pipeline runs
for the active participant. Checks are evaluated in a fixed order and
the first match wins:

1. /stop                          -> finalize, acknowledge
2. not authorized / blocked       -> silently drop, state untouched
3. finalized, no disagreement     -> drop, no response
4. finalized, disagreeing comment -> re-enter for one more pass
5. loop count at or over bound    -> escalate
6. otherwise                      -> proceed

Off-topic judgement layers on top for comment events that would
proceed: a confident off-topic verdict adds a strike, and once the
strike limit is reached the user is blocked and later comments fall
into case 2.

Source:
- src/concierge/state/tracker.py (ConversationTracker)
- src/concierge/guardrails/commands.py (CommandDetector)
- src/concierge/guardrails/phrases.py (disagreement predicate)
"""

import logging
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from src.concierge.config import OrchestrationConfig
from src.concierge.github.models import IssueEvent
from src.concierge.guardrails.commands import CommandDetector, CommandInfo
from src.concierge.guardrails.offtopic import OffTopicAssessment
from src.concierge.guardrails.phrases import (
    TextPredicate,
    default_disagreement_predicate,
)
from src.concierge.state.models import ConversationState, UserConversation, utc_now
from src.concierge.state.tracker import ConversationTracker


logger = logging.getLogger(__name__)


class GuardrailDecision(str, Enum):
    """Outcome of the guardrail checks for one invocation.

    Attributes:
        IGNORE_SELF: The event was produced by the bot itself.
        ACKNOWLEDGE_STOP: The user issued /stop; their conversation ends.
        DROP_UNAUTHORIZED: Unknown or blocked user; no response.
        DROP_FINALIZED: Conversation already finalized; no response.
        REENTER_DISAGREEMENT: Finalized, but the user disagrees; rerun once.
        ESCALATE_LOOP_LIMIT: The user exhausted their question rounds.
        REDIRECT_OFF_TOPIC: The comment was judged off-topic.
        PROCEED: Run the pipeline stages.
    """

    IGNORE_SELF = "ignore_self"
    ACKNOWLEDGE_STOP = "acknowledge_stop"
    DROP_UNAUTHORIZED = "drop_unauthorized"
    DROP_FINALIZED = "drop_finalized"
    REENTER_DISAGREEMENT = "reenter_disagreement"
    ESCALATE_LOOP_LIMIT = "escalate_loop_limit"
    REDIRECT_OFF_TOPIC = "redirect_off_topic"
    PROCEED = "proceed"

    @property
    def is_silent(self) -> bool:
        """True when no comment is posted and no state is written."""
        return self in _SILENT_DECISIONS

    @property
    def runs_pipeline(self) -> bool:
        """True when the pipeline stages should run."""
        return self in (GuardrailDecision.PROCEED, GuardrailDecision.REENTER_DISAGREEMENT)


_SILENT_DECISIONS = frozenset(
    {
        GuardrailDecision.IGNORE_SELF,
        GuardrailDecision.DROP_UNAUTHORIZED,
        GuardrailDecision.DROP_FINALIZED,
    }
)


class GuardrailResult(BaseModel):
    """Guardrail verdict plus the state it produced.

    Attributes:
        decision: The guardrail decision.
        participant: Login of the active participant.
        state: State after the checks. For silent decisions this is the
            exact state that was passed in.
        conversation: The participant's conversation, if authorized.
        commands: Commands found in the new text.
        reason: Short machine-friendly explanation.
        off_topic: Off-topic assessment when one was applied.
    """

    decision: GuardrailDecision
    participant: str
    state: ConversationState
    conversation: Optional[UserConversation] = None
    commands: CommandInfo = Field(default_factory=CommandInfo)
    reason: str = ""
    off_topic: Optional[OffTopicAssessment] = None


class GuardrailEngine:
    """Evaluates the fixed-order guardrail checks.

    Attributes:
        config: Orchestration configuration (loop bound, strike limits).
        tracker: ConversationTracker used to resolve the participant.
        detector: CommandDetector for /stop and /diagnose.
        is_disagreement: Predicate deciding whether new text rejects the
            bot's last conclusion.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        tracker: Optional[ConversationTracker] = None,
        detector: Optional[CommandDetector] = None,
        is_disagreement: Optional[TextPredicate] = None,
        clock: Callable = utc_now,
    ):
        self.config = config
        self.clock = clock
        self.tracker = tracker or ConversationTracker(clock=clock)
        self.detector = detector or CommandDetector()
        self.is_disagreement = is_disagreement or default_disagreement_predicate()

    def evaluate(self, event: IssueEvent, state: ConversationState) -> GuardrailResult:
        """Run the guardrail checks for one event.

        Args:
            event: The parsed inbound event.
            state: The thread's current state (fresh if none was found).

        Returns:
            GuardrailResult describing the decision and resulting state.
        """
        participant = event.actor
        new_text = event.new_text

        if self.config.is_bot(participant):
            return self._result(GuardrailDecision.IGNORE_SELF, participant, state, reason="bot_comment")

        commands = self.detector.detect(new_text)
        migrated = self.tracker.migrate_legacy(state)
        tracked = self.tracker.get_or_create(
            migrated,
            username=participant,
            is_thread_owner=event.is_thread_owner_actor,
            used_diagnose_command=commands.has_diagnose_command,
        )
        conversation = tracked.conversation

        if commands.has_stop_command:
            if conversation is None:
                return self._result(
                    GuardrailDecision.DROP_UNAUTHORIZED,
                    participant,
                    state,
                    commands=commands,
                    reason="stop_from_unknown_user",
                )
            now = self.clock()
            stopped = conversation.model_copy(
                update={"is_finalized": True, "finalized_at": now}
            )
            return self._result(
                GuardrailDecision.ACKNOWLEDGE_STOP,
                participant,
                tracked.state.with_conversation(stopped),
                conversation=stopped,
                commands=commands,
                reason="stop_command",
            )

        if conversation is None:
            return self._result(
                GuardrailDecision.DROP_UNAUTHORIZED,
                participant,
                state,
                commands=commands,
                reason="not_in_allow_list",
            )

        if conversation.is_off_topic_blocked:
            return self._result(
                GuardrailDecision.DROP_UNAUTHORIZED,
                participant,
                state,
                commands=commands,
                reason="off_topic_blocked",
            )

        if conversation.is_finalized:
            if event.is_comment_event and self.is_disagreement(new_text):
                return self._result(
                    GuardrailDecision.REENTER_DISAGREEMENT,
                    participant,
                    tracked.state,
                    conversation=conversation,
                    commands=commands,
                    reason="disagreement_after_finalize",
                )
            return self._result(
                GuardrailDecision.DROP_FINALIZED,
                participant,
                state,
                commands=commands,
                reason="already_finalized",
            )

        if conversation.loop_count >= self.config.max_user_loops:
            return self._result(
                GuardrailDecision.ESCALATE_LOOP_LIMIT,
                participant,
                tracked.state,
                conversation=conversation,
                commands=commands,
                reason="loop_limit_reached",
            )

        return self._result(
            GuardrailDecision.PROCEED,
            participant,
            tracked.state,
            conversation=conversation,
            commands=commands,
            reason="proceed",
        )

    def apply_off_topic(
        self,
        result: GuardrailResult,
        assessment: OffTopicAssessment,
    ) -> GuardrailResult:
        """Layer an off-topic assessment on top of a proceeding result.

        Args:
            result: A result whose decision runs the pipeline.
            assessment: The judged off-topic assessment.

        Returns:
            The original result when the assessment is below threshold,
            otherwise a REDIRECT_OFF_TOPIC result with a strike recorded.
        """
        if not result.decision.runs_pipeline or result.conversation is None:
            return result

        if not assessment.off_topic or (
            assessment.confidence_score < self.config.off_topic_confidence_threshold
        ):
            return result.model_copy(update={"off_topic": assessment})

        strikes = result.conversation.off_topic_strike_count + 1
        blocked = strikes >= self.config.off_topic_strike_limit
        conversation = result.conversation.model_copy(
            update={"off_topic_strike_count": strikes, "is_off_topic_blocked": blocked}
        )

        logger.info(
            "Off-topic strike recorded",
            extra={
                "thread_key": result.state.thread_key,
                "username": result.participant,
                "strikes": strikes,
                "blocked": blocked,
            },
        )

        return result.model_copy(
            update={
                "decision": GuardrailDecision.REDIRECT_OFF_TOPIC,
                "state": result.state.with_conversation(conversation),
                "conversation": conversation,
                "reason": "off_topic_blocked" if blocked else "off_topic_strike",
                "off_topic": assessment,
            }
        )

    def _result(
        self,
        decision: GuardrailDecision,
        participant: str,
        state: ConversationState,
        conversation: Optional[UserConversation] = None,
        commands: Optional[CommandInfo] = None,
        reason: str = "",
    ) -> GuardrailResult:
        logger.info(
            "Guardrail decision",
            extra={
                "thread_key": state.thread_key,
                "username": participant,
                "decision": decision.value,
                "reason": reason,
            },
        )
        return GuardrailResult(
            decision=decision,
            participant=participant,
            state=state,
            conversation=conversation,
            commands=commands or CommandInfo(),
            reason=reason,
        )
