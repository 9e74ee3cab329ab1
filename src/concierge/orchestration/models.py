"""Orchestration data models.

This module defines the closed vocabularies and records of one invocation:
- LoopState: where the participant is in the bounded question loop
- LoopAction: what the bot did this run
- Outcome: the single terminal outcome of an invocation
- SufficiencyAssessment: whether enough information was gathered
- OrchestratorDecision: the state machine's verdict
- ExecutionState: an honest summary of what happened this run
- InvocationResult: the typed value returned by the workflow

Requirements:
- Exactly one Outcome per invocation
- ExecutionState reports only what happened in the current run
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.concierge.critique.models import Judgement
from src.concierge.guardrails.engine import GuardrailDecision
from src.concierge.state.models import ConversationState


class LoopState(str, Enum):
    """Position of the participant in the question loop.

    Attributes:
        LOOP_1: First round.
        LOOP_2: An intermediate round.
        LOOP_3: The final round before the bound.
        EXHAUSTED: Past the bound; terminal.
    """

    LOOP_1 = "loop_1"
    LOOP_2 = "loop_2"
    LOOP_3 = "loop_3"
    EXHAUSTED = "exhausted"

    @classmethod
    def for_loop(cls, loop_number: int, max_loops: int) -> "LoopState":
        """Map a post-increment loop number onto a loop state."""
        if loop_number > max_loops:
            return cls.EXHAUSTED
        if loop_number == max_loops:
            return cls.LOOP_3
        if loop_number <= 1:
            return cls.LOOP_1
        return cls.LOOP_2


class LoopAction(str, Enum):
    """Action taken for the participant in this run."""

    ASK_CLARIFYING_QUESTIONS = "ask_clarifying_questions"
    ASK_MORE_QUESTIONS = "ask_more_questions"
    ASK_FINAL_QUESTIONS = "ask_final_questions"
    PROVIDE_RESPONSE = "provide_response"
    PROVIDE_FINAL_RESPONSE = "provide_final_response"
    CONFIRM_SELF_RESOLUTION = "confirm_self_resolution"
    ESCALATE = "escalate"
    ACKNOWLEDGE_STOP = "acknowledge_stop"
    REDIRECT_OFF_TOPIC = "redirect_off_topic"
    NONE = "none"


class Outcome(str, Enum):
    """The single terminal outcome of an invocation."""

    ASK_QUESTIONS = "ask_questions"
    FINALIZE = "finalize"
    ESCALATE = "escalate"
    ACKNOWLEDGE_STOP = "acknowledge_stop"
    SILENTLY_DROPPED = "silently_dropped"
    REDIRECT_OFF_TOPIC = "redirect_off_topic"


class SufficiencyAssessment(BaseModel):
    """Whether enough information exists to finalize.

    Attributes:
        has_enough_info: Final verdict.
        missing_info: Information still missing.
        reasoning: Why the verdict was reached.
        deterministic_enough: The checklist score met its threshold.
        failed: The judged assessment failed; the verdict is conservative.
    """

    model_config = ConfigDict(frozen=True)

    has_enough_info: bool = False
    missing_info: List[str] = Field(default_factory=list)
    reasoning: str = ""
    deterministic_enough: bool = False
    failed: bool = False


class OrchestratorDecision(BaseModel):
    """The verdict of the orchestrator state machine."""

    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    action: LoopAction
    loop_state: LoopState
    reasoning: str = ""


class ExecutionState(BaseModel):
    """What happened in this run, for the composed summary.

    Built fresh per invocation and discarded after composing; persisted
    only indirectly through the participant's conversation record.
    """

    loop_number: int = 0
    total_user_loops: int = 3
    questions_asked: int = 0
    information_gathered: int = 0
    missing_information: List[str] = Field(default_factory=list)
    stage_scores: Dict[str, float] = Field(default_factory=dict)
    loop_action_taken: LoopAction = LoopAction.NONE
    is_user_exhausted: bool = False

    def summary(self) -> str:
        return (
            f"Loop {self.loop_number}/{self.total_user_loops} | "
            f"Asked {self.questions_asked} questions | "
            f"Gathered {self.information_gathered} data points | "
            f"Missing {len(self.missing_information)} pieces | "
            f"Action: {self.loop_action_taken.value}"
        )


class InvocationResult(BaseModel):
    """Typed result of one workflow invocation.

    Attributes:
        outcome: The single terminal outcome.
        action: The loop action taken.
        guardrail: The guardrail decision that routed the event.
        participant: The active participant (actor of the event).
        state: The new conversation state, or None when nothing was persisted.
        comment_body: The composed comment, if any.
        comment_posted: True when the comment was posted to the thread.
        judgements: Stage judgements keyed by stage name.
        execution: Summary of the run, when stages ran.
        reason: Short machine-readable reason.
    """

    outcome: Outcome
    action: LoopAction = LoopAction.NONE
    guardrail: GuardrailDecision
    participant: str = ""
    state: Optional[ConversationState] = None
    comment_body: Optional[str] = None
    comment_posted: bool = False
    judgements: Dict[str, Judgement] = Field(default_factory=dict)
    execution: Optional[ExecutionState] = None
    reason: str = ""
