"""Loop-bounded decision procedure.

The OrchestratorStateMachine maps the participant's post-increment loop
number, a sufficiency assessment and a self-resolution signal onto exactly
one outcome:

    loop > bound            -> ESCALATE (unconditionally)
    self-resolution         -> FINALIZE (confirm_self_resolution)
    re-entry after dispute  -> FINALIZE (regenerated final response)
    enough information      -> FINALIZE (provide_response / provide_final_response)
    otherwise               -> ASK_QUESTIONS (clarifying / more / final)

Escalation is reserved for loops past the bound; an insufficient final
loop asks a last round of questions instead.

The SufficiencyAssessor blends the deterministic checklist score with a
judged assessment. Any failure of the judged assessment yields a
conservative "insufficient" verdict.

Source:
- src/concierge/orchestration/models.py (LoopState, LoopAction, Outcome)
- src/concierge/stages/casepacket.py (ScoringResult.is_actionable)
"""

import json
import logging
from typing import Any, Optional

from src.concierge.config import OrchestrationConfig
from src.concierge.llm.client import CompletionClient, LLMError
from src.concierge.orchestration.models import (
    LoopAction,
    LoopState,
    OrchestratorDecision,
    Outcome,
    SufficiencyAssessment,
)
from src.concierge.stages.models import ResearchResult, StageInput, TriageResult


logger = logging.getLogger(__name__)


SUFFICIENCY_FAILED = "sufficiency_check_failed"

SUFFICIENCY_SYSTEM_PROMPT = """You decide whether a support engineer has enough information to act on an issue.
Only list information that is genuinely required and not already present.

You MUST respond with valid JSON only:
{
  "has_enough_info": true|false,
  "missing_info": ["missing item"],
  "reasoning": "short explanation"
}"""


_ASK_ACTIONS = {
    LoopState.LOOP_1: LoopAction.ASK_CLARIFYING_QUESTIONS,
    LoopState.LOOP_2: LoopAction.ASK_MORE_QUESTIONS,
    LoopState.LOOP_3: LoopAction.ASK_FINAL_QUESTIONS,
}


class SufficiencyAssessor:
    """Judges whether enough information was gathered to finalize."""

    def __init__(self, client: Optional[CompletionClient] = None):
        self.client = client

    async def assess(
        self,
        inp: StageInput,
        triage: TriageResult,
        research: ResearchResult,
    ) -> SufficiencyAssessment:
        """Assess sufficiency; never raises."""
        scoring = inp.case_packet.scoring
        deterministic_enough = scoring.is_actionable

        if self.client is None:
            return SufficiencyAssessment(
                has_enough_info=deterministic_enough,
                missing_info=[] if deterministic_enough else list(scoring.missing_fields),
                reasoning=f"Checklist score {scoring.score}/{scoring.threshold}",
                deterministic_enough=deterministic_enough,
            )

        try:
            data = await self.client.complete_json(
                SUFFICIENCY_SYSTEM_PROMPT,
                self._build_prompt(inp, triage, research),
            )
            judged_enough = _as_bool(data.get("has_enough_info"))
            missing = data.get("missing_info") or []
            if not isinstance(missing, list):
                raise LLMError("missing_info is not a list")
            missing_info = [str(m).strip() for m in missing if str(m).strip()]
        except LLMError as e:
            logger.warning(
                "Sufficiency assessment failed, treating as insufficient",
                extra={"thread_key": inp.thread_key, "error": e.message},
            )
            return SufficiencyAssessment(
                has_enough_info=False,
                missing_info=[SUFFICIENCY_FAILED],
                reasoning=SUFFICIENCY_FAILED,
                deterministic_enough=deterministic_enough,
                failed=True,
            )

        has_enough = (deterministic_enough or judged_enough) and not missing_info
        return SufficiencyAssessment(
            has_enough_info=has_enough,
            missing_info=missing_info,
            reasoning=str(data.get("reasoning") or ""),
            deterministic_enough=deterministic_enough,
        )

    @staticmethod
    def _build_prompt(inp: StageInput, triage: TriageResult, research: ResearchResult) -> str:
        return f"""**Issue:** {inp.issue_title}
**Category:** {triage.category}
**Summary:** {triage.summary}

**Known facts:**
{json.dumps(inp.case_packet.facts, indent=2)[:3000]}

**Checklist score:** {inp.case_packet.scoring.score} (threshold {inp.case_packet.scoring.threshold})
**Checklist gaps:** {", ".join(inp.case_packet.missing_fields) or "(none)"}

**Research findings:**
{chr(10).join(f"- {f}" for f in research.findings) or "- (none)"}

**Latest comment:**
{inp.new_text[:2000] or "(none)"}

Answer as JSON."""


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    raise LLMError(f"has_enough_info is not a boolean: {value!r}")


class OrchestratorStateMachine:
    """Picks exactly one outcome per invocation for the active participant.

    The machine holds no per-invocation state: every call builds a fresh
    decision, so no flag from an earlier invocation can leak into a later
    one.

    Attributes:
        config: Orchestration configuration with the loop bound.
    """

    def __init__(self, config: OrchestrationConfig):
        self.config = config

    def decide(
        self,
        loop_number: int,
        sufficiency: SufficiencyAssessment,
        self_resolved: bool = False,
        reentry: bool = False,
    ) -> OrchestratorDecision:
        """Decide the outcome for this invocation.

        Args:
            loop_number: The participant's loop count after this
                invocation's increment.
            sufficiency: Information sufficiency assessment.
            self_resolved: The latest text says the user fixed it.
            reentry: The finalized participant disagreed with the
                previous conclusion.

        Returns:
            OrchestratorDecision with exactly one outcome.
        """
        loop_state = LoopState.for_loop(loop_number, self.config.max_user_loops)

        if loop_state == LoopState.EXHAUSTED:
            decision = OrchestratorDecision(
                outcome=Outcome.ESCALATE,
                action=LoopAction.ESCALATE,
                loop_state=loop_state,
                reasoning=f"Loop {loop_number} exceeds the limit of {self.config.max_user_loops}",
            )
        elif self_resolved:
            decision = OrchestratorDecision(
                outcome=Outcome.FINALIZE,
                action=LoopAction.CONFIRM_SELF_RESOLUTION,
                loop_state=loop_state,
                reasoning="User reports the problem is resolved",
            )
        elif reentry:
            decision = OrchestratorDecision(
                outcome=Outcome.FINALIZE,
                action=LoopAction.PROVIDE_FINAL_RESPONSE,
                loop_state=loop_state,
                reasoning="User disagreed with the previous conclusion; regenerating the final response",
            )
        elif sufficiency.has_enough_info:
            action = (
                LoopAction.PROVIDE_FINAL_RESPONSE
                if loop_state == LoopState.LOOP_3
                else LoopAction.PROVIDE_RESPONSE
            )
            decision = OrchestratorDecision(
                outcome=Outcome.FINALIZE,
                action=action,
                loop_state=loop_state,
                reasoning=sufficiency.reasoning or "Sufficient information gathered",
            )
        else:
            decision = OrchestratorDecision(
                outcome=Outcome.ASK_QUESTIONS,
                action=_ASK_ACTIONS[loop_state],
                loop_state=loop_state,
                reasoning=sufficiency.reasoning or "More information needed",
            )

        logger.info(
            "Orchestrator decision",
            extra={
                "loop_number": loop_number,
                "loop_state": loop_state.value,
                "outcome": decision.outcome.value,
                "action": decision.action.value,
            },
        )
        return decision
