"""Quality gate wrapping every pipeline stage.

Each stage output is scored against its stage rubric before it is
trusted downstream:

- Rule items are always scored deterministically; on their own they
  produce a full 0-10 score when judging is disabled.
- Judge items are scored by the completion endpoint when a judge is
  configured; judged subscores override rule subscores with the same id.
- When the judge fails, the score is forced down to a flagged low value
  with a generic "Retry critique" suggestion. The gate never raises.

A stage scoring below its threshold is refined exactly once with the
judgement's issues and suggestions, and the refined output is accepted
unconditionally.

Source:
- src/concierge/critique/rules.py (RuleEvaluator)
- src/concierge/critique/judge.py (RubricJudge)
- src/concierge/config.py (triage/research/response thresholds)
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Mapping, Optional, TypeVar

from src.concierge.config import OrchestrationConfig
from src.concierge.critique.judge import RubricJudge
from src.concierge.critique.models import (
    JUDGE_FAILURE_SCORE,
    MAX_SCORE,
    EvaluationContext,
    Judgement,
    RubricDefinition,
    StageName,
)
from src.concierge.critique.rubrics import build_rubric_set
from src.concierge.critique.rules import RuleEvaluator
from src.concierge.llm.client import LLMError


logger = logging.getLogger(__name__)


RETRY_CRITIQUE_SUGGESTION = "Retry critique"

T = TypeVar("T")


@dataclass
class GateOutcome(Generic[T]):
    """Result of passing a stage output through the gate.

    Attributes:
        output: The accepted output (refined when the first pass failed).
        judgement: Judgement of the original output.
        refined: True when the output was refined once.
    """

    output: T
    judgement: Judgement
    refined: bool = False


def _clamp(score: float) -> float:
    return max(0.0, min(MAX_SCORE, score))


def _scale(points: float, max_points: float) -> float:
    if max_points <= 0:
        return MAX_SCORE
    return _clamp(points / max_points * MAX_SCORE)


class QualityGate:
    """Scores stage outputs and triggers the single refinement.

    Attributes:
        config: Orchestration configuration with stage thresholds.
        judge: Optional RubricJudge for judge items.
        rules: RuleEvaluator for rule items.
        rubrics: Rubric per stage.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        judge: Optional[RubricJudge] = None,
        rules: Optional[RuleEvaluator] = None,
        rubrics: Optional[Mapping[StageName, RubricDefinition]] = None,
    ):
        self.config = config
        self.judge = judge
        self.rules = rules or RuleEvaluator()
        self.rubrics: Dict[StageName, RubricDefinition] = build_rubric_set(rubrics)

    def threshold_for(self, stage: StageName) -> float:
        """Return the pass threshold configured for a stage."""
        if stage == StageName.TRIAGE:
            return self.config.triage_threshold
        if stage == StageName.RESEARCH:
            return self.config.research_threshold
        return self.config.response_threshold

    async def evaluate(self, context: EvaluationContext) -> Judgement:
        """Score one stage output.

        Args:
            context: The stage output and its inputs.

        Returns:
            A Judgement; never raises.
        """
        stage = context.stage
        rubric = self.rubrics[stage]
        threshold = self.threshold_for(stage)

        try:
            subscores, issues, suggestions = self.rules.evaluate(rubric, context)
        except Exception as e:
            logger.error(
                "Rule evaluation failed",
                extra={"stage": stage.value, "error": str(e), "error_type": type(e).__name__},
            )
            return self._failed_judgement(rubric, threshold, "Rule evaluation failed")

        rule_max = sum(item.max_points for item in rubric.rule_items)
        deterministic_score = _scale(sum(subscores.values()), rule_max)

        judgement = Judgement(
            stage=stage,
            rubric_id=rubric.rubric_id,
            score_overall=deterministic_score,
            subscores=dict(subscores),
            issues=list(issues),
            fix_suggestions=list(suggestions),
            threshold=threshold,
        )

        if self.judge is not None and self.config.judge_enabled and rubric.judge_items:
            try:
                judged = await self.judge.score(rubric, context)
            except LLMError as e:
                logger.warning(
                    "Judged assessment failed, using flagged low score",
                    extra={"stage": stage.value, "error": e.message},
                )
                judgement = judgement.model_copy(
                    update={
                        "score_overall": min(deterministic_score, JUDGE_FAILURE_SCORE),
                        "issues": [*judgement.issues, "Judged assessment failed."],
                        "fix_suggestions": [*judgement.fix_suggestions, RETRY_CRITIQUE_SUGGESTION],
                        "judge_failed": True,
                    }
                )
            else:
                merged = {**judgement.subscores, **judged.subscores}
                judgement = judgement.model_copy(
                    update={
                        "subscores": merged,
                        "score_overall": _scale(sum(merged.values()), rubric.max_points),
                        "issues": [*judgement.issues, *judged.issues],
                        "fix_suggestions": [*judgement.fix_suggestions, *judged.fix_suggestions],
                        "judge_used": True,
                    }
                )

        judgement = judgement.model_copy(
            update={"passed_threshold": judgement.score_overall >= threshold}
        )

        logger.info(
            "Stage critique",
            extra={
                "stage": stage.value,
                "score": round(judgement.score_overall, 2),
                "threshold": threshold,
                "passed": judgement.passed_threshold,
                "judge_failed": judgement.judge_failed,
            },
        )
        return judgement

    async def refine_once(
        self,
        stage: StageName,
        output: T,
        judgement: Judgement,
        refine: Callable[[T, Judgement], Awaitable[T]],
    ) -> T:
        """Refine an output once; a failing refinement keeps the original."""
        try:
            return await refine(output, judgement)
        except Exception as e:
            logger.warning(
                "Refinement failed, keeping original output",
                extra={"stage": stage.value, "error": str(e), "error_type": type(e).__name__},
            )
            return output

    async def run(
        self,
        stage: StageName,
        output: T,
        to_context: Callable[[T], EvaluationContext],
        refine: Callable[[T, Judgement], Awaitable[T]],
    ) -> GateOutcome[T]:
        """Gate a stage output, refining it at most once.

        Args:
            stage: The stage that produced ``output``.
            output: The stage output.
            to_context: Builds the evaluation context for an output.
            refine: Produces an improved output from the judgement.

        Returns:
            GateOutcome with the accepted output.
        """
        judgement = await self.evaluate(to_context(output))
        if judgement.passed_threshold:
            return GateOutcome(output=output, judgement=judgement, refined=False)

        refined = await self.refine_once(stage, output, judgement, refine)
        logger.info(
            "Stage refined once after failing critique",
            extra={"stage": stage.value, "score": round(judgement.score_overall, 2)},
        )
        return GateOutcome(output=refined, judgement=judgement, refined=True)

    def _failed_judgement(
        self,
        rubric: RubricDefinition,
        threshold: float,
        issue: str,
    ) -> Judgement:
        return Judgement(
            stage=rubric.stage,
            rubric_id=rubric.rubric_id,
            score_overall=JUDGE_FAILURE_SCORE,
            issues=[issue],
            fix_suggestions=[RETRY_CRITIQUE_SUGGESTION],
            threshold=threshold,
            passed_threshold=JUDGE_FAILURE_SCORE >= threshold,
            judge_failed=True,
        )
