"""LLM-scored rubric items.

The judge only scores items of type ``judge``; rule items never reach the
completion endpoint. Any failure is raised as LLMError for the quality
gate to turn into a flagged low score.

Source:
- src/concierge/llm/client.py (CompletionClient)
- src/concierge/critique/models.py (RubricDefinition, EvaluationContext)
"""

import json
import logging
from typing import Dict, List, NamedTuple

from src.concierge.critique.models import EvaluationContext, RubricDefinition
from src.concierge.llm.client import CompletionClient, LLMError


logger = logging.getLogger(__name__)


JUDGE_SYSTEM_PROMPT = """You are a strict reviewer of a support bot's intermediate output.
Score each criterion from 0 to its max_points. Be critical; do not award full points for vague output.

Respond with JSON only:
{
  "subscores": {"<criterion id>": <points>},
  "issues": ["problem found"],
  "fix_suggestions": ["how to fix it"]
}"""


class JudgeScores(NamedTuple):
    """Judged subscores with their issues and suggestions."""

    subscores: Dict[str, float]
    issues: List[str]
    fix_suggestions: List[str]


def _build_prompt(rubric: RubricDefinition, context: EvaluationContext) -> str:
    criteria = [
        {
            "id": item.id,
            "description": item.description,
            "max_points": item.max_points,
            "instructions": item.instructions or "",
        }
        for item in rubric.judge_items
    ]
    return f"""**Stage:** {context.stage.value}

**Criteria:**
{json.dumps(criteria, indent=2)}

**User input:**
{context.input_text[:3000]}

**Output to review:**
{context.output_text[:3000]}

Score every criterion as JSON."""


def _str_list(value: object) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


class RubricJudge:
    """Scores judge items of a rubric through the completion endpoint."""

    def __init__(self, client: CompletionClient):
        self.client = client

    async def score(
        self,
        rubric: RubricDefinition,
        context: EvaluationContext,
    ) -> JudgeScores:
        """Score the rubric's judge items.

        Args:
            rubric: Rubric whose judge items are scored.
            context: The stage output and inputs.

        Returns:
            JudgeScores clamped to each item's max points.

        Raises:
            LLMError: If the call fails or the answer lacks a subscore.
        """
        items = rubric.judge_items
        if not items:
            return JudgeScores({}, [], [])

        data = await self.client.complete_json(JUDGE_SYSTEM_PROMPT, _build_prompt(rubric, context))

        raw_scores = data.get("subscores")
        if not isinstance(raw_scores, dict):
            raise LLMError("Judge response is missing 'subscores'")

        lowered = {str(k).lower(): v for k, v in raw_scores.items()}
        subscores: Dict[str, float] = {}
        for item in items:
            if item.id.lower() not in lowered:
                raise LLMError(f"Judge response is missing a score for '{item.id}'")
            try:
                points = float(lowered[item.id.lower()])
            except (TypeError, ValueError) as e:
                raise LLMError(f"Judge score for '{item.id}' is not numeric", cause=e)
            subscores[item.id] = max(0.0, min(item.max_points, points))

        logger.debug(
            "Judge scored rubric",
            extra={"rubric_id": rubric.rubric_id, "subscores": subscores},
        )
        return JudgeScores(
            subscores,
            _str_list(data.get("issues")),
            _str_list(data.get("fix_suggestions")),
        )
