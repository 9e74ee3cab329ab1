"""Critique data models.

This module defines the records used by the quality gate:
- StageName: pipeline stages that are gated
- RubricItemType / RubricItem / RubricDefinition: scoring rubrics
- EvaluationContext: what a rubric is evaluated against
- Judgement: the scored result of one evaluation

Judgements are produced fresh for every evaluation and never persisted
across invocations.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# Score assigned when the judged assessment fails
JUDGE_FAILURE_SCORE = 3.0

MAX_SCORE = 10.0


class StageName(str, Enum):
    """Pipeline stages wrapped by the quality gate."""

    TRIAGE = "triage"
    RESEARCH = "research"
    RESPONSE = "response"


class RubricItemType(str, Enum):
    """How a rubric item is scored.

    Attributes:
        RULE: Deterministic rule evaluated in-process; always scored.
        JUDGE: Scored by the completion endpoint when judging is enabled.
    """

    RULE = "rule"
    JUDGE = "judge"


class RubricItem(BaseModel):
    """One scored criterion of a rubric."""

    id: str = Field(..., min_length=1)
    description: str = ""
    max_points: float = Field(default=2.0, gt=0)
    type: RubricItemType = RubricItemType.RULE
    rule_id: Optional[str] = None
    instructions: Optional[str] = None


class RubricDefinition(BaseModel):
    """A rubric for one stage. Item max points should sum to 10."""

    rubric_id: str = Field(..., min_length=1)
    stage: StageName
    items: List[RubricItem] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def validate_unique_ids(cls, v: List[RubricItem]) -> List[RubricItem]:
        """Validate that item ids are unique within a rubric."""
        ids = [item.id.lower() for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError("rubric item ids must be unique")
        return v

    @property
    def rule_items(self) -> List[RubricItem]:
        return [item for item in self.items if item.type == RubricItemType.RULE]

    @property
    def judge_items(self) -> List[RubricItem]:
        return [item for item in self.items if item.type == RubricItemType.JUDGE]

    @property
    def max_points(self) -> float:
        return sum(item.max_points for item in self.items)


class EvaluationContext(BaseModel):
    """Everything a rubric can look at for one stage output.

    Attributes:
        stage: The stage being evaluated.
        input_text: User-authored text the stage worked from.
        output_text: Rendered text of the stage output.
        output_data: Structured stage output, checked by schema rules.
        required_keys: Keys that must be present and non-empty.
        category: Category chosen by the stage, if any.
        allowed_categories: Valid category names.
        follow_up_questions: Questions the stage wants to ask.
        follow_up_fields: Field targeted by each question, same order.
        missing_fields: Fields known to be missing.
        evidence: Evidence items the output relies on.
        max_questions: Maximum questions allowed per round.
    """

    stage: StageName
    input_text: str = ""
    output_text: str = ""
    output_data: Dict[str, object] = Field(default_factory=dict)
    required_keys: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    allowed_categories: List[str] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list)
    follow_up_fields: List[str] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    evidence: List[str] = Field(default_factory=list)
    max_questions: int = 3


class Judgement(BaseModel):
    """Scored quality assessment of a stage output.

    Attributes:
        stage: The evaluated stage.
        rubric_id: Rubric used for scoring.
        score_overall: Overall score on a 0-10 scale.
        subscores: Points per rubric item.
        issues: Problems found.
        fix_suggestions: Suggestions fed into the single refinement.
        threshold: Pass threshold applied.
        passed_threshold: True when score_overall >= threshold.
        judge_used: True when judged items were scored by the LLM.
        judge_failed: True when the judged assessment failed and the
            score was forced low.
    """

    stage: StageName
    rubric_id: str = ""
    score_overall: float = Field(default=0.0, ge=0.0, le=MAX_SCORE)
    subscores: Dict[str, float] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    fix_suggestions: List[str] = Field(default_factory=list)
    threshold: float = 0.0
    passed_threshold: bool = False
    judge_used: bool = False
    judge_failed: bool = False

    def feedback_text(self, limit: int = 5) -> str:
        """Render issues and suggestions for a refinement prompt."""
        lines = [f"- Issue: {issue}" for issue in self.issues[:limit]]
        lines.extend(f"- Suggestion: {s}" for s in self.fix_suggestions[:limit])
        return "\n".join(lines) or "- No specific issues reported."
