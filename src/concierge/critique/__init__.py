"""Critique loop gating every pipeline stage.

This module provides:
- RubricDefinition / RubricItem: per-stage scoring rubrics
- RuleEvaluator: deterministic rubric rules
- RubricJudge: LLM-scored rubric items
- QualityGate: scores a stage output and refines it at most once
"""

from src.concierge.critique.gate import GateOutcome, QualityGate, RETRY_CRITIQUE_SUGGESTION
from src.concierge.critique.judge import JudgeScores, RubricJudge
from src.concierge.critique.models import (
    JUDGE_FAILURE_SCORE,
    EvaluationContext,
    Judgement,
    RubricDefinition,
    RubricItem,
    RubricItemType,
    StageName,
)
from src.concierge.critique.rubrics import DEFAULT_RUBRICS, build_rubric_set
from src.concierge.critique.rules import KNOWN_RULE_IDS, RuleEvaluator

__all__ = [
    "build_rubric_set",
    "DEFAULT_RUBRICS",
    "EvaluationContext",
    "GateOutcome",
    "Judgement",
    "JUDGE_FAILURE_SCORE",
    "JudgeScores",
    "KNOWN_RULE_IDS",
    "QualityGate",
    "RETRY_CRITIQUE_SUGGESTION",
    "RubricDefinition",
    "RubricItem",
    "RubricItemType",
    "RubricJudge",
    "RuleEvaluator",
    "StageName",
]
