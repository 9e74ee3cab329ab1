"""Deterministic rubric rules.

Each rule returns full points when it passes and fewer points (usually
zero) when it fails, along with the issues and fix suggestions that the
refinement step consumes. Unknown rule ids score full points so a rubric
file referencing a newer rule never blocks the pipeline.

Rules:
- schema_valid: required keys are present and non-empty
- category_allowed: the chosen category is a configured category
- evidence_referenced: at least one piece of evidence backs the output
- secret_request_ban: the output does not ask for credentials
- question_mapping: at most N distinct questions, each on a missing field
- no_hallucinated_versions: versions in the output appear in the input
"""

import logging
import re
from typing import Callable, Dict, List, Tuple

from src.concierge.critique.models import EvaluationContext, RubricDefinition, RubricItem


logger = logging.getLogger(__name__)


RuleOutcome = Tuple[float, List[str], List[str]]

_SECRET_REQUEST_PATTERN = re.compile(
    r"\b(?:api[\s_-]?keys?|access[\s_-]?tokens?|tokens?|passwords?|secrets?|credentials?)\b",
    re.IGNORECASE,
)
_VERSION_PATTERN = re.compile(r"\b\d+\.\d+(?:\.\d+)?\b")


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _rule_schema_valid(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    missing = [key for key in context.required_keys if _is_blank(context.output_data.get(key))]
    if not missing:
        return item.max_points, [], []
    return (
        0.0,
        [f"Output is missing required fields: {', '.join(missing)}"],
        [f"Provide non-empty values for: {', '.join(missing)}"],
    )


def _rule_category_allowed(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    if not context.allowed_categories:
        return item.max_points, [], []
    allowed = {c.lower() for c in context.allowed_categories}
    if context.category and context.category.lower() in allowed:
        return item.max_points, [], []
    return (
        0.0,
        [f"Category '{context.category or ''}' is not an allowed category"],
        [f"Choose one of: {', '.join(context.allowed_categories)}"],
    )


def _rule_evidence_referenced(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    if any(e.strip() for e in context.evidence):
        return item.max_points, [], []
    return (
        0.0,
        ["Output does not reference any evidence"],
        ["Cite at least one concrete piece of evidence from the issue or related sources."],
    )


def _rule_secret_request_ban(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    texts = [context.output_text, *context.follow_up_questions]
    if any(_SECRET_REQUEST_PATTERN.search(t or "") for t in texts):
        return (
            0.0,
            ["Output requests secrets or tokens."],
            ["Do not request passwords, tokens, or secrets."],
        )
    return item.max_points, [], []


def _question_targets_field(question: str, field_name: str) -> bool:
    lowered = question.lower()
    name = field_name.lower()
    return name in lowered or name.replace("_", " ") in lowered


def _rule_question_mapping(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    questions = [q.strip() for q in context.follow_up_questions if q and q.strip()]
    if not questions:
        return item.max_points, [], []

    issues: List[str] = []
    suggestions: List[str] = []

    if len(questions) > context.max_questions:
        issues.append(f"More than {context.max_questions} follow-up questions were asked.")
        suggestions.append(f"Ask at most {context.max_questions} follow-up questions.")

    if len({q.lower() for q in questions}) != len(questions):
        issues.append("Duplicate follow-up questions detected.")
        suggestions.append("Remove duplicate questions.")

    if context.missing_fields:
        missing = {f.lower() for f in context.missing_fields}
        for index, question in enumerate(questions):
            target = context.follow_up_fields[index] if index < len(context.follow_up_fields) else ""
            mapped = (target and target.lower() in missing) or any(
                _question_targets_field(question, f) for f in context.missing_fields
            )
            if not mapped:
                issues.append("Follow-up question does not map to a missing field.")
                suggestions.append("Ensure each question targets a specific missing field.")
                break

    if issues:
        return 0.0, issues, suggestions
    return item.max_points, [], []


def _rule_no_hallucinated_versions(item: RubricItem, context: EvaluationContext) -> RuleOutcome:
    versions = set(_VERSION_PATTERN.findall(context.output_text or ""))
    if not versions:
        return item.max_points, [], []
    input_text = (context.input_text or "").lower()
    unseen = sorted(v for v in versions if v.lower() not in input_text)
    if not unseen:
        return item.max_points, [], []
    return (
        max(0.0, item.max_points - 1),
        [f"Output includes version details not present in input: {', '.join(unseen)}"],
        ["Avoid asserting specific versions unless provided by the user."],
    )


_RULES: Dict[str, Callable[[RubricItem, EvaluationContext], RuleOutcome]] = {
    "schema_valid": _rule_schema_valid,
    "category_allowed": _rule_category_allowed,
    "evidence_referenced": _rule_evidence_referenced,
    "secret_request_ban": _rule_secret_request_ban,
    "question_mapping": _rule_question_mapping,
    "no_hallucinated_versions": _rule_no_hallucinated_versions,
}

KNOWN_RULE_IDS = frozenset(_RULES)


class RuleEvaluator:
    """Scores the rule items of a rubric."""

    def evaluate(
        self,
        rubric: RubricDefinition,
        context: EvaluationContext,
    ) -> Tuple[Dict[str, float], List[str], List[str]]:
        """Evaluate every rule item in the rubric.

        Args:
            rubric: The rubric whose rule items are scored.
            context: The stage output and inputs.

        Returns:
            Tuple of (subscores by item id, issues, fix suggestions).
        """
        subscores: Dict[str, float] = {}
        issues: List[str] = []
        suggestions: List[str] = []

        for item in rubric.rule_items:
            rule = _RULES.get((item.rule_id or item.id).lower())
            if rule is None:
                logger.warning(
                    "Unknown rubric rule, awarding full points",
                    extra={"rubric_id": rubric.rubric_id, "rule_id": item.rule_id},
                )
                subscores[item.id] = item.max_points
                continue

            score, item_issues, item_suggestions = rule(item, context)
            subscores[item.id] = max(0.0, min(item.max_points, score))
            issues.extend(item_issues)
            suggestions.extend(item_suggestions)

        return subscores, issues, suggestions
