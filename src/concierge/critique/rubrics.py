"""Built-in rubrics for the gated stages.

Each rubric sums to 10 points. Rule items are deterministic and always
scored; judge items are scored by the completion endpoint when judging
is enabled. Rubrics can be replaced per stage from the spec pack file.
"""

from typing import Dict, Mapping, Optional

from src.concierge.critique.models import (
    RubricDefinition,
    RubricItem,
    RubricItemType,
    StageName,
)


TRIAGE_RUBRIC = RubricDefinition(
    rubric_id="triage_v1",
    stage=StageName.TRIAGE,
    items=[
        RubricItem(
            id="schema_valid",
            description="Triage output has a category and a summary",
            max_points=3,
            rule_id="schema_valid",
        ),
        RubricItem(
            id="category_allowed",
            description="Category is one of the configured categories",
            max_points=3,
            rule_id="category_allowed",
        ),
        RubricItem(
            id="classification_reasoning",
            description="Reasoning is grounded in the issue text",
            max_points=4,
            type=RubricItemType.JUDGE,
            instructions="Award full points when the category and summary follow from the issue text.",
        ),
    ],
)

RESEARCH_RUBRIC = RubricDefinition(
    rubric_id="research_v1",
    stage=StageName.RESEARCH,
    items=[
        RubricItem(
            id="evidence_referenced",
            description="Findings reference at least one piece of evidence",
            max_points=4,
            rule_id="evidence_referenced",
        ),
        RubricItem(
            id="no_hallucinated_versions",
            description="No versions asserted that the user did not provide",
            max_points=2,
            rule_id="no_hallucinated_versions",
        ),
        RubricItem(
            id="secret_request_ban",
            description="Findings do not ask for credentials",
            max_points=2,
            rule_id="secret_request_ban",
        ),
        RubricItem(
            id="finding_relevance",
            description="Findings are relevant to the reported problem",
            max_points=2,
            type=RubricItemType.JUDGE,
            instructions="Award full points when every finding bears on the reported problem.",
        ),
    ],
)

RESPONSE_RUBRIC = RubricDefinition(
    rubric_id="response_v1",
    stage=StageName.RESPONSE,
    items=[
        RubricItem(
            id="question_mapping",
            description="At most three distinct questions, each targeting a missing field",
            max_points=3,
            rule_id="question_mapping",
        ),
        RubricItem(
            id="secret_request_ban",
            description="Response does not ask for credentials",
            max_points=2,
            rule_id="secret_request_ban",
        ),
        RubricItem(
            id="no_hallucinated_versions",
            description="No versions asserted that the user did not provide",
            max_points=2,
            rule_id="no_hallucinated_versions",
        ),
        RubricItem(
            id="schema_valid",
            description="Response has a summary or questions",
            max_points=1,
            rule_id="schema_valid",
        ),
        RubricItem(
            id="helpfulness",
            description="Response is specific and actionable",
            max_points=2,
            type=RubricItemType.JUDGE,
            instructions="Award full points when the response gives concrete, correct next steps or precise questions.",
        ),
    ],
)

DEFAULT_RUBRICS: Dict[StageName, RubricDefinition] = {
    StageName.TRIAGE: TRIAGE_RUBRIC,
    StageName.RESEARCH: RESEARCH_RUBRIC,
    StageName.RESPONSE: RESPONSE_RUBRIC,
}


def build_rubric_set(
    overrides: Optional[Mapping[StageName, RubricDefinition]] = None,
) -> Dict[StageName, RubricDefinition]:
    """Merge rubric overrides over the built-in rubrics."""
    rubrics = dict(DEFAULT_RUBRICS)
    if overrides:
        rubrics.update(overrides)
    return rubrics
