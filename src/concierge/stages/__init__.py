"""Pipeline stages: case packet, triage, research and response."""

from src.concierge.stages.casepacket import (
    CompletenessScorer,
    FieldValidators,
    ScoringResult,
    extract_fields,
    extract_key_value_pairs,
    normalize_key,
    parse_issue_form,
)
from src.concierge.stages.models import (
    CasePacket,
    Evidence,
    FollowUpQuestion,
    ResearchResult,
    ResponseDraft,
    StageInput,
    TriageResult,
)
from src.concierge.stages.research import (
    EvidenceSource,
    GitHubIssueSearchSource,
    ResearchAgent,
    build_search_query,
)
from src.concierge.stages.response import GENERAL_FALLBACK_QUESTIONS, ResponseAgent
from src.concierge.stages.specpack import (
    DEFAULT_SPEC_PACK,
    UNKNOWN_CATEGORY,
    Category,
    CategoryChecklist,
    RequiredField,
    SpecPack,
    SpecPackError,
    load_spec_pack,
)
from src.concierge.stages.triage import TriageAgent

__all__ = [
    "CasePacket",
    "Category",
    "CategoryChecklist",
    "CompletenessScorer",
    "DEFAULT_SPEC_PACK",
    "Evidence",
    "EvidenceSource",
    "FieldValidators",
    "FollowUpQuestion",
    "GENERAL_FALLBACK_QUESTIONS",
    "GitHubIssueSearchSource",
    "RequiredField",
    "ResearchAgent",
    "ResearchResult",
    "ResponseAgent",
    "ResponseDraft",
    "ScoringResult",
    "SpecPack",
    "SpecPackError",
    "StageInput",
    "TriageAgent",
    "TriageResult",
    "UNKNOWN_CATEGORY",
    "build_search_query",
    "extract_fields",
    "extract_key_value_pairs",
    "load_spec_pack",
    "normalize_key",
    "parse_issue_form",
]
