"""Guardrails deciding who may interact and how.

This module provides:
- CommandDetector: /stop and /diagnose detection on new text only
- GuardrailEngine: fixed-order authorization and routing checks
- OffTopicJudge: judged off-topic assessment for comments
- Phrase predicates: replaceable disagreement and self-resolution heuristics
- SecretRedactor: removes secrets from user text before it leaves the process
"""

from src.concierge.guardrails.commands import (
    DIAGNOSE_COMMAND,
    STOP_COMMAND,
    CommandDetector,
    CommandInfo,
    strip_commands,
)
from src.concierge.guardrails.engine import (
    GuardrailDecision,
    GuardrailEngine,
    GuardrailResult,
)
from src.concierge.guardrails.offtopic import OffTopicAssessment, OffTopicJudge
from src.concierge.guardrails.phrases import (
    PhraseMatcher,
    TextPredicate,
    default_disagreement_predicate,
    default_self_resolution_predicate,
)
from src.concierge.guardrails.redaction import RedactionResult, SecretRedactor

__all__ = [
    "CommandDetector",
    "CommandInfo",
    "default_disagreement_predicate",
    "default_self_resolution_predicate",
    "DIAGNOSE_COMMAND",
    "GuardrailDecision",
    "GuardrailEngine",
    "GuardrailResult",
    "OffTopicAssessment",
    "OffTopicJudge",
    "PhraseMatcher",
    "RedactionResult",
    "SecretRedactor",
    "STOP_COMMAND",
    "strip_commands",
    "TextPredicate",
]
