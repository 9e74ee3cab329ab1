"""Loop-bounded orchestration for the concierge.

The workflow entry point lives in src.concierge.orchestration.workflow
and is imported from there directly; it depends on the composer, which
in turn depends on the models exported here.
"""

from src.concierge.orchestration.decision import (
    SUFFICIENCY_FAILED,
    OrchestratorStateMachine,
    SufficiencyAssessor,
)
from src.concierge.orchestration.models import (
    ExecutionState,
    InvocationResult,
    LoopAction,
    LoopState,
    OrchestratorDecision,
    Outcome,
    SufficiencyAssessment,
)

__all__ = [
    "SUFFICIENCY_FAILED",
    "ExecutionState",
    "InvocationResult",
    "LoopAction",
    "LoopState",
    "OrchestratorDecision",
    "OrchestratorStateMachine",
    "Outcome",
    "SufficiencyAssessment",
    "SufficiencyAssessor",
]
