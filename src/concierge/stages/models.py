"""Stage input and output models.

Each gated stage receives an immutable input and returns an immutable
output; the workflow composes them. Outputs carry a ``degraded`` flag when
they were produced by the deterministic fallback because the completion
endpoint failed.

- CasePacket: facts extracted for the participant
- StageInput: shared input of every stage
- TriageResult: category, summary and extracted details
- Evidence / ResearchResult: supporting material and findings
- FollowUpQuestion / ResponseDraft: candidate questions and final brief
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from src.concierge.stages.casepacket import ScoringResult


class CasePacket(BaseModel):
    """Facts gathered for one participant."""

    model_config = ConfigDict(frozen=True)

    facts: Dict[str, str] = Field(default_factory=dict)
    scoring: ScoringResult = Field(default_factory=ScoringResult)

    @property
    def missing_fields(self) -> List[str]:
        return self.scoring.missing_fields


class StageInput(BaseModel):
    """Everything a stage may read for one invocation.

    Attributes:
        thread_key: Canonical thread id.
        owner: Repository owner.
        repository: Repository name.
        issue_number: Issue number.
        participant: The user the invocation runs for.
        issue_title: Issue title.
        issue_body: Redacted issue body.
        new_text: Redacted newly arrived text.
        prior_category: Category from the persisted state, if any.
        allowed_categories: Configured category names.
        shared_findings: Findings visible to every participant.
        asked_fields: Fields already asked of the participant.
        case_packet: The participant's case packet.
        loop_number: Current loop (after the increment).
        max_loops: Configured loop bound.
    """

    model_config = ConfigDict(frozen=True)

    thread_key: str
    owner: str
    repository: str
    issue_number: int = 0
    participant: str
    issue_title: str = ""
    issue_body: str = ""
    new_text: str = ""
    prior_category: str = ""
    allowed_categories: List[str] = Field(default_factory=list)
    shared_findings: List[str] = Field(default_factory=list)
    asked_fields: List[str] = Field(default_factory=list)
    case_packet: CasePacket = Field(default_factory=CasePacket)
    loop_number: int = 1
    max_loops: int = 3

    @property
    def user_text(self) -> str:
        """All user-authored text this invocation may rely on."""
        parts = [self.issue_title, self.issue_body]
        if self.new_text and self.new_text != self.issue_body:
            parts.append(self.new_text)
        return "\n\n".join(p for p in parts if p)


class TriageResult(BaseModel):
    """Output of the triage stage."""

    model_config = ConfigDict(frozen=True)

    category: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    summary: str = ""
    reasoning: str = ""
    extracted_details: Dict[str, str] = Field(default_factory=dict)
    degraded: bool = False

    def render(self) -> str:
        return f"Category: {self.category}\nSummary: {self.summary}\nReasoning: {self.reasoning}"


class Evidence(BaseModel):
    """One piece of supporting material."""

    model_config = ConfigDict(frozen=True)

    source: str
    title: str = ""
    url: str = ""
    excerpt: str = ""

    def render(self) -> str:
        label = f"[{self.source}] {self.title}".strip()
        if self.url:
            label = f"{label} ({self.url})"
        return label


class ResearchResult(BaseModel):
    """Output of the research stage."""

    model_config = ConfigDict(frozen=True)

    evidence: List[Evidence] = Field(default_factory=list)
    findings: List[str] = Field(default_factory=list)
    degraded: bool = False

    def render(self) -> str:
        lines = [f"- {f}" for f in self.findings]
        lines.extend(f"* {e.render()}" for e in self.evidence)
        return "\n".join(lines)


class FollowUpQuestion(BaseModel):
    """A question targeting one missing field."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    why_needed: str = ""


class ResponseDraft(BaseModel):
    """Output of the response stage.

    Carries both the candidate follow-up questions and the engineer brief;
    the orchestrator's decision picks which one is posted.
    """

    model_config = ConfigDict(frozen=True)

    summary: str = ""
    solution: str = ""
    key_evidence: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    follow_up_questions: List[FollowUpQuestion] = Field(default_factory=list)
    degraded: bool = False

    @property
    def question_fields(self) -> List[str]:
        return [q.field for q in self.follow_up_questions]

    def render(self) -> str:
        parts = [self.summary, self.solution]
        parts.extend(self.next_steps)
        parts.extend(q.question for q in self.follow_up_questions)
        return "\n".join(p for p in parts if p)
