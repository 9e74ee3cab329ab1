"""Response stage: draft the follow-up questions and the engineer brief.

The draft carries both artifacts; the orchestrator's decision picks the
one that is posted. Questions are always filtered against the fields
already asked of the participant, so no field is ever asked twice, and
capped at the per-round maximum. When the completion endpoint offers no
usable question, checklist questions for the missing fields are used,
then the general fallback questions.

Source:
- src/concierge/stages/specpack.py (RequiredField.question_text)
- src/concierge/stages/casepacket.py (missing fields)
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from src.concierge.critique.models import EvaluationContext, Judgement, StageName
from src.concierge.llm.client import CompletionClient, LLMError
from src.concierge.stages.casepacket import normalize_key
from src.concierge.stages.models import (
    FollowUpQuestion,
    ResearchResult,
    ResponseDraft,
    StageInput,
    TriageResult,
)
from src.concierge.stages.specpack import SpecPack


logger = logging.getLogger(__name__)


RESPONSE_SYSTEM_PROMPT = """You are a support engineer preparing a reply on a GitHub issue.
Produce both a short engineer brief and the follow-up questions that would close the
remaining information gaps. Each question must target exactly one missing field.
Never ask for passwords, tokens, API keys or other secrets.
Do not state versions the user did not provide.

You MUST respond with valid JSON only:
{
  "summary": "what is going on",
  "solution": "most likely resolution, if any",
  "key_evidence": ["evidence item"],
  "next_steps": ["concrete step"],
  "follow_up_questions": [
    {"field": "<missing field>", "question": "...", "why_needed": "..."}
  ]
}"""

GENERAL_FALLBACK_QUESTIONS = (
    ("error_details", "Could you share the exact error message or log output you are seeing?"),
    ("reproduction_steps", "What are the exact steps that lead to the problem?"),
    ("environment_details", "Which operating system and tool versions are you using?"),
    ("recent_changes", "Did anything change recently (upgrades, configuration, environment) before this started?"),
)

RESPONSE_REQUIRED_KEYS = ["summary"]


class ResponseAgent:
    """Drafts questions and briefs for one participant."""

    def __init__(
        self,
        spec_pack: SpecPack,
        client: Optional[CompletionClient] = None,
        max_questions: int = 3,
    ):
        self.spec_pack = spec_pack
        self.client = client
        self.max_questions = max_questions

    async def draft(
        self,
        inp: StageInput,
        triage: TriageResult,
        research: ResearchResult,
    ) -> ResponseDraft:
        """Draft the response; never raises."""
        return await self._draft(inp, triage, research)

    async def refine(
        self,
        draft: ResponseDraft,
        judgement: Judgement,
        inp: StageInput,
        triage: TriageResult,
        research: ResearchResult,
    ) -> ResponseDraft:
        """Redraft with the reviewer's feedback."""
        return await self._draft(inp, triage, research, feedback=judgement.feedback_text())

    def evaluation_context(self, draft: ResponseDraft, inp: StageInput) -> EvaluationContext:
        output = draft.model_dump()
        if draft.follow_up_questions and not draft.summary:
            output["summary"] = draft.follow_up_questions[0].question
        return EvaluationContext(
            stage=StageName.RESPONSE,
            input_text=inp.user_text,
            output_text=draft.render(),
            output_data=output,
            required_keys=RESPONSE_REQUIRED_KEYS,
            follow_up_questions=[q.question for q in draft.follow_up_questions],
            follow_up_fields=draft.question_fields,
            missing_fields=inp.case_packet.missing_fields,
            max_questions=self.max_questions,
        )

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def checklist_questions(self, category: str, missing_fields: Iterable[str]) -> List[FollowUpQuestion]:
        """Checklist questions for missing fields, in checklist order."""
        missing = set(missing_fields)
        checklist = self.spec_pack.checklist_for(category)
        return [
            FollowUpQuestion(field=item.name, question=item.question_text(), why_needed=item.description)
            for item in checklist.required_fields
            if item.name in missing
        ]

    def select_questions(
        self,
        candidates: Iterable[FollowUpQuestion],
        inp: StageInput,
        category: str,
    ) -> List[FollowUpQuestion]:
        """Filter out asked fields, dedupe, cap, and fill from fallbacks."""
        asked = {normalize_key(f) for f in inp.asked_fields}
        selected: List[FollowUpQuestion] = []
        seen = set()

        def take(questions: Iterable[FollowUpQuestion]) -> None:
            for q in questions:
                key = normalize_key(q.field)
                if not key or key in asked or key in seen or len(selected) >= self.max_questions:
                    continue
                seen.add(key)
                selected.append(q.model_copy(update={"field": key}))

        take(candidates)
        if not selected:
            take(self.checklist_questions(category, inp.case_packet.missing_fields))
        if not selected:
            take(FollowUpQuestion(field=f, question=q) for f, q in GENERAL_FALLBACK_QUESTIONS)
        if not selected:
            take([
                FollowUpQuestion(
                    field=f"additional_context_loop_{inp.loop_number}",
                    question="Is there anything else that might help us understand the problem?",
                )
            ])
        return selected

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    async def _draft(
        self,
        inp: StageInput,
        triage: TriageResult,
        research: ResearchResult,
        feedback: str = "",
    ) -> ResponseDraft:
        if self.client is None:
            return self._fallback(inp, triage, research)

        try:
            data = await self.client.complete_json(
                RESPONSE_SYSTEM_PROMPT,
                self._build_prompt(inp, triage, research, feedback),
            )
        except LLMError as e:
            logger.warning(
                "Response completion failed, using fallback draft",
                extra={"thread_key": inp.thread_key, "error": e.message},
            )
            return self._fallback(inp, triage, research)

        return ResponseDraft(
            summary=str(data.get("summary") or triage.summary).strip(),
            solution=str(data.get("solution") or "").strip(),
            key_evidence=_str_list(data.get("key_evidence"))[:3],
            next_steps=_str_list(data.get("next_steps")),
            follow_up_questions=self.select_questions(
                _parse_questions(data.get("follow_up_questions")), inp, triage.category
            ),
        )

    def _fallback(self, inp: StageInput, triage: TriageResult, research: ResearchResult) -> ResponseDraft:
        next_steps = list(research.findings[:3])
        if not next_steps:
            next_steps = ["A maintainer will review the details collected so far."]
        return ResponseDraft(
            summary=triage.summary or inp.issue_title,
            key_evidence=[e.render() for e in research.evidence[:3]],
            next_steps=next_steps,
            follow_up_questions=self.select_questions([], inp, triage.category),
            degraded=True,
        )

    def _build_prompt(
        self,
        inp: StageInput,
        triage: TriageResult,
        research: ResearchResult,
        feedback: str,
    ) -> str:
        facts = "\n".join(f"- {k}: {v[:200]}" for k, v in inp.case_packet.facts.items()) or "- (none)"
        findings = "\n".join(f"- {f}" for f in research.findings) or "- (none)"
        prompt = f"""**Issue:** {inp.issue_title}
**Category:** {triage.category}
**Summary:** {triage.summary}

**Known facts:**
{facts}

**Missing fields:** {", ".join(inp.case_packet.missing_fields) or "(none)"}
**Already asked (never ask again):** {", ".join(inp.asked_fields) or "(none)"}
**Maximum questions:** {self.max_questions}

**Research findings:**
{findings}

**Latest comment:**
{inp.new_text[:2000] or "(none)"}"""
        if feedback:
            prompt += f"\n\n**Reviewer feedback on your previous answer:**\n{feedback}"
        return prompt + "\n\nRespond as JSON."


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _parse_questions(value: Any) -> List[FollowUpQuestion]:
    if not isinstance(value, list):
        return []
    questions = []
    for item in value:
        if not isinstance(item, dict):
            continue
        data: Dict[str, Any] = item
        field_name = str(data.get("field") or "").strip()
        question = str(data.get("question") or "").strip()
        if field_name and question:
            questions.append(
                FollowUpQuestion(
                    field=field_name,
                    question=question,
                    why_needed=str(data.get("why_needed") or ""),
                )
            )
    return questions
