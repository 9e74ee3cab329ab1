"""Triage stage: classify the issue and summarize it.

The completion endpoint picks one of the configured categories and
extracts key details. When the call fails, or no client is configured,
the stage falls back to keyword scoring over the category keywords and
marks the result degraded.

Source:
- src/concierge/stages/specpack.py (Category keywords)
- src/concierge/llm/client.py (CompletionClient)
"""

import logging
import re
from typing import Any, Dict, Optional

from src.concierge.critique.models import EvaluationContext, Judgement, StageName
from src.concierge.llm.client import CompletionClient, LLMError
from src.concierge.stages.models import StageInput, TriageResult
from src.concierge.stages.specpack import UNKNOWN_CATEGORY, SpecPack


logger = logging.getLogger(__name__)


TRIAGE_SYSTEM_PROMPT = """You are a support triage assistant for a GitHub repository.
Classify the issue into exactly one of the allowed categories and summarize it.

You MUST respond with valid JSON only:
{
  "category": "<one allowed category>",
  "confidence": 0.0-1.0,
  "summary": "one or two sentences describing the problem",
  "reasoning": "why this category fits",
  "extracted_details": {"key": "value"}
}"""

TRIAGE_REQUIRED_KEYS = ["category", "summary"]


def _build_prompt(inp: StageInput, feedback: str = "") -> str:
    categories = ", ".join(f'"{c}"' for c in inp.allowed_categories) or '"unknown"'
    prompt = f"""**Allowed categories:** {categories}

**Title:** {inp.issue_title}

**Description:**
{inp.issue_body or "(no description provided)"}

**Latest comment:**
{inp.new_text if inp.new_text != inp.issue_body else "(none)"}"""
    if inp.prior_category:
        prompt += f"\n\n**Previously classified as:** {inp.prior_category}"
    if feedback:
        prompt += f"\n\n**Reviewer feedback on your previous answer:**\n{feedback}"
    return prompt + "\n\nProvide your triage as JSON."


def _keyword_hits(text: str, keyword: str) -> int:
    return len(re.findall(rf"\b{re.escape(keyword.lower())}\b", text))


class TriageAgent:
    """Classifies issues into spec pack categories."""

    def __init__(self, spec_pack: SpecPack, client: Optional[CompletionClient] = None):
        self.spec_pack = spec_pack
        self.client = client

    # ------------------------------------------------------------------
    # Stage operations
    # ------------------------------------------------------------------

    async def triage(self, inp: StageInput) -> TriageResult:
        """Classify the issue; never raises."""
        if self.client is None:
            return self.classify_by_keywords(inp)
        try:
            data = await self.client.complete_json(TRIAGE_SYSTEM_PROMPT, _build_prompt(inp))
        except LLMError as e:
            logger.warning(
                "Triage completion failed, using keyword classification",
                extra={"thread_key": inp.thread_key, "error": e.message},
            )
            return self.classify_by_keywords(inp)
        return self._normalize(data, inp)

    async def refine(self, result: TriageResult, judgement: Judgement, inp: StageInput) -> TriageResult:
        """Produce an improved triage from a failing judgement."""
        if self.client is None:
            return self._repair(result, inp)
        try:
            data = await self.client.complete_json(
                TRIAGE_SYSTEM_PROMPT,
                _build_prompt(inp, feedback=judgement.feedback_text()),
            )
        except LLMError as e:
            logger.warning(
                "Triage refinement failed, repairing deterministically",
                extra={"thread_key": inp.thread_key, "error": e.message},
            )
            return self._repair(result, inp)
        return self._normalize(data, inp)

    def evaluation_context(self, result: TriageResult, inp: StageInput) -> EvaluationContext:
        return EvaluationContext(
            stage=StageName.TRIAGE,
            input_text=inp.user_text,
            output_text=result.render(),
            output_data=result.model_dump(),
            required_keys=TRIAGE_REQUIRED_KEYS,
            category=result.category,
            allowed_categories=inp.allowed_categories,
        )

    # ------------------------------------------------------------------
    # Deterministic fallback
    # ------------------------------------------------------------------

    def classify_by_keywords(self, inp: StageInput) -> TriageResult:
        """Pick the category whose keywords occur most often."""
        text = inp.user_text.lower()
        best, best_hits = None, 0
        for category in self.spec_pack.categories:
            hits = sum(_keyword_hits(text, k) for k in category.keywords)
            if hits > best_hits:
                best, best_hits = category.name, hits

        if best is None:
            best = inp.prior_category or UNKNOWN_CATEGORY

        return TriageResult(
            category=best,
            confidence=min(1.0, best_hits / 5) if best_hits else 0.0,
            summary=inp.issue_title,
            reasoning=f"Keyword classification ({best_hits} matches)",
            extracted_details=dict(inp.case_packet.facts),
            degraded=True,
        )

    def _repair(self, result: TriageResult, inp: StageInput) -> TriageResult:
        fallback = self.classify_by_keywords(inp)
        allowed = {c.lower() for c in inp.allowed_categories}
        update: Dict[str, Any] = {}
        if result.category.lower() not in allowed and fallback.category.lower() in allowed:
            update["category"] = fallback.category
        if not result.summary.strip():
            update["summary"] = inp.issue_title or fallback.summary
        return result.model_copy(update=update)

    def _normalize(self, data: Dict[str, Any], inp: StageInput) -> TriageResult:
        category = str(data.get("category") or "").strip()
        allowed = {c.lower(): c for c in inp.allowed_categories}
        if category.lower() in allowed:
            category = allowed[category.lower()]

        try:
            confidence = max(0.0, min(1.0, float(data.get("confidence", 0.0))))
        except (TypeError, ValueError):
            confidence = 0.0

        details = data.get("extracted_details")
        if not isinstance(details, dict):
            details = {}

        result = TriageResult(
            category=category,
            confidence=confidence,
            summary=str(data.get("summary") or "").strip(),
            reasoning=str(data.get("reasoning") or "").strip(),
            extracted_details={str(k): str(v) for k, v in details.items() if v},
        )
        logger.info(
            "Issue triaged",
            extra={"thread_key": inp.thread_key, "category": result.category, "confidence": confidence},
        )
        return result
