"""Research stage: gather evidence and turn it into findings.

Evidence comes from pluggable EvidenceSource implementations; every
source call runs under its own timeout so a slow source cannot stall the
invocation. Findings shared by other participants in the same thread are
reused as evidence. The completion endpoint condenses evidence into
findings; without it the evidence titles become the findings.

Source:
- src/concierge/github/client.py (GitHubClient.search_issues)
- src/concierge/llm/client.py (CompletionClient)
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from src.concierge.critique.models import EvaluationContext, Judgement, StageName
from src.concierge.github.client import GitHubAPIError, GitHubClient
from src.concierge.llm.client import CompletionClient, LLMError
from src.concierge.stages.models import Evidence, ResearchResult, StageInput, TriageResult


logger = logging.getLogger(__name__)


RESEARCH_SYSTEM_PROMPT = """You are a support research assistant.
Using only the evidence provided, list concise findings that help resolve the issue.
Do not invent versions, commands or links that are not in the evidence or the issue.
Never ask for passwords, tokens or other secrets.

You MUST respond with valid JSON only:
{
  "findings": ["finding 1", "finding 2"]
}"""

_STOPWORDS = frozenset(
    "a an and are as at be but by can cannot do does for from has have how i in is it its "
    "my not of on or our so that the this to was we when with without".split()
)
_MAX_QUERY_TERMS = 6
_MAX_FINDINGS = 5


def build_search_query(text: str, max_terms: int = _MAX_QUERY_TERMS) -> str:
    """Build a short search query from the most distinctive words of text."""
    terms: List[str] = []
    for word in re.findall(r"[A-Za-z][A-Za-z0-9_.-]{2,}", text or ""):
        lowered = word.lower()
        if lowered in _STOPWORDS or lowered in terms:
            continue
        terms.append(lowered)
        if len(terms) >= max_terms:
            break
    return " ".join(terms)


@runtime_checkable
class EvidenceSource(Protocol):
    """A source of research evidence."""

    name: str

    async def search(self, inp: StageInput, query: str, limit: int) -> List[Evidence]:
        """Return evidence for the query.

        Raises:
            Exception: Any failure; the research stage logs and skips it.
        """
        ...


class GitHubIssueSearchSource:
    """Related issues in the same repository."""

    name = "github_issues"

    def __init__(self, github: GitHubClient):
        self.github = github

    async def search(self, inp: StageInput, query: str, limit: int) -> List[Evidence]:
        if not query:
            return []
        hits = await self.github.search_issues(inp.owner, inp.repository, query, limit=limit + 1)
        return [
            Evidence(
                source=self.name,
                title=f"#{hit.number} {hit.title} ({hit.state})",
                url=hit.url,
                excerpt=hit.body[:300],
            )
            for hit in hits
            if hit.number != inp.issue_number
        ][:limit]


class ResearchAgent:
    """Collects evidence and findings for an issue.

    Attributes:
        sources: Evidence sources queried in order.
        timeout: Per-source timeout in seconds.
        limit: Maximum evidence items requested from each source.
        client: Optional completion client used to condense findings.
    """

    def __init__(
        self,
        sources: Sequence[EvidenceSource] = (),
        client: Optional[CompletionClient] = None,
        timeout: float = 10.0,
        limit: int = 5,
    ):
        self.sources = list(sources)
        self.client = client
        self.timeout = timeout
        self.limit = limit

    async def research(self, inp: StageInput, triage: TriageResult) -> ResearchResult:
        """Gather evidence for the triaged issue; never raises."""
        query = build_search_query(f"{inp.issue_title} {triage.summary}")
        evidence = await self._collect(inp, query)
        return await self._summarize(inp, evidence)

    async def deep_dive(
        self,
        result: ResearchResult,
        judgement: Judgement,
        inp: StageInput,
        triage: TriageResult,
    ) -> ResearchResult:
        """Refine research with a broader query and the reviewer's feedback."""
        query = build_search_query(f"{triage.category.replace('_', ' ')} {inp.issue_title}", max_terms=3)
        extra = await self._collect(inp, query)
        seen = {(e.source, e.title) for e in result.evidence}
        evidence = list(result.evidence) + [e for e in extra if (e.source, e.title) not in seen]
        return await self._summarize(inp, evidence, feedback=judgement.feedback_text())

    def evaluation_context(self, result: ResearchResult, inp: StageInput) -> EvaluationContext:
        return EvaluationContext(
            stage=StageName.RESEARCH,
            input_text=inp.user_text,
            output_text=result.render(),
            output_data=result.model_dump(),
            evidence=[e.render() for e in result.evidence],
        )

    async def _collect(self, inp: StageInput, query: str) -> List[Evidence]:
        evidence = [
            Evidence(source="shared_finding", title=finding)
            for finding in inp.shared_findings
        ]
        for source in self.sources:
            try:
                found = await asyncio.wait_for(
                    source.search(inp, query, self.limit), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Evidence source timed out",
                    extra={"source": source.name, "thread_key": inp.thread_key, "timeout": self.timeout},
                )
                continue
            except (GitHubAPIError, LLMError) as e:
                logger.warning(
                    "Evidence source failed",
                    extra={"source": source.name, "thread_key": inp.thread_key, "error": e.message},
                )
                continue
            evidence.extend(found)
        return evidence

    async def _summarize(
        self,
        inp: StageInput,
        evidence: List[Evidence],
        feedback: str = "",
    ) -> ResearchResult:
        if self.client is None or not evidence:
            return self._fallback(evidence)

        prompt = self._build_prompt(inp, evidence, feedback)
        try:
            data = await self.client.complete_json(RESEARCH_SYSTEM_PROMPT, prompt)
        except LLMError as e:
            logger.warning(
                "Research completion failed, using evidence titles",
                extra={"thread_key": inp.thread_key, "error": e.message},
            )
            return self._fallback(evidence)

        findings = self._findings(data)
        return ResearchResult(evidence=evidence, findings=findings or self._fallback(evidence).findings)

    def _build_prompt(self, inp: StageInput, evidence: List[Evidence], feedback: str) -> str:
        lines = [f"- {e.render()}: {e.excerpt[:200]}" for e in evidence]
        prompt = f"""**Issue:** {inp.issue_title}

{inp.issue_body[:2000]}

**Evidence:**
{chr(10).join(lines)}"""
        if feedback:
            prompt += f"\n\n**Reviewer feedback on your previous answer:**\n{feedback}"
        return prompt + "\n\nList your findings as JSON."

    @staticmethod
    def _findings(data: Dict[str, Any]) -> List[str]:
        raw = data.get("findings")
        if not isinstance(raw, list):
            return []
        return [str(f).strip() for f in raw if str(f).strip()][:_MAX_FINDINGS]

    @staticmethod
    def _fallback(evidence: List[Evidence]) -> ResearchResult:
        return ResearchResult(
            evidence=evidence,
            findings=[e.title for e in evidence if e.title][:_MAX_FINDINGS],
            degraded=True,
        )
