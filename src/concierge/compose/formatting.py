"""Comment composition for GitHub issue threads.

This module renders the visible markdown of every comment the concierge
posts and appends the state marker:
- follow-up questions (numbered, at most one round's worth)
- engineer brief (summary, key evidence, next steps)
- self-resolution confirmation
- escalation notice (what happened, what was collected, what is missing)
- /stop acknowledgement
- off-topic redirect

Every comment opens with an @mention of the active participant and ends
with exactly one state marker.

Source:
- src/concierge/state/store.py (StateStore.embed, StateStore.prune)
- src/concierge/stages/models.py (ResponseDraft, FollowUpQuestion)
- src/concierge/stages/specpack.py (escalation_mentions)
"""

from typing import Dict, List, Optional, Sequence

from src.concierge.config import OrchestrationConfig
from src.concierge.orchestration.models import ExecutionState
from src.concierge.stages.casepacket import ScoringResult
from src.concierge.stages.models import FollowUpQuestion, ResponseDraft
from src.concierge.stages.specpack import SpecPack
from src.concierge.state.models import ConversationState
from src.concierge.state.store import StateStore


MAX_KEY_EVIDENCE = 3

QUICK_COMMANDS = """### Quick Commands
- **`/stop`** - Stop asking me questions on this issue (opt-out)
- **`/diagnose`** - Start a fresh conversation for your own sub-issue"""

DISAGREEMENT_HINT = (
    "If this does not fit, reply with \"I disagree\" or similar and I'll "
    "take one more pass before escalating."
)


def sanitize_line(text: str) -> str:
    """Collapse a value onto one markdown-safe line."""
    if not text:
        return ""
    sanitized = text.strip().replace("\r", " ").replace("\n", " ")
    while "  " in sanitized:
        sanitized = sanitized.replace("  ", " ")
    return sanitized


def mention(username: str) -> str:
    return f"@{username.lstrip('@')}"


def format_questions(
    username: str,
    questions: Sequence[FollowUpQuestion],
    loop_number: int,
    max_loops: int,
    max_questions: int = 3,
) -> str:
    """Format follow-up questions as a numbered list.

    Args:
        username: The participant the questions are addressed to.
        questions: Questions already filtered against asked fields.
        loop_number: The participant's current loop.
        max_loops: The configured loop bound.
        max_questions: Upper bound on the rendered questions.

    Returns:
        Markdown ending with the loop counter line and quick commands.
    """
    lines = [
        mention(username),
        "",
        "Thanks! I need a bit more information to help move this forward:",
        "",
    ]
    rendered = 0
    for question in questions:
        if rendered >= max_questions:
            break
        text = sanitize_line(question.question)
        if not text:
            continue
        rendered += 1
        lines.append(f"{rendered}. **{text}**")
        why = sanitize_line(question.why_needed)
        if why:
            lines.append(f"   _{why}_")
    lines.extend(
        [
            "",
            "---",
            f"_Loop {loop_number} of {max_loops}. Please answer in a single reply with as much detail as you can._",
            "",
            QUICK_COMMANDS,
        ]
    )
    return "\n".join(lines)


def format_brief(
    username: str,
    draft: ResponseDraft,
    scoring: Optional[ScoringResult] = None,
    redaction_warnings: Sequence[str] = (),
) -> str:
    """Format the engineer brief posted when the conversation finalizes."""
    lines = [mention(username), "", f"**Summary:** {sanitize_line(draft.summary) or 'No summary available.'}", ""]

    if draft.solution:
        lines.extend([f"**Suggested fix:** {draft.solution.strip()}", ""])

    evidence = [sanitize_line(e) for e in draft.key_evidence if sanitize_line(e)]
    if evidence:
        lines.append("### Key Evidence")
        lines.extend(f"- {item}" for item in evidence[:MAX_KEY_EVIDENCE])
        lines.append("")

    warnings = list(scoring.warnings) if scoring is not None else []
    warnings.extend(redaction_warnings)
    if warnings:
        lines.append("### Warnings")
        lines.extend(f"- {sanitize_line(w)}" for w in warnings)
        lines.append("")

    steps = [sanitize_line(s) for s in draft.next_steps if sanitize_line(s)]
    if steps:
        lines.append("### Next Steps")
        lines.extend(f"- {step}" for step in steps)
        lines.append("")

    if scoring is not None:
        lines.extend(
            [f"**Completeness Score:** {scoring.score}/100 (threshold: {scoring.threshold})", ""]
        )

    lines.extend([DISAGREEMENT_HINT, "", QUICK_COMMANDS])
    return "\n".join(lines)


def format_self_resolution(username: str, summary: str = "") -> str:
    lines = [
        mention(username),
        "",
        "Glad to hear you found a fix! I'll stop asking questions here.",
    ]
    if summary:
        lines.extend(["", f"**For reference:** {sanitize_line(summary)}"])
    lines.extend(
        [
            "",
            "If the problem comes back, comment with `/diagnose` to start over.",
        ]
    )
    return "\n".join(lines)


def format_escalation(
    username: str,
    execution: ExecutionState,
    facts: Dict[str, str],
    missing: Sequence[str],
    mentions: Sequence[str],
    findings: Sequence[str] = (),
) -> str:
    """Format the escalation notice handed to human maintainers.

    Args:
        username: The participant whose loops were exhausted.
        execution: What happened in this run.
        facts: Case packet facts collected so far.
        missing: Information that is still missing.
        mentions: Teams or maintainers to tag.
        findings: Findings gathered during research.

    Returns:
        Markdown describing the history, the collected facts and the gaps.
    """
    lines = [
        mention(username),
        "",
        "## Escalation Notice",
        "",
        "### What Happened",
        f"After {execution.total_user_loops} rounds of follow-up questions this issue still "
        "needs a human to take a look. I'll stop asking questions here.",
        "",
        f"`{execution.summary()}`",
        "",
        "### Information Collected",
    ]
    if facts:
        lines.extend(f"- **{key}:** {sanitize_line(value)[:200]}" for key, value in sorted(facts.items()))
    else:
        lines.append("- Nothing structured could be extracted.")
    lines.append("")

    if findings:
        lines.append("### Findings")
        lines.extend(f"- {sanitize_line(f)}" for f in findings)
        lines.append("")

    lines.append("### Still Missing")
    if missing:
        lines.extend(f"- {sanitize_line(m)}" for m in missing)
    else:
        lines.append("- Nothing specific; the issue needs a maintainer's judgement.")

    if mentions:
        lines.extend(["", f"Tagging for manual review: {' '.join(mentions)}"])
    return "\n".join(lines)


def format_stop_acknowledgement(username: str) -> str:
    return "\n".join(
        [
            mention(username),
            "",
            "You've opted out with `/stop`. I won't ask further questions on this issue. "
            "If you need to restart, comment with `/diagnose`.",
        ]
    )


def format_off_topic(username: str, reason: str = "", blocked: bool = False) -> str:
    lines = [
        mention(username),
        "",
        "Thanks for reaching out! This thread is for the issue reported above, and your "
        "comment looks unrelated to it.",
    ]
    if reason:
        lines.extend(["", f"_{sanitize_line(reason)}_"])
    lines.extend(
        [
            "",
            "If you are hitting a different problem, please open a new issue or comment with "
            "`/diagnose` followed by a description of it.",
        ]
    )
    if blocked:
        lines.extend(
            [
                "",
                "I won't respond to further off-topic comments from you on this issue.",
            ]
        )
    return "\n".join(lines)


class ResponseComposer:
    """Renders comments and appends the pruned state marker.

    Attributes:
        config: Orchestration configuration (loop bound, questions per round).
        store: StateStore used to prune and embed state.
        spec_pack: Spec pack providing escalation mentions.
    """

    def __init__(self, config: OrchestrationConfig, store: StateStore, spec_pack: SpecPack):
        self.config = config
        self.store = store
        self.spec_pack = spec_pack

    def finish(self, visible_text: str, state: ConversationState) -> str:
        """Prune the state and append its marker to the visible text."""
        return self.store.embed(visible_text, self.store.prune(state))

    def questions(
        self,
        username: str,
        questions: Sequence[FollowUpQuestion],
        loop_number: int,
        state: ConversationState,
    ) -> str:
        text = format_questions(
            username,
            questions,
            loop_number,
            self.config.max_user_loops,
            self.config.max_questions_per_round,
        )
        return self.finish(text, state)

    def brief(
        self,
        username: str,
        draft: ResponseDraft,
        state: ConversationState,
        scoring: Optional[ScoringResult] = None,
        redaction_warnings: Sequence[str] = (),
    ) -> str:
        return self.finish(format_brief(username, draft, scoring, redaction_warnings), state)

    def self_resolution(self, username: str, state: ConversationState, summary: str = "") -> str:
        return self.finish(format_self_resolution(username, summary), state)

    def escalation(
        self,
        username: str,
        execution: ExecutionState,
        state: ConversationState,
        facts: Optional[Dict[str, str]] = None,
        missing: Sequence[str] = (),
        findings: Sequence[str] = (),
    ) -> str:
        text = format_escalation(
            username,
            execution,
            facts or {},
            list(missing),
            self.spec_pack.escalation_mentions,
            list(findings),
        )
        return self.finish(text, state)

    def stop_acknowledgement(self, username: str, state: ConversationState) -> str:
        return self.finish(format_stop_acknowledgement(username), state)

    def off_topic(self, username: str, state: ConversationState, reason: str = "", blocked: bool = False) -> str:
        return self.finish(format_off_topic(username, reason, blocked), state)


def shared_finding_texts(state: ConversationState) -> List[str]:
    """Shared finding contents with their discoverer, for escalation notes."""
    return [f"{f.content} (via @{f.discovered_by})" for f in state.shared_findings]
