"""Judged off-topic assessment for incoming comments.

Only comment events are assessed. The judge is skipped for /stop and for
a bare /diagnose with no other text. Any failure of the completion call
yields a "not off-topic" assessment so the pipeline keeps going.

Source:
- src/concierge/llm/client.py (CompletionClient)
"""

import logging
from typing import Any, Dict

from pydantic import BaseModel, Field

from src.concierge.guardrails.commands import CommandInfo, strip_commands
from src.concierge.llm.client import CompletionClient, LLMError


logger = logging.getLogger(__name__)


OFF_TOPIC_SYSTEM_PROMPT = """You check whether a new comment on a GitHub issue is about the same problem as the issue.

A comment is on-topic when it answers questions, adds details, reports progress, or disagrees with a proposed fix for the issue.
A comment is off-topic when it raises an unrelated problem, asks about a different feature, or is spam.

Respond with JSON only:
{
  "off_topic": true|false,
  "confidence_score": 0.0-1.0,
  "reason": "short explanation",
  "suggested_action": "what the user should do instead, or empty"
}"""


class OffTopicAssessment(BaseModel):
    """Result of an off-topic judgement."""

    off_topic: bool = False
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str = ""
    suggested_action: str = ""

    @classmethod
    def on_topic(cls, reason: str = "") -> "OffTopicAssessment":
        return cls(off_topic=False, confidence_score=0.0, reason=reason)


def _build_prompt(issue_title: str, issue_body: str, comment_text: str) -> str:
    body = issue_body[:2000] if issue_body else "(no description provided)"
    return f"""**Issue title:** {issue_title}

**Issue description:**
{body}

**New comment:**
{comment_text[:2000]}

Is the new comment off-topic for this issue? Answer as JSON."""


def _is_flagged(value: Any) -> bool:
    """Strict verdict parse; anything but an explicit yes counts as on-topic."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


def _normalize(data: Dict[str, Any]) -> OffTopicAssessment:
    try:
        confidence = float(data.get("confidence_score", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    return OffTopicAssessment(
        off_topic=_is_flagged(data.get("off_topic")),
        confidence_score=max(0.0, min(1.0, confidence)),
        reason=str(data.get("reason") or ""),
        suggested_action=str(data.get("suggested_action") or ""),
    )


class OffTopicJudge:
    """Asks the completion endpoint whether a comment is off-topic."""

    def __init__(self, client: CompletionClient):
        self.client = client

    @staticmethod
    def should_assess(is_comment_event: bool, text: str, commands: CommandInfo) -> bool:
        """Decide whether a new text needs an off-topic judgement."""
        if not is_comment_event or commands.has_stop_command:
            return False
        if commands.has_diagnose_command and not strip_commands(text):
            return False
        return bool(text and text.strip())

    async def assess(
        self,
        issue_title: str,
        issue_body: str,
        comment_text: str,
    ) -> OffTopicAssessment:
        """Judge whether a comment is off-topic.

        Returns:
            The assessment; on any failure an on-topic assessment.
        """
        text = strip_commands(comment_text)
        try:
            data = await self.client.complete_json(
                OFF_TOPIC_SYSTEM_PROMPT,
                _build_prompt(issue_title, issue_body, text),
            )
        except LLMError as e:
            logger.warning(
                "Off-topic check failed, assuming on-topic",
                extra={"error": e.message},
            )
            return OffTopicAssessment.on_topic(reason="off_topic_check_failed")

        assessment = _normalize(data)
        logger.info(
            "Off-topic assessment",
            extra={
                "off_topic": assessment.off_topic,
                "confidence": assessment.confidence_score,
            },
        )
        return assessment
