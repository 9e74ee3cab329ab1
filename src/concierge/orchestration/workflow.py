"""Concierge workflow connecting guardrails, stages and the orchestrator.

One inbound event drives exactly one pass:

    load state -> guardrails -> off-topic check -> redact -> case packet
    -> triage -> research -> response (each gated once) -> sufficiency
    -> decision -> compose + persist -> labels

The workflow returns a typed InvocationResult with exactly one outcome.
Silent decisions (bot comments, unauthorized users, finalized threads)
post nothing and persist nothing. Only a failure to read the thread's
comment history propagates; every other failure degrades to a
well-formed outcome.

Requirements:
- loop_count increases by exactly one for invocations that reach the
  pipeline or the loop-limit escalation
- asked_fields grows by the fields asked this run
- The stage section is bounded by a timeout; on timeout the stages fall
  back to their deterministic outputs

Source:
- src/concierge/guardrails/engine.py (GuardrailEngine)
- src/concierge/critique/gate.py (QualityGate)
- src/concierge/stages/*.py (TriageAgent, ResearchAgent, ResponseAgent)
- src/concierge/orchestration/decision.py (OrchestratorStateMachine)
- src/concierge/compose/formatting.py (ResponseComposer)
- src/concierge/events/emitter.py (EventEmitter)
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from src.concierge.compose.formatting import ResponseComposer, shared_finding_texts
from src.concierge.config import OrchestrationConfig
from src.concierge.critique.gate import QualityGate
from src.concierge.critique.judge import RubricJudge
from src.concierge.critique.models import Judgement, StageName
from src.concierge.events.emitter import EventEmitter, NullEventEmitter
from src.concierge.events.models import ConciergeEvent, EventType
from src.concierge.github.client import GitHubAPIError, GitHubClient
from src.concierge.github.models import IssueEvent
from src.concierge.guardrails.engine import GuardrailDecision, GuardrailEngine, GuardrailResult
from src.concierge.guardrails.offtopic import OffTopicJudge
from src.concierge.guardrails.phrases import TextPredicate, default_self_resolution_predicate
from src.concierge.guardrails.redaction import SecretRedactor
from src.concierge.llm.client import CompletionClient
from src.concierge.orchestration.decision import OrchestratorStateMachine, SufficiencyAssessor
from src.concierge.orchestration.models import (
    ExecutionState,
    InvocationResult,
    LoopAction,
    OrchestratorDecision,
    Outcome,
    SufficiencyAssessment,
)
from src.concierge.stages.casepacket import CompletenessScorer, FieldValidators, extract_fields
from src.concierge.stages.models import (
    CasePacket,
    FollowUpQuestion,
    ResearchResult,
    ResponseDraft,
    StageInput,
    TriageResult,
)
from src.concierge.stages.research import EvidenceSource, ResearchAgent
from src.concierge.stages.response import ResponseAgent
from src.concierge.stages.specpack import DEFAULT_SPEC_PACK, SpecPack
from src.concierge.stages.triage import TriageAgent
from src.concierge.state.loader import StateLoader
from src.concierge.state.models import (
    ConversationState,
    SharedFinding,
    UserConversation,
    create_initial_state,
    utc_now,
)
from src.concierge.state.store import StateStore


logger = logging.getLogger(__name__)


DEFAULT_STAGE_TIMEOUT_SECONDS = 120.0

# Findings shared per run; the rest stay in this run's brief only
MAX_FINDINGS_SHARED_PER_RUN = 3


class StageRun(NamedTuple):
    """Outputs of the gated stages for one invocation."""

    inp: StageInput
    triage: TriageResult
    research: ResearchResult
    draft: ResponseDraft
    sufficiency: SufficiencyAssessment
    judgements: Dict[str, Judgement]
    redaction_findings: List[str]


class ConciergeWorkflow:
    """Runs one invocation of the concierge for an inbound event.

    All collaborators are injected; any left out are built from the
    configuration and spec pack so tests can replace only what they need.

    Attributes:
        config: Orchestration configuration.
        github: GitHub client for comment history, posting and labels.
        spec_pack: Categories, checklists and validators.
        store: StateStore used to embed and extract state markers.
        loader: StateLoader selecting the authoritative marker.
        guardrails: GuardrailEngine routing each event.
        off_topic_judge: Optional OffTopicJudge for comment events.
        redactor: SecretRedactor applied to user text before any LLM call.
        gate: QualityGate scoring each stage output.
        triage_agent / research_agent / response_agent: Stage agents.
        sufficiency: SufficiencyAssessor.
        state_machine: OrchestratorStateMachine.
        composer: ResponseComposer.
        event_emitter: Sink for observability events.
        is_self_resolution: Predicate over the new text.
        stage_timeout_seconds: Upper bound for the stage section.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        github: GitHubClient,
        spec_pack: SpecPack = DEFAULT_SPEC_PACK,
        client: Optional[CompletionClient] = None,
        sources: Optional[List[EvidenceSource]] = None,
        event_emitter: Optional[EventEmitter] = None,
        store: Optional[StateStore] = None,
        guardrails: Optional[GuardrailEngine] = None,
        off_topic_judge: Optional[OffTopicJudge] = None,
        gate: Optional[QualityGate] = None,
        triage_agent: Optional[TriageAgent] = None,
        research_agent: Optional[ResearchAgent] = None,
        response_agent: Optional[ResponseAgent] = None,
        sufficiency: Optional[SufficiencyAssessor] = None,
        is_self_resolution: Optional[TextPredicate] = None,
        clock: Callable = utc_now,
        evidence_timeout_seconds: float = 10.0,
        stage_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS,
    ):
        self.config = config
        self.github = github
        self.spec_pack = spec_pack
        self.clock = clock
        self.store = store or StateStore.from_config(config)
        self.loader = StateLoader(self.store, config)
        self.guardrails = guardrails or GuardrailEngine(config, clock=clock)
        if off_topic_judge is None and client is not None:
            off_topic_judge = OffTopicJudge(client)
        self.off_topic_judge = off_topic_judge
        self.redactor = SecretRedactor(spec_pack.validators.secret_patterns)
        self.scorer = CompletenessScorer(FieldValidators(spec_pack.validators))
        judge = RubricJudge(client) if client is not None else None
        self.gate = gate or QualityGate(config, judge=judge, rubrics=spec_pack.rubrics or None)
        self.triage_agent = triage_agent or TriageAgent(spec_pack, client)
        self.research_agent = research_agent or ResearchAgent(
            sources or [], client, timeout=evidence_timeout_seconds
        )
        self.response_agent = response_agent or ResponseAgent(
            spec_pack, client, max_questions=config.max_questions_per_round
        )
        self.sufficiency = sufficiency or SufficiencyAssessor(client)
        self.state_machine = OrchestratorStateMachine(config)
        self.composer = ResponseComposer(config, self.store, spec_pack)
        self.event_emitter = event_emitter or NullEventEmitter()
        self.is_self_resolution = is_self_resolution or default_self_resolution_predicate()
        self.stage_timeout_seconds = stage_timeout_seconds

    async def run(self, event: IssueEvent) -> InvocationResult:
        """Process one inbound event.

        Args:
            event: The parsed issue or comment event.

        Returns:
            InvocationResult with exactly one outcome.

        Raises:
            GitHubAPIError: If the thread's comment history cannot be read.
        """
        started = time.monotonic()
        thread_key = event.thread_key

        logger.info(
            "Starting invocation",
            extra={
                "thread_key": thread_key,
                "event_name": event.event_name.value,
                "username": event.actor,
            },
        )

        state = await self._load_state(event)
        guard = self.guardrails.evaluate(event, state)
        guard = await self._check_off_topic(event, guard)

        await self._safe_emit(
            ConciergeEvent(
                event_type=EventType.GUARDRAIL_DECISION,
                thread_key=thread_key,
                repository=event.full_repository,
                details={
                    "decision": guard.decision.value,
                    "participant": guard.participant,
                    "reason": guard.reason,
                },
            )
        )

        if guard.decision.is_silent:
            result = InvocationResult(
                outcome=Outcome.SILENTLY_DROPPED,
                action=LoopAction.NONE,
                guardrail=guard.decision,
                participant=guard.participant,
                reason=guard.reason,
            )
        elif guard.decision == GuardrailDecision.ACKNOWLEDGE_STOP:
            result = await self._acknowledge_stop(event, guard)
        elif guard.decision == GuardrailDecision.REDIRECT_OFF_TOPIC:
            result = await self._redirect_off_topic(event, guard)
        elif guard.decision == GuardrailDecision.ESCALATE_LOOP_LIMIT:
            result = await self._escalate_loop_limit(event, guard)
        else:
            result = await self._run_pipeline(event, guard)

        duration = time.monotonic() - started
        logger.info(
            "Invocation completed",
            extra={
                "thread_key": thread_key,
                "username": result.participant,
                "outcome": result.outcome.value,
                "action": result.action.value,
                "comment_posted": result.comment_posted,
                "duration_seconds": round(duration, 3),
            },
        )
        await self._safe_emit(
            ConciergeEvent(
                event_type=EventType.INVOCATION_COMPLETED,
                thread_key=thread_key,
                repository=event.full_repository,
                details={
                    "outcome": result.outcome.value,
                    "action": result.action.value,
                    "participant": result.participant,
                    "duration_seconds": duration,
                    "comment_posted": result.comment_posted,
                },
            )
        )
        return result

    # ------------------------------------------------------------------
    # Loading and guardrails
    # ------------------------------------------------------------------

    async def _load_state(self, event: IssueEvent) -> ConversationState:
        """Load the thread's state from its history, or create it for a new issue."""
        state: Optional[ConversationState] = None
        if not event.is_new_issue:
            comments = await self.github.list_issue_comments(
                event.owner, event.repository, event.issue.number
            )
            state = self.loader.load(comments, event.thread_key)

        if state is None:
            return create_initial_state(event.thread_key, event.issue.author)
        if not state.issue_author:
            state = state.model_copy(update={"issue_author": event.issue.author})
        return state

    async def _check_off_topic(self, event: IssueEvent, guard: GuardrailResult) -> GuardrailResult:
        if self.off_topic_judge is None or not guard.decision.runs_pipeline:
            return guard
        if not OffTopicJudge.should_assess(event.is_comment_event, event.new_text, guard.commands):
            return guard
        redacted = self.redactor.redact(event.new_text).text
        assessment = await self.off_topic_judge.assess(
            event.issue.title,
            self.redactor.redact(event.issue.body).text,
            redacted,
        )
        return self.guardrails.apply_off_topic(guard, assessment)

    # ------------------------------------------------------------------
    # Short-circuit outcomes
    # ------------------------------------------------------------------

    async def _acknowledge_stop(self, event: IssueEvent, guard: GuardrailResult) -> InvocationResult:
        state = self._touch(guard.state)
        body = self.composer.stop_acknowledgement(guard.participant, state)
        posted = await self._post(event, body)
        return InvocationResult(
            outcome=Outcome.ACKNOWLEDGE_STOP,
            action=LoopAction.ACKNOWLEDGE_STOP,
            guardrail=guard.decision,
            participant=guard.participant,
            state=state,
            comment_body=body,
            comment_posted=posted,
            reason=guard.reason,
        )

    async def _redirect_off_topic(self, event: IssueEvent, guard: GuardrailResult) -> InvocationResult:
        state = self._touch(guard.state)
        assessment = guard.off_topic
        reason = ""
        if assessment is not None:
            reason = assessment.suggested_action or assessment.reason
        blocked = guard.conversation is not None and guard.conversation.is_off_topic_blocked
        body = self.composer.off_topic(guard.participant, state, reason=reason, blocked=blocked)
        posted = await self._post(event, body)
        return InvocationResult(
            outcome=Outcome.REDIRECT_OFF_TOPIC,
            action=LoopAction.REDIRECT_OFF_TOPIC,
            guardrail=guard.decision,
            participant=guard.participant,
            state=state,
            comment_body=body,
            comment_posted=posted,
            reason=guard.reason,
        )

    async def _escalate_loop_limit(self, event: IssueEvent, guard: GuardrailResult) -> InvocationResult:
        """Escalate without running the stages; the bound was already reached."""
        conversation = guard.conversation
        loop_number = conversation.loop_count + 1
        decision = self.state_machine.decide(loop_number, SufficiencyAssessment())
        facts = dict(conversation.case_packet)
        facts.update(extract_fields([self.redactor.redact(event.new_text).text]))
        missing = self._missing_for(guard.state.category, facts)

        updated = self._advance(conversation, loop_number, decision, asked=[], facts=facts)
        state = self._touch(guard.state.with_conversation(updated))
        execution = ExecutionState(
            loop_number=loop_number,
            total_user_loops=self.config.max_user_loops,
            information_gathered=len(facts),
            missing_information=missing,
            loop_action_taken=decision.action,
            is_user_exhausted=updated.is_exhausted,
        )
        body = self.composer.escalation(
            guard.participant,
            execution,
            state,
            facts=facts,
            missing=missing,
            findings=shared_finding_texts(state),
        )
        posted = await self._post(event, body)
        await self._apply_labels(event, state.category, decision)
        return InvocationResult(
            outcome=decision.outcome,
            action=decision.action,
            guardrail=guard.decision,
            participant=guard.participant,
            state=state,
            comment_body=body,
            comment_posted=posted,
            execution=execution,
            reason=decision.reasoning,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self, event: IssueEvent, guard: GuardrailResult) -> InvocationResult:
        conversation = guard.conversation
        participant = guard.participant
        loop_number = conversation.loop_count + 1
        if loop_number > self.config.max_user_loops:
            # A disagreement after the final loop has nothing left to ask
            return await self._escalate_loop_limit(event, guard)

        reentry = guard.decision == GuardrailDecision.REENTER_DISAGREEMENT
        self_resolved = event.is_comment_event and self.is_self_resolution(event.new_text)

        inp, redaction_findings = self._build_input(event, guard, loop_number)

        if self_resolved:
            stages = None
            decision = self.state_machine.decide(loop_number, SufficiencyAssessment(), self_resolved=True)
        else:
            stages = await self._run_stages_bounded(inp, redaction_findings)
            decision = self.state_machine.decide(
                loop_number, stages.sufficiency, self_resolved=False, reentry=reentry
            )
            inp = stages.inp

        category = stages.triage.category if stages is not None else (guard.state.category or "")
        facts = dict(inp.case_packet.facts)
        questions: List[FollowUpQuestion] = []
        if decision.outcome == Outcome.ASK_QUESTIONS and stages is not None:
            questions = self.response_agent.select_questions(
                stages.draft.follow_up_questions, inp, category
            )

        updated = self._advance(
            conversation,
            loop_number,
            decision,
            asked=[q.field for q in questions],
            facts=facts,
        )
        state = guard.state.with_conversation(updated)
        state = state.model_copy(
            update={
                "category": category,
                "completeness_score": inp.case_packet.scoring.score,
            }
        )
        if stages is not None:
            for finding in stages.research.findings[:MAX_FINDINGS_SHARED_PER_RUN]:
                state = state.with_finding(
                    SharedFinding(discovered_by=participant, category=category, content=finding)
                )
        state = self._touch(state)

        missing = (
            list(stages.sufficiency.missing_info or inp.case_packet.missing_fields)
            if stages is not None
            else []
        )
        execution = ExecutionState(
            loop_number=loop_number,
            total_user_loops=self.config.max_user_loops,
            questions_asked=len(questions),
            information_gathered=len(facts),
            missing_information=missing,
            stage_scores=(
                {name: j.score_overall for name, j in stages.judgements.items()}
                if stages is not None
                else {}
            ),
            loop_action_taken=decision.action,
            is_user_exhausted=updated.is_exhausted,
        )
        logger.info(
            "Execution summary",
            extra={"thread_key": inp.thread_key, "username": participant, "summary": execution.summary()},
        )

        body = self._compose(participant, decision, state, inp, stages, questions, execution)
        posted = await self._post(event, body)
        await self._apply_labels(event, category, decision)

        return InvocationResult(
            outcome=decision.outcome,
            action=decision.action,
            guardrail=guard.decision,
            participant=participant,
            state=state,
            comment_body=body,
            comment_posted=posted,
            judgements=stages.judgements if stages is not None else {},
            execution=execution,
            reason=decision.reasoning,
        )

    def _build_input(
        self, event: IssueEvent, guard: GuardrailResult, loop_number: int
    ) -> Tuple[StageInput, List[str]]:
        """Redact user text and build the stage input with a case packet."""
        body = self.redactor.redact(event.issue.body)
        new_text = self.redactor.redact(event.new_text)
        findings = list(body.findings)
        if event.is_comment_event:
            findings.extend(new_text.findings)
        if findings:
            logger.warning(
                "Redacted secrets from user text",
                extra={"thread_key": event.thread_key, "count": len(findings)},
            )

        conversation = guard.conversation
        # The issue body only speaks for the thread owner
        sources = [body.text] if event.is_thread_owner_actor else []
        facts = extract_fields(sources)
        facts.update(conversation.case_packet)
        facts.update(extract_fields([new_text.text]))

        category = guard.state.category
        inp = StageInput(
            thread_key=event.thread_key,
            owner=event.owner,
            repository=event.repository,
            issue_number=event.issue.number,
            participant=guard.participant,
            issue_title=event.issue.title,
            issue_body=body.text,
            new_text=new_text.text,
            prior_category=category,
            allowed_categories=self.spec_pack.category_names,
            shared_findings=[f.content for f in guard.state.shared_findings],
            asked_fields=list(conversation.asked_fields),
            case_packet=self._score(facts, category),
            loop_number=loop_number,
            max_loops=self.config.max_user_loops,
        )
        return inp, findings

    def _score(self, facts: Dict[str, str], category: str) -> CasePacket:
        scoring = self.scorer.score(facts, self.spec_pack.checklist_for(category))
        return CasePacket(facts=facts, scoring=scoring)

    async def _run_stages_bounded(self, inp: StageInput, redaction_findings: List[str]) -> StageRun:
        try:
            return await asyncio.wait_for(
                self._run_stages(inp, redaction_findings),
                timeout=self.stage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Stages timed out, using deterministic fallbacks",
                extra={"thread_key": inp.thread_key, "timeout_seconds": self.stage_timeout_seconds},
            )
            await self._safe_emit(
                ConciergeEvent(
                    event_type=EventType.TIMEOUT,
                    thread_key=inp.thread_key,
                    repository=f"{inp.owner}/{inp.repository}",
                    details={"operation": "stages", "timeout_seconds": self.stage_timeout_seconds},
                )
            )
            return self._fallback_stages(inp, redaction_findings)

    async def _run_stages(self, inp: StageInput, redaction_findings: List[str]) -> StageRun:
        judgements: Dict[str, Judgement] = {}

        triage = await self.triage_agent.triage(inp)
        gated_triage = await self.gate.run(
            StageName.TRIAGE,
            triage,
            lambda out: self.triage_agent.evaluation_context(out, inp),
            lambda out, judgement: self.triage_agent.refine(out, judgement, inp),
        )
        triage = gated_triage.output
        judgements[StageName.TRIAGE.value] = gated_triage.judgement
        await self._emit_critique(inp, gated_triage.judgement, gated_triage.refined)

        # Rescore against the triaged category before the later stages
        inp = inp.model_copy(update={"case_packet": self._score(dict(inp.case_packet.facts), triage.category)})

        research = await self.research_agent.research(inp, triage)
        gated_research = await self.gate.run(
            StageName.RESEARCH,
            research,
            lambda out: self.research_agent.evaluation_context(out, inp),
            lambda out, judgement: self.research_agent.deep_dive(out, judgement, inp, triage),
        )
        research = gated_research.output
        judgements[StageName.RESEARCH.value] = gated_research.judgement
        await self._emit_critique(inp, gated_research.judgement, gated_research.refined)

        draft = await self.response_agent.draft(inp, triage, research)
        gated_response = await self.gate.run(
            StageName.RESPONSE,
            draft,
            lambda out: self.response_agent.evaluation_context(out, inp),
            lambda out, judgement: self.response_agent.refine(out, judgement, inp, triage, research),
        )
        draft = gated_response.output
        judgements[StageName.RESPONSE.value] = gated_response.judgement
        await self._emit_critique(inp, gated_response.judgement, gated_response.refined)

        sufficiency = await self.sufficiency.assess(inp, triage, research)
        return StageRun(inp, triage, research, draft, sufficiency, judgements, redaction_findings)

    def _fallback_stages(self, inp: StageInput, redaction_findings: List[str]) -> StageRun:
        triage = self.triage_agent.classify_by_keywords(inp)
        inp = inp.model_copy(update={"case_packet": self._score(dict(inp.case_packet.facts), triage.category)})
        draft = ResponseDraft(
            summary=triage.summary or inp.issue_title,
            follow_up_questions=self.response_agent.select_questions([], inp, triage.category),
            degraded=True,
        )
        sufficiency = SufficiencyAssessment(
            has_enough_info=False,
            missing_info=list(inp.case_packet.missing_fields),
            reasoning="stage_timeout",
            deterministic_enough=inp.case_packet.scoring.is_actionable,
            failed=True,
        )
        return StageRun(inp, triage, ResearchResult(degraded=True), draft, sufficiency, {}, redaction_findings)

    # ------------------------------------------------------------------
    # State updates and composition
    # ------------------------------------------------------------------

    def _advance(
        self,
        conversation: UserConversation,
        loop_number: int,
        decision: OrchestratorDecision,
        asked: List[str],
        facts: Dict[str, str],
    ) -> UserConversation:
        """Apply this invocation's single loop increment and outcome."""
        now = self.clock()
        update = {
            "loop_count": loop_number,
            "is_exhausted": loop_number > self.config.max_user_loops,
            "last_interaction": now,
            "case_packet": facts,
        }
        if decision.outcome == Outcome.FINALIZE:
            update["is_finalized"] = True
            update["finalized_at"] = now
        advanced = conversation.model_copy(update=update)
        if asked:
            advanced = advanced.with_asked_fields(asked)
        return advanced

    def _touch(self, state: ConversationState) -> ConversationState:
        return state.model_copy(update={"last_updated": self.clock()})

    def _missing_for(self, category: str, facts: Dict[str, str]) -> List[str]:
        return list(self._score(facts, category).missing_fields)

    def _compose(
        self,
        participant: str,
        decision: OrchestratorDecision,
        state: ConversationState,
        inp: StageInput,
        stages: Optional[StageRun],
        questions: List[FollowUpQuestion],
        execution: ExecutionState,
    ) -> str:
        if decision.action == LoopAction.CONFIRM_SELF_RESOLUTION:
            return self.composer.self_resolution(participant, state)
        if decision.outcome == Outcome.ESCALATE:
            return self.composer.escalation(
                participant,
                execution,
                state,
                facts=dict(inp.case_packet.facts),
                missing=execution.missing_information,
                findings=shared_finding_texts(state),
            )
        if decision.outcome == Outcome.ASK_QUESTIONS:
            return self.composer.questions(participant, questions, inp.loop_number, state)
        draft = stages.draft if stages is not None else ResponseDraft(summary=inp.issue_title)
        return self.composer.brief(
            participant,
            draft,
            state,
            scoring=inp.case_packet.scoring,
            redaction_warnings=stages.redaction_findings if stages is not None else [],
        )

    # ------------------------------------------------------------------
    # GitHub side effects
    # ------------------------------------------------------------------

    async def _post(self, event: IssueEvent, body: str) -> bool:
        """Post the composed comment unless running in dry-run mode."""
        if not self.config.write_mode:
            logger.info(
                "Write mode disabled, not posting comment",
                extra={"thread_key": event.thread_key, "body_length": len(body)},
            )
            return False
        try:
            await self.github.create_comment(event.owner, event.repository, event.issue.number, body)
        except GitHubAPIError as e:
            logger.error(
                "Failed to post comment",
                extra={"thread_key": event.thread_key, "error": e.message, "status_code": e.status_code},
            )
            await self._emit_error(event, "post_comment", e)
            return False
        return True

    async def _apply_labels(self, event: IssueEvent, category: str, decision: OrchestratorDecision) -> None:
        if decision.outcome not in (Outcome.FINALIZE, Outcome.ESCALATE) or not self.config.write_mode:
            return
        labels = self.spec_pack.labels_for(category)
        if not labels:
            return
        try:
            await self.github.add_labels(event.owner, event.repository, event.issue.number, labels)
        except GitHubAPIError as e:
            logger.warning(
                "Failed to add routing labels",
                extra={"thread_key": event.thread_key, "labels": labels, "error": e.message},
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit_critique(self, inp: StageInput, judgement: Judgement, refined: bool) -> None:
        await self._safe_emit(
            ConciergeEvent(
                event_type=EventType.STAGE_CRITIQUE,
                thread_key=inp.thread_key,
                repository=f"{inp.owner}/{inp.repository}",
                details={
                    "stage": judgement.stage.value,
                    "score": judgement.score_overall,
                    "threshold": judgement.threshold,
                    "passed": judgement.passed_threshold,
                    "refined": refined,
                    "judge_failed": judgement.judge_failed,
                },
            )
        )

    async def _emit_error(self, event: IssueEvent, operation: str, exc: Exception) -> None:
        await self._safe_emit(
            ConciergeEvent(
                event_type=EventType.ERROR,
                thread_key=event.thread_key,
                repository=event.full_repository,
                details={
                    "operation": operation,
                    "error_message": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
        )

    async def _safe_emit(self, event: ConciergeEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the invocation."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit concierge event",
                extra={"event_type": event.event_type.value, "thread_key": event.thread_key},
            )
