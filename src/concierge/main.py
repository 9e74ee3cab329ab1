"""FastAPI application entry point for the support concierge.

This module exposes the concierge as a webhook service. Each accepted
GitHub event is processed in the background by ConciergeWorkflow; the
HTTP response only acknowledges receipt.

Requirements:
- Metrics SHALL be exposed in Prometheus format at `/metrics`
- Configuration values are logged on startup with secrets redacted
- Failures reading the thread are logged at the boundary, never retried
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.concierge.config import ConciergeSettings, get_settings
from src.concierge.events.emitter import EventEmitter, EventSinkType, create_event_emitter
from src.concierge.events.metrics import generate_metrics_output
from src.concierge.events.models import ConciergeEvent, EventType
from src.concierge.github.client import GitHubAPIError, GitHubClient
from src.concierge.github.models import IssueEvent
from src.concierge.llm.client import ChatCompletionClient
from src.concierge.orchestration.workflow import ConciergeWorkflow
from src.concierge.stages.research import GitHubIssueSearchSource
from src.concierge.stages.specpack import load_spec_pack
from src.concierge.webhook.handler import WebhookHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: Optional[ConciergeSettings] = None
workflow: Optional[ConciergeWorkflow] = None
webhook_handler: Optional[WebhookHandler] = None
github_client: Optional[GitHubClient] = None
event_emitter: Optional[EventEmitter] = None


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: ConciergeSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Concierge configuration:")
    logger.info(f"  GitHub Base URL: {cfg.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(cfg.github_token)}")
    logger.info(f"  Bot Username: {cfg.bot_username}")
    logger.info(f"  LLM URL: {cfg.llm_url}")
    logger.info(f"  LLM Model: {cfg.llm_model}")
    logger.info(f"  LLM API Key: {_redact_secret(cfg.llm_api_key)}")
    logger.info(f"  LLM Timeout Seconds: {cfg.llm_timeout_seconds}")
    logger.info(f"  Evidence Timeout Seconds: {cfg.evidence_timeout_seconds}")
    logger.info(f"  Stage Timeout Seconds: {cfg.stage_timeout_seconds}")
    logger.info(f"  Max User Loops: {cfg.max_user_loops}")
    logger.info(
        f"  Critique Thresholds: triage={cfg.triage_threshold} "
        f"research={cfg.research_threshold} response={cfg.response_threshold}"
    )
    logger.info(f"  Compression Threshold Bytes: {cfg.compression_threshold_bytes}")
    logger.info(f"  Off-topic Strike Limit: {cfg.off_topic_strike_limit}")
    logger.info(f"  Off-topic Confidence Threshold: {cfg.off_topic_confidence_threshold}")
    logger.info(f"  Max Asked Fields History: {cfg.max_asked_fields_history}")
    logger.info(f"  Judge Enabled: {cfg.judge_enabled}")
    logger.info(f"  Write Mode: {cfg.write_mode}")
    logger.info(f"  Spec Pack Path: {cfg.spec_pack_path or '(built-in)'}")
    logger.info(f"  Host: {cfg.host}")
    logger.info(f"  Port: {cfg.port}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Dependency wiring for the concierge workflow
    - Graceful shutdown and cleanup
    """
    global settings, workflow, webhook_handler, github_client, event_emitter

    logger.info("Support concierge starting up...")

    settings = get_settings()
    _log_configuration(settings)

    webhook_handler = WebhookHandler()
    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
    )
    event_emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])
    workflow = _build_workflow(settings, github_client, event_emitter)

    logger.info("Support concierge started successfully")

    yield

    logger.info("Support concierge shutting down...")

    if event_emitter is not None:
        await event_emitter.close()
    if github_client is not None:
        await github_client.close()
    workflow = None

    logger.info("Support concierge shutdown complete")


def _build_workflow(
    cfg: ConciergeSettings,
    gh_client: GitHubClient,
    emitter: EventEmitter,
) -> ConciergeWorkflow:
    """Wire all concierge dependencies into a ConciergeWorkflow.

    Args:
        cfg: Validated concierge settings.
        gh_client: Authenticated GitHub API client.
        emitter: Event sink for observability.

    Returns:
        Fully wired ConciergeWorkflow.

    Raises:
        SpecPackError: If the configured spec pack file cannot be loaded.
    """
    llm_client = ChatCompletionClient(
        llm_url=cfg.llm_url,
        model_name=cfg.llm_model,
        timeout=cfg.llm_timeout_seconds,
        api_key=cfg.llm_api_key,
    )
    return ConciergeWorkflow(
        config=cfg.to_orchestration_config(),
        github=gh_client,
        spec_pack=load_spec_pack(cfg.spec_pack_path),
        client=llm_client,
        sources=[GitHubIssueSearchSource(gh_client)],
        event_emitter=emitter,
        evidence_timeout_seconds=cfg.evidence_timeout_seconds,
        stage_timeout_seconds=cfg.stage_timeout_seconds,
    )


async def process_event(event: IssueEvent) -> None:
    """Run the workflow for one event, logging failures at the boundary."""
    if workflow is None:
        logger.error("Concierge not initialized, dropping event")
        return

    try:
        await workflow.run(event)
    except GitHubAPIError as e:
        logger.error(
            "Cannot read thread from GitHub",
            extra={
                "thread_key": event.thread_key,
                "status_code": e.status_code,
                "error": e.message,
            },
        )
        await _emit_boundary_error(event, e)
    except Exception as e:
        logger.exception(
            "Unexpected failure processing event",
            extra={"thread_key": event.thread_key},
        )
        await _emit_boundary_error(event, e)


async def _emit_boundary_error(event: IssueEvent, exc: Exception) -> None:
    if event_emitter is None:
        return
    try:
        await event_emitter.emit(
            ConciergeEvent(
                event_type=EventType.ERROR,
                thread_key=event.thread_key,
                repository=event.full_repository,
                details={"error_message": str(exc), "error_type": type(exc).__name__},
            )
        )
    except Exception:
        logger.exception("Failed to emit boundary error event")


app = FastAPI(
    title="Support Concierge",
    description="Loop-bounded issue triage conversations for GitHub",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status indicating the application is running.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Returns 503 until the workflow is wired and GitHub answers.
    """
    wired = workflow is not None and webhook_handler is not None
    dependencies = {"workflow": "wired" if wired else "missing"}
    github_ok = True
    if github_client is not None:
        github_ok = await github_client.health_check()
        dependencies["github"] = "healthy" if github_ok else "unreachable"

    is_ready = wired and github_ok
    body = {"status": "ready" if is_ready else "not_ready", "dependencies": dependencies}
    if not is_ready:
        return JSONResponse(status_code=503, content=body)
    return body


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_metrics_output(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


@app.post("/webhooks/github")
async def github_webhook(request: Request, background_tasks: BackgroundTasks):
    """GitHub webhook receiver endpoint.

    Signature validation happens upstream of this service. The event is
    parsed synchronously and processed after the response is sent.

    Returns:
        dict: Acknowledgment of webhook receipt.
    """
    if webhook_handler is None or workflow is None:
        logger.error("Concierge not initialized")
        return {"status": "error", "message": "Concierge not initialized"}

    try:
        payload = await request.json()
    except ValueError:
        return {"status": "error", "message": "Invalid JSON payload"}

    event_name = request.headers.get("X-GitHub-Event", "")
    event = webhook_handler.parse_event(event_name, payload)
    if event is None:
        return {"status": "ignored", "message": "Unsupported or invalid event"}

    background_tasks.add_task(process_event, event)

    return {"status": "accepted", "thread_key": event.thread_key}


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.concierge.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
