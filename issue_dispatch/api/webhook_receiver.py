"""Webhook receiver for issue sources, approvals and job control."""

import hashlib
import hmac
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
import uvicorn

from issue_dispatch.config.settings import APIConfig, WebhookConfig
from issue_dispatch.exceptions import AdapterError
from issue_dispatch.models.common import Issue, SourceType
from issue_dispatch.models.validation import ApprovalRequestBody
from issue_dispatch.sources.base import IssueSourceAdapter


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of a payload."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    """Check a signature header value, with or without a ``sha256=`` prefix."""
    if not signature:
        return False
    received = signature.strip()
    if received.startswith("sha256="):
        received = received[7:]
    return hmac.compare_digest(compute_signature(secret, payload), received)


class WebhookReceiver:
    """FastAPI app accepting provider webhooks plus approval and cancel calls.

    When a source has a secret configured, requests without a valid
    HMAC-SHA256 signature are refused with 401 before the body is parsed.
    Issues are normalized inline, so malformed payloads get a 400, and
    ingested in the background.
    """

    SIGNATURE_HEADERS = {
        SourceType.GITHUB: "X-Hub-Signature-256",
        SourceType.SENTRY: "Sentry-Hook-Signature",
        SourceType.JIRA: "X-Hub-Signature",
        SourceType.MONITORING: "X-Hub-Signature",
    }

    def __init__(
        self,
        adapters: Dict[SourceType, IssueSourceAdapter],
        ingest: Callable[[Issue], Awaitable[Any]],
        approval_gate=None,
        dispatcher=None,
        poller=None,
        api_config: Optional[APIConfig] = None,
        config: Optional[WebhookConfig] = None,
    ):
        """Initialize webhook receiver.

        Args:
            adapters: Adapter per source type
            ingest: Coroutine called once per normalized issue
            approval_gate: Gate receiving approval commands
            dispatcher: Dispatcher used for job lookups and cancellation
            poller: Source poller, for re-enabling disabled sources
            api_config: Webhook secrets
            config: Bind address
        """
        self.adapters = adapters
        self.ingest = ingest
        self.approval_gate = approval_gate
        self.dispatcher = dispatcher
        self.poller = poller
        self.api_config = api_config or APIConfig()
        self.config = config or WebhookConfig()
        self.logger = logging.getLogger(__name__)
        self.server: Optional[uvicorn.Server] = None

        self.secrets = {
            SourceType.GITHUB: self.api_config.github_webhook_secret,
            SourceType.SENTRY: self.api_config.sentry_webhook_secret,
            SourceType.JIRA: self.api_config.jira_webhook_secret,
            SourceType.MONITORING: self.api_config.monitoring_webhook_secret,
        }

        self.app = FastAPI(title="Issue Dispatch Webhook Receiver")
        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.post("/webhooks/github")
        async def github_webhook(request: Request, background_tasks: BackgroundTasks):
            payload = await self._verified_payload(request, SourceType.GITHUB)
            event_type = request.headers.get("X-GitHub-Event", "issues")
            delivery_id = request.headers.get("X-GitHub-Delivery")
            self.logger.info(f"Received GitHub webhook: {event_type} (delivery: {delivery_id})")

            if event_type == "ping":
                return {"message": "pong"}
            if event_type == "issue_comment":
                return self._handle_comment(payload)
            if event_type != "issues":
                return JSONResponse(status_code=202, content={"message": f"Ignored event {event_type}"})
            return self._accept(SourceType.GITHUB, payload, background_tasks)

        @self.app.post("/webhooks/sentry")
        async def sentry_webhook(request: Request, background_tasks: BackgroundTasks):
            payload = await self._verified_payload(request, SourceType.SENTRY)
            return self._accept(SourceType.SENTRY, payload, background_tasks)

        @self.app.post("/webhooks/jira")
        async def jira_webhook(request: Request, background_tasks: BackgroundTasks):
            payload = await self._verified_payload(request, SourceType.JIRA)
            return self._accept(SourceType.JIRA, payload, background_tasks)

        @self.app.post("/webhooks/monitoring")
        async def monitoring_webhook(request: Request, background_tasks: BackgroundTasks):
            payload = await self._verified_payload(request, SourceType.MONITORING)
            return self._accept(SourceType.MONITORING, payload, background_tasks)

        @self.app.post("/approvals/{job_id}")
        async def respond_to_approval(job_id: str, body: ApprovalRequestBody):
            if self.approval_gate is None:
                raise HTTPException(status_code=503, detail="Approval gate not configured")
            if not self.approval_gate.respond(job_id, body.decision, body.text, body.responder):
                raise HTTPException(status_code=409, detail=f"No open approval request for job {job_id}")
            return {"job_id": job_id, "decision": body.decision.value, "accepted": True}

        @self.app.get("/jobs/{job_id}")
        async def get_job(job_id: str):
            job = self.dispatcher.get_job(job_id) if self.dispatcher else None
            if job is None:
                raise HTTPException(status_code=404, detail=f"Unknown job {job_id}")
            return job.to_dict()

        @self.app.delete("/jobs/{job_id}")
        async def cancel_job(job_id: str):
            if self.dispatcher is None:
                raise HTTPException(status_code=503, detail="Dispatcher not configured")
            job = self.dispatcher.get_job(job_id)
            if job is None:
                raise HTTPException(status_code=404, detail=f"Unknown job {job_id}")
            if not await self.dispatcher.cancel(job_id):
                raise HTTPException(status_code=409, detail=f"Job {job_id} already finished")
            return {"job_id": job_id, "cancel_requested": True, "status": job.status.value}

        @self.app.post("/sources/{name:path}/enable")
        async def enable_source(name: str):
            if self.poller is None or not self.poller.enable(name):
                raise HTTPException(status_code=404, detail=f"Unknown source {name}")
            return {"source": name, "enabled": True}

    async def _verified_payload(self, request: Request, source_type: SourceType) -> Any:
        body = await request.body()
        secret = self.secrets.get(source_type)
        if secret:
            signature = request.headers.get(self.SIGNATURE_HEADERS[source_type])
            if not verify_signature(secret, body, signature):
                self.logger.warning(f"Rejected {source_type.value} webhook with missing or invalid signature")
                raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            return json.loads(body.decode())
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

    def _accept(self, source_type: SourceType, payload: Any, background_tasks: BackgroundTasks):
        adapter = self.adapters.get(source_type)
        if adapter is None:
            raise HTTPException(status_code=404, detail=f"Source {source_type.value} is not configured")

        try:
            issues = adapter.normalize(payload)
        except AdapterError as e:
            self.logger.warning(f"Malformed {source_type.value} payload: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        if issues:
            background_tasks.add_task(self._ingest_all, issues)
        return JSONResponse(status_code=202, content={
            "message": "Webhook received",
            "issues": [issue.id for issue in issues],
        })

    async def _ingest_all(self, issues: List[Issue]) -> None:
        for issue in issues:
            try:
                await self.ingest(issue)
            except Exception as e:
                self.logger.error(f"Failed to ingest {issue.id}: {e}", exc_info=True)

    def _handle_comment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload.get("action") != "created" or self.approval_gate is None:
            return {"message": "Comment ignored"}

        comment = payload.get("comment") or {}
        responder = (comment.get("user") or {}).get("login")
        response = self.approval_gate.handle_comment(comment.get("body") or "", responder=responder)
        if response is None:
            return {"message": "No approval command"}
        return {"message": "Approval recorded", "job_id": response.job_id,
                "decision": response.decision.value}

    async def serve(self) -> None:
        """Serve on the running event loop until ``stop`` is called."""
        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="info"
        )
        self.server = uvicorn.Server(config)
        self.logger.info(f"Starting webhook receiver on {self.config.host}:{self.config.port}")
        await self.server.serve()

    def stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
