"""Tests for the webhook receiver."""

import json

import pytest
from fastapi.testclient import TestClient

from issue_dispatch.api.webhook_receiver import WebhookReceiver, compute_signature, verify_signature
from issue_dispatch.config.settings import APIConfig
from issue_dispatch.models.common import ApprovalDecision, ApprovalResponse, JobStatus, SourceType
from issue_dispatch.sources import GitHubAdapter, MonitoringAdapter, SentryAdapter

SECRET = "s3cret"


def issue_event(number=42, action="opened"):
    return {
        "action": action,
        "issue": {
            "id": 900000 + number,
            "number": number,
            "title": "Fix typo in README",
            "body": "",
            "labels": [{"name": "documentation"}],
            "created_at": "2024-05-01T10:00:00Z",
            "html_url": f"https://github.com/acme/widgets/issues/{number}",
        },
        "repository": {"full_name": "acme/widgets"},
    }


def signed(payload, secret=SECRET):
    body = json.dumps(payload).encode()
    return body, {"X-Hub-Signature-256": f"sha256={compute_signature(secret, body)}",
                  "Content-Type": "application/json"}


class FakeGate:

    def __init__(self, open_jobs=()):
        self.open_jobs = set(open_jobs)
        self.responses = []

    def respond(self, job_id, decision, text="", responder=None):
        if job_id not in self.open_jobs:
            return False
        self.open_jobs.discard(job_id)
        self.responses.append((job_id, decision, text, responder))
        return True

    def handle_comment(self, comment, responder=None):
        parts = comment.split()
        if len(parts) < 2 or parts[0] != "/approve" or not self.respond(parts[1], ApprovalDecision.APPROVE,
                                                                         responder=responder):
            return None
        return ApprovalResponse(job_id=parts[1], decision=ApprovalDecision.APPROVE, responder=responder)


class FakeDispatcher:

    def __init__(self, jobs):
        self.jobs = {job.id: job for job in jobs}

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    async def cancel(self, job_id):
        job = self.jobs[job_id]
        if job.status.is_terminal:
            return False
        job.status = JobStatus.CANCELLED
        return True


class FakePoller:

    def enable(self, name):
        return name == "github:acme/widgets"


@pytest.fixture
def ingested():
    return []


@pytest.fixture
def receiver(ingested):
    async def ingest(issue):
        ingested.append(issue)

    adapters = {
        SourceType.GITHUB: GitHubAdapter(),
        SourceType.SENTRY: SentryAdapter(),
        SourceType.MONITORING: MonitoringAdapter(),
    }
    return WebhookReceiver(adapters, ingest, approval_gate=FakeGate({"job1"}), poller=FakePoller(),
                           api_config=APIConfig(github_webhook_secret=SECRET))


@pytest.fixture
def client(receiver):
    return TestClient(receiver.app)


def test_verify_signature():
    body = b'{"a": 1}'
    digest = compute_signature(SECRET, body)
    assert verify_signature(SECRET, body, digest)
    assert verify_signature(SECRET, body, f"sha256={digest}")
    assert not verify_signature(SECRET, body, None)
    assert not verify_signature("other", body, digest)
    assert not verify_signature(SECRET, b'{"a": 2}', digest)


class TestSourceWebhooks:

    def test_signed_issue_is_accepted(self, client, ingested):
        body, headers = signed(issue_event())
        response = client.post("/webhooks/github", content=body, headers={**headers, "X-GitHub-Event": "issues"})

        assert response.status_code == 202
        assert response.json()["issues"] == ["github:acme/widgets#42"]
        assert [issue.id for issue in ingested] == ["github:acme/widgets#42"]

    def test_missing_signature_is_rejected(self, client, ingested):
        response = client.post("/webhooks/github", json=issue_event())
        assert response.status_code == 401
        assert ingested == []

    def test_wrong_signature_is_rejected(self, client, ingested):
        body, headers = signed(issue_event(), secret="guess")
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 401
        assert ingested == []

    def test_invalid_json(self, client):
        body = b"{not json"
        headers = {"X-Hub-Signature-256": f"sha256={compute_signature(SECRET, body)}"}
        assert client.post("/webhooks/github", content=body, headers=headers).status_code == 400

    def test_malformed_payload(self, client, ingested):
        body, headers = signed({"action": "opened", "repository": {"full_name": "acme/widgets"}})
        assert client.post("/webhooks/github", content=body, headers=headers).status_code == 400
        assert ingested == []

    def test_ping(self, client):
        body, headers = signed({"zen": "Keep it logically awesome."})
        response = client.post("/webhooks/github", content=body, headers={**headers, "X-GitHub-Event": "ping"})
        assert response.json() == {"message": "pong"}

    def test_ignored_action_accepts_nothing(self, client, ingested):
        body, headers = signed(issue_event(action="closed"))
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 202
        assert response.json()["issues"] == []
        assert ingested == []

    def test_unsigned_source_without_secret(self, client, ingested):
        payload = {"alerts": [{"status": "firing", "labels": {"alertname": "HighLatency"},
                               "startsAt": "2024-05-01T10:00:00Z", "fingerprint": "f1"}]}
        response = client.post("/webhooks/monitoring", json=payload)
        assert response.status_code == 202
        assert len(ingested) == 1

    @pytest.mark.parametrize("source,payload", [
        ("monitoring", {"alerts": [{"status": "firing", "labels": ["alertname=HighLatency"]}]}),
        ("sentry", {"id": "4711", "title": "Boom", "metadata": "ZeroDivisionError"}),
    ])
    def test_non_object_fields_are_rejected(self, client, ingested, source, payload):
        assert client.post(f"/webhooks/{source}", json=payload).status_code == 400
        assert ingested == []

    def test_unconfigured_source(self, client):
        assert client.post("/webhooks/jira", json={"webhookEvent": "jira:issue_created"}).status_code == 404

    def test_comment_approval(self, client, receiver):
        payload = {"action": "created", "comment": {"body": "/approve job1", "user": {"login": "alice"}}}
        body, headers = signed(payload)
        response = client.post("/webhooks/github", content=body,
                               headers={**headers, "X-GitHub-Event": "issue_comment"})

        assert response.json()["decision"] == "approve"
        assert receiver.approval_gate.responses == [("job1", ApprovalDecision.APPROVE, "", "alice")]


class TestControlRoutes:

    def test_approval_accepted_once(self, client, receiver):
        response = client.post("/approvals/job1", json={"decision": "reject", "text": "not safe",
                                                        "responder": "bob"})
        assert response.status_code == 200
        assert response.json() == {"job_id": "job1", "decision": "reject", "accepted": True}
        assert client.post("/approvals/job1", json={"decision": "approve"}).status_code == 409

    def test_approval_body_is_validated(self, client):
        assert client.post("/approvals/job1", json={"decision": "maybe"}).status_code == 422

    def test_approval_without_gate(self):
        receiver = WebhookReceiver({}, ingest=None)
        response = TestClient(receiver.app).post("/approvals/job1", json={"decision": "approve"})
        assert response.status_code == 503

    def test_job_lookup_and_cancel(self, receiver, make_job):
        job = make_job()
        receiver.dispatcher = FakeDispatcher([job])
        client = TestClient(receiver.app)

        assert client.get(f"/jobs/{job.id}").json()["status"] == "queued"
        assert client.get("/jobs/unknown").status_code == 404

        response = client.delete(f"/jobs/{job.id}")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.delete(f"/jobs/{job.id}").status_code == 409

    def test_enable_source(self, client):
        assert client.post("/sources/github:acme/widgets/enable").status_code == 200
        assert client.post("/sources/nope/enable").status_code == 404
