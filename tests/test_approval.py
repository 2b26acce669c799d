"""Tests for reviewer commands and the approval gate."""

import asyncio

import pytest

from issue_dispatch.approval import ApprovalGate, parse_approval_command
from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.exceptions import ApprovalTimeoutError
from issue_dispatch.models.common import ApprovalDecision, ExecutorKind
from issue_dispatch.notifications.models import NotificationType


@pytest.mark.parametrize("comment,decision,job_id,text", [
    ("/approve abc123", ApprovalDecision.APPROVE, "abc123", ""),
    ("/REJECT abc123 not safe", ApprovalDecision.REJECT, "abc123", "not safe"),
    ("/modify abc123 only touch the parser", ApprovalDecision.MODIFY, "abc123", "only touch the parser"),
    ("Looks fine to me.\n  /approve job-7  \nthanks", ApprovalDecision.APPROVE, "job-7", ""),
])
def test_parse_commands(comment, decision, job_id, text):
    command = parse_approval_command(comment)
    assert command.decision == decision
    assert command.job_id == job_id
    assert command.text == text


@pytest.mark.parametrize("comment", ["", "approve abc123", "/approve", "/merge abc123", "please /approve abc"])
def test_non_commands(comment):
    assert parse_approval_command(comment) is None


@pytest.fixture
def gate(notifier):
    return ApprovalGate(notifier, DispatchConfig(approval_timeout_ms=60_000, team_recipient="#reviews"))


@pytest.fixture
def supervised_job(make_job):
    return make_job(executor=ExecutorKind.HYBRID, approval_required=True)


async def test_request_notifies_reviewers(gate, notifier, supervised_job):
    await gate.request(supervised_job)

    [(notification_type, recipient, context)] = notifier.sent
    assert notification_type == NotificationType.APPROVAL_REQUEST
    assert recipient == "#reviews"
    assert context.job is supervised_job
    assert "hybrid executor" in context.additional_data["proposed_action"]
    assert context.additional_data["timeout_minutes"] == 1
    assert gate.pending_job_ids == {supervised_job.id}


async def test_only_first_response_counts(gate, supervised_job):
    await gate.request(supervised_job)
    waiter = asyncio.create_task(gate.wait(supervised_job.id))

    assert gate.respond(supervised_job.id, ApprovalDecision.APPROVE, responder="alice")
    assert not gate.respond(supervised_job.id, ApprovalDecision.REJECT, "too late", responder="bob")

    response = await waiter
    assert response.decision == ApprovalDecision.APPROVE
    assert response.responder == "alice"
    assert gate.pending_job_ids == set()
    assert not gate.respond(supervised_job.id, ApprovalDecision.MODIFY, "after close")


async def test_comment_reply(gate, supervised_job):
    await gate.request(supervised_job)

    response = gate.handle_comment(f"/modify {supervised_job.id} keep the public API", responder="carol")
    assert response.decision == ApprovalDecision.MODIFY
    assert response.text == "keep the public API"
    assert gate.handle_comment("just a regular comment") is None


async def test_unknown_job_is_refused(gate):
    assert not gate.respond("missing", ApprovalDecision.APPROVE)
    assert gate.handle_comment("/approve missing") is None


async def test_timeout_closes_request(gate, supervised_job):
    await gate.request(supervised_job)

    with pytest.raises(ApprovalTimeoutError) as excinfo:
        await gate.wait(supervised_job.id, timeout=0.05)

    assert excinfo.value.job_id == supervised_job.id
    assert not gate.respond(supervised_job.id, ApprovalDecision.APPROVE)


async def test_cancel_closes_request(gate, supervised_job):
    await gate.request(supervised_job)

    assert gate.cancel(supervised_job.id) is True
    assert gate.cancel(supervised_job.id) is False
    assert not gate.respond(supervised_job.id, ApprovalDecision.APPROVE)


async def test_duplicate_request_is_ignored(gate, notifier, supervised_job):
    await gate.request(supervised_job)
    await gate.request(supervised_job)
    assert len(notifier.sent) == 1
