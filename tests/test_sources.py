"""Tests for source adapters, deduplication and polling."""

from datetime import datetime, timedelta, timezone

import pytest

from issue_dispatch.config.settings import SourceConfig
from issue_dispatch.exceptions import AdapterError, SourcePollError
from issue_dispatch.models.common import IssueType, Priority, SourceType
from issue_dispatch.notifications.models import NotificationType
from issue_dispatch.sources import (
    EventDeduplicator, GitHubAdapter, JiraAdapter, MonitoringAdapter, PollingSource, SentryAdapter,
    SourcePoller
)
from issue_dispatch.sources.base import parse_timestamp


def github_issue(number=42, title="Fix typo in README", labels=("documentation",), **extra):
    data = {
        "id": 900000 + number,
        "number": number,
        "title": title,
        "body": "The word 'recieve' is misspelled.",
        "labels": [{"name": name} for name in labels],
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-01T11:00:00Z",
        "html_url": f"https://github.com/acme/widgets/issues/{number}",
        "repository_url": "https://api.github.com/repos/acme/widgets",
    }
    data.update(extra)
    return data


class TestGitHubAdapter:

    def test_webhook_event(self):
        payload = {"action": "opened", "issue": github_issue(), "repository": {"full_name": "acme/widgets"}}
        [issue] = GitHubAdapter().normalize(payload)

        assert issue.id == "github:acme/widgets#42"
        assert issue.provider_id == "900042"
        assert issue.source_type == SourceType.GITHUB
        assert issue.repository == "acme/widgets"
        assert issue.labels == frozenset({"documentation"})
        assert issue.type == IssueType.DOCUMENTATION
        assert issue.url == "https://github.com/acme/widgets/issues/42"
        assert issue.created_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert issue.raw_data["number"] == 42

    def test_ignored_action(self):
        payload = {"action": "closed", "issue": github_issue(), "repository": {"full_name": "acme/widgets"}}
        assert GitHubAdapter().normalize(payload) == []

    @pytest.mark.parametrize("action", ["edited", "labeled"])
    def test_edits_to_known_issues_are_ignored(self, action):
        payload = {"action": action, "issue": github_issue(), "repository": {"full_name": "acme/widgets"}}
        assert GitHubAdapter().normalize(payload) == []

    def test_reopened_issue_is_a_new_event(self):
        dedup = EventDeduplicator()
        repository = {"full_name": "acme/widgets"}
        [opened] = GitHubAdapter().normalize({"action": "opened", "issue": github_issue(), "repository": repository})
        [reopened] = GitHubAdapter().normalize({
            "action": "reopened", "repository": repository,
            "issue": github_issue(updated_at="2024-05-03T09:00:00Z"),
        })
        [polled] = GitHubAdapter().normalize([github_issue()])

        assert reopened.id == opened.id
        assert reopened.provider_id == "900042:reopened:2024-05-03T09:00:00Z"
        assert dedup.check_and_mark(opened) is True
        assert dedup.check_and_mark(reopened) is True
        assert dedup.check_and_mark(polled) is False

    def test_polled_list_skips_pull_requests(self):
        payload = [github_issue(1), github_issue(2, pull_request={"url": "https://example"})]
        issues = GitHubAdapter().normalize(payload)
        assert [issue.id for issue in issues] == ["github:acme/widgets#1"]

    def test_priority_from_labels(self):
        [issue] = GitHubAdapter().normalize([github_issue(labels=("bug", "p0"), title="App crashes")])
        assert issue.priority == Priority.CRITICAL
        assert issue.type == IssueType.BUG

    def test_missing_issue_is_malformed(self):
        with pytest.raises(AdapterError):
            GitHubAdapter().normalize({"action": "opened", "repository": {"full_name": "acme/widgets"}})

    def test_blank_title_is_malformed(self):
        with pytest.raises(AdapterError):
            GitHubAdapter().normalize([github_issue(title="   ")])


class TestSentryAdapter:

    def test_webhook_issue(self):
        payload = {"action": "created", "data": {"issue": {
            "id": "4711",
            "title": "ZeroDivisionError: division by zero",
            "culprit": "app.billing in compute_total",
            "level": "fatal",
            "project": {"slug": "billing"},
            "firstSeen": "2024-05-01T10:00:00.000000Z",
            "permalink": "https://sentry.io/organizations/acme/issues/4711/",
        }}}
        [issue] = SentryAdapter().normalize(payload)

        assert issue.id == "sentry:4711"
        assert issue.priority == Priority.CRITICAL
        assert issue.type == IssueType.BUG
        assert issue.labels == frozenset({"level:fatal", "critical"})
        assert issue.repository == "billing"
        assert "Culprit: app.billing in compute_total" in issue.body

    @pytest.mark.parametrize("level,priority", [
        ("error", Priority.HIGH), ("warning", Priority.MEDIUM), ("info", Priority.LOW), ("", Priority.LOW),
    ])
    def test_level_mapping(self, level, priority):
        [issue] = SentryAdapter().normalize([{"id": "1", "title": "Boom", "level": level}])
        assert issue.priority == priority

    def test_webhook_without_issue(self):
        with pytest.raises(AdapterError):
            SentryAdapter().normalize({"data": {"something": "else"}})

    def test_metadata_must_be_an_object(self):
        with pytest.raises(AdapterError, match="metadata"):
            SentryAdapter().normalize([{"id": "1", "title": "Boom", "metadata": ["ZeroDivisionError"]}])


class TestMonitoringAdapter:

    def payload(self, status="firing"):
        return {
            "status": status,
            "externalURL": "https://alertmanager.example",
            "alerts": [
                {
                    "status": "firing",
                    "labels": {"alertname": "HighErrorRate", "severity": "critical",
                               "service": "checkout", "env": "production"},
                    "annotations": {"summary": "Error rate above 5%", "description": "5xx spike"},
                    "startsAt": "2024-05-01T10:00:00Z",
                    "fingerprint": "abc123",
                },
                {
                    "status": "resolved",
                    "labels": {"alertname": "DiskFull", "severity": "warning"},
                    "startsAt": "2024-05-01T09:00:00Z",
                    "fingerprint": "def456",
                },
            ],
        }

    def test_only_firing_alerts(self):
        [issue] = MonitoringAdapter().normalize(self.payload())

        assert issue.id == "monitoring:abc123:2024-05-01T10:00:00Z"
        assert issue.title == "[checkout] Error rate above 5%"
        assert issue.priority == Priority.CRITICAL
        assert issue.labels == frozenset({"alert", "critical", "production"})
        assert issue.url == "https://alertmanager.example"

    def test_requires_alerts(self):
        with pytest.raises(AdapterError):
            MonitoringAdapter().normalize({"status": "firing"})

    @pytest.mark.parametrize("field", ["labels", "annotations"])
    def test_alert_fields_must_be_objects(self, field):
        payload = self.payload()
        payload["alerts"][0][field] = "severity=critical"
        with pytest.raises(AdapterError, match=field):
            MonitoringAdapter().normalize(payload)


class TestJiraAdapter:

    def issue(self):
        return {
            "key": "OPS-12",
            "self": "https://acme.atlassian.net/rest/api/2/issue/10012",
            "fields": {
                "summary": "Update the deployment docs",
                "description": "Steps are out of date.",
                "labels": ["docs"],
                "priority": {"name": "Major"},
                "issuetype": {"name": "Documentation"},
                "project": {"key": "OPS"},
                "created": "2024-05-01T10:00:00.000+0000",
            },
        }

    def test_issue_created_event(self):
        [issue] = JiraAdapter().normalize({"webhookEvent": "jira:issue_created", "issue": self.issue()})

        assert issue.id == "jira:OPS-12"
        assert issue.provider_id == "OPS-12"
        assert issue.priority == Priority.HIGH
        assert issue.type == IssueType.DOCUMENTATION
        assert issue.repository == "OPS"
        assert issue.url == "https://acme.atlassian.net/browse/OPS-12"
        assert issue.created_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_other_events_ignored(self):
        assert JiraAdapter().normalize({"webhookEvent": "jira:issue_updated", "issue": self.issue()}) == []


def test_parse_timestamp_formats():
    expected = datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:00:00Z") == expected
    assert parse_timestamp("2024-05-01T10:00:00.000+0000") == expected
    assert parse_timestamp(expected.timestamp()) == expected


class TestEventDeduplicator:

    def test_repeats_are_rejected(self, make_issue):
        dedup = EventDeduplicator()
        issue = make_issue(provider_id="evt-1")
        assert dedup.check_and_mark(issue) is True
        assert dedup.check_and_mark(issue) is False
        assert dedup.is_seen("github", "evt-1")

    def test_key_is_source_and_provider_id(self, make_issue):
        dedup = EventDeduplicator()
        assert dedup.check_and_mark(make_issue(provider_id="1", source_type=SourceType.GITHUB))
        assert dedup.check_and_mark(make_issue(provider_id="1", source_type=SourceType.SENTRY))

    def test_persisted_keys_survive_restart(self, make_issue, db_manager):
        issue = make_issue(provider_id="evt-2")
        assert EventDeduplicator(db_manager).check_and_mark(issue) is True

        restarted = EventDeduplicator(db_manager)
        assert restarted.check_and_mark(issue) is False

        warmed = EventDeduplicator(db_manager)
        assert warmed.load_recent() == 1
        assert warmed.is_seen("github", "evt-2")

    def test_bounded_memory(self, make_issue):
        dedup = EventDeduplicator(max_entries=2)
        for provider_id in ("a", "b", "c"):
            dedup.check_and_mark(make_issue(provider_id=provider_id))
        assert len(dedup) == 2
        assert not dedup.is_seen("github", "a")


class RecordingAudit:

    def __init__(self):
        self.events = []

    def record(self, event_type, job=None, **payload):
        self.events.append((event_type, payload))

    @property
    def types(self):
        return [event_type for event_type, _ in self.events]


def failing_fetch(calls):
    async def fetch(since):
        calls.append(since)
        raise ConnectionError("provider unavailable")
    return fetch


class TestPolling:

    config = SourceConfig(max_consecutive_errors=3, poll_retry_attempts=1, poll_timeout=1.0)

    async def test_watermark_advances_to_newest_item(self):
        seen_since = []

        async def fetch(since):
            seen_since.append(since)
            return [github_issue(1, updated_at="2030-01-01T00:00:00Z"),
                    github_issue(2, updated_at="2030-01-02T00:00:00Z")]

        source = PollingSource("github:acme/widgets", GitHubAdapter(), fetch, self.config)
        start = source.last_checked
        issues = await source.poll()

        assert len(issues) == 2
        assert seen_since == [start]
        assert source.last_checked == datetime(2030, 1, 2, tzinfo=timezone.utc)

    async def test_watermark_never_moves_backwards(self):
        async def fetch(since):
            return [github_issue(1, updated_at="2000-01-01T00:00:00Z")]

        source = PollingSource("github:acme/widgets", GitHubAdapter(), fetch, self.config)
        before = source.last_checked
        await source.poll()
        assert source.last_checked == before

    async def test_empty_poll_advances_to_poll_start(self):
        async def fetch(since):
            return []

        source = PollingSource("github:acme/widgets", GitHubAdapter(), fetch, self.config)
        before = source.last_checked
        await source.poll()
        assert source.last_checked > before + timedelta(minutes=30)

    async def test_source_disabled_after_consecutive_errors(self, notifier):
        calls = []
        audit = RecordingAudit()
        poller = SourcePoller(lambda issue: None, audit_log=audit, notification_manager=notifier,
                              config=self.config)
        source = PollingSource("github:acme/widgets", GitHubAdapter(), failing_fetch(calls), self.config)
        poller.add_source(source)

        for _ in range(3):
            await poller.poll_once()

        assert source.enabled is False
        assert source.consecutive_errors == 3
        assert "provider unavailable" in source.last_error
        assert audit.types == ["source_disabled", "operator_alert"]
        assert notifier.types == [NotificationType.OPERATOR_ALERT]

        await poller.poll_once()
        assert len(calls) == 3

        assert poller.enable("github:acme/widgets") is True
        assert source.enabled and source.consecutive_errors == 0
        assert audit.types[-1] == "source_enabled"
        assert poller.enable("unknown") is False

    async def test_success_resets_error_count(self):
        attempts = []

        async def flaky(since):
            attempts.append(since)
            if len(attempts) == 1:
                raise ConnectionError("blip")
            return []

        source = PollingSource("sentry:billing", SentryAdapter(), flaky, self.config)
        with pytest.raises(SourcePollError):
            await source.poll()
        assert source.consecutive_errors == 1

        await source.poll()
        assert source.consecutive_errors == 0
        assert source.enabled

    async def test_malformed_payload_counts_as_error(self):
        async def fetch(since):
            return {"not": "a list"}

        source = PollingSource("monitoring", MonitoringAdapter(), fetch, self.config)
        with pytest.raises(SourcePollError):
            await source.poll()
        assert source.consecutive_errors == 1

    async def test_poll_once_ingests_every_issue(self):
        ingested = []

        async def ingest(issue):
            ingested.append(issue.id)

        async def fetch(since):
            return [github_issue(1), github_issue(2)]

        poller = SourcePoller(ingest, config=self.config)
        poller.add_source(PollingSource("github:acme/widgets", GitHubAdapter(), fetch, self.config))
        assert await poller.poll_once() == 2
        assert ingested == ["github:acme/widgets#1", "github:acme/widgets#2"]
        assert poller.status()[0]["enabled"] is True
