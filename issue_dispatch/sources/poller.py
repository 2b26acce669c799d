"""Polling fallback for issue sources."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from issue_dispatch.config.settings import DispatchConfig, SourceConfig
from issue_dispatch.exceptions import SourcePollError
from issue_dispatch.models.common import Issue, utcnow
from issue_dispatch.notifications.models import NotificationContext, NotificationType
from issue_dispatch.utils.logging import StructuredLogger
from issue_dispatch.utils.resilience import RetryConfig, with_retry, with_timeout
from .base import IssueSourceAdapter, parse_timestamp

Fetch = Callable[[Optional[datetime]], Awaitable[Any]]


def _item_timestamp(issue: Issue) -> datetime:
    raw = issue.raw_data or {}
    fields = raw.get('fields') if isinstance(raw.get('fields'), dict) else {}
    for value in (raw.get('updated_at'), raw.get('lastSeen'), fields.get('updated')):
        if value:
            return parse_timestamp(value)
    return issue.created_at


class PollingSource:
    """An adapter paired with a fetch call and its polling health.

    The fetch call is wrapped with retries and a timeout once, at
    construction. After ``max_consecutive_errors`` failed polls in a row the
    source disables itself and stays disabled until ``enable()`` is called.
    """

    def __init__(self, name: str, adapter: IssueSourceAdapter, fetch: Fetch,
                 config: Optional[SourceConfig] = None):
        self.name = name
        self.adapter = adapter
        self.config = config or SourceConfig()
        self.logger = logging.getLogger(f"{__name__}.{name}")

        retry_config = RetryConfig(
            max_attempts=max(1, self.config.poll_retry_attempts),
            base_delay=1.0,
            max_delay=10.0,
        )
        self._fetch = with_retry(with_timeout(fetch, self.config.poll_timeout), retry_config)

        self.last_checked: datetime = utcnow() - timedelta(hours=self.config.initial_lookback_hours)
        self.consecutive_errors = 0
        self.enabled = True
        self.last_error: Optional[str] = None

    @property
    def source_type(self):
        return self.adapter.source_type

    async def poll(self) -> List[Issue]:
        """Fetch and normalize everything since the watermark.

        Raises:
            SourcePollError: If fetching or parsing failed; the error counter
                has already been updated and the source may now be disabled
        """
        if not self.enabled:
            return []

        started = utcnow()
        try:
            payload = await self._fetch(self.last_checked)
            issues = self.adapter.normalize(payload)
        except Exception as e:
            self._record_failure(e)
            raise SourcePollError(self.name, str(e) or e.__class__.__name__) from e

        self.consecutive_errors = 0
        self.last_error = None
        newest = max((_item_timestamp(issue) for issue in issues), default=started)
        self.last_checked = max(self.last_checked, newest)
        return issues

    def enable(self) -> None:
        """Re-enable a disabled source and reset its error count."""
        self.enabled = True
        self.consecutive_errors = 0
        self.last_error = None
        self.logger.info(f"Source {self.name} enabled")

    def status(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'source_type': self.source_type.value,
            'enabled': self.enabled,
            'consecutive_errors': self.consecutive_errors,
            'last_checked': self.last_checked.isoformat(),
            'last_error': self.last_error,
        }

    def _record_failure(self, error: Exception) -> None:
        self.consecutive_errors += 1
        self.last_error = str(error) or error.__class__.__name__
        self.logger.warning(
            f"Poll of {self.name} failed ({self.consecutive_errors}/{self.config.max_consecutive_errors}): "
            f"{self.last_error}"
        )
        if self.consecutive_errors >= self.config.max_consecutive_errors:
            self.enabled = False
            self.logger.error(f"Source {self.name} disabled after {self.consecutive_errors} consecutive errors")


class SourcePoller:
    """Polls every registered source on an interval and ingests what it finds."""

    def __init__(self, ingest: Callable[[Issue], Awaitable[Any]], audit_log=None,
                 notification_manager=None, config: Optional[SourceConfig] = None,
                 dispatch_config: Optional[DispatchConfig] = None):
        """Initialize the poller.

        Args:
            ingest: Coroutine taking one issue, normally ``Dispatcher.evaluate_and_dispatch``
            audit_log: Audit log for source status events
            notification_manager: Used to alert operators when a source is disabled
            config: Polling configuration
            dispatch_config: Supplies the operator recipient
        """
        self.ingest = ingest
        self.audit_log = audit_log
        self.notification_manager = notification_manager
        self.config = config or SourceConfig()
        self.dispatch_config = dispatch_config or DispatchConfig()
        self.sources: Dict[str, PollingSource] = {}
        self.logger = logging.getLogger(__name__)
        self.structured_logger = StructuredLogger(__name__)
        self._running = False

    def add_source(self, source: PollingSource) -> None:
        self.sources[source.name] = source

    def status(self) -> List[Dict[str, Any]]:
        return [source.status() for source in self.sources.values()]

    def enable(self, name: str) -> bool:
        source = self.sources.get(name)
        if source is None:
            return False
        source.enable()
        self.structured_logger.log_source_status(name, True, 0)
        if self.audit_log is not None:
            self.audit_log.record('source_enabled', source=name, source_type=source.source_type.value)
        return True

    async def poll_once(self) -> int:
        """Poll each enabled source once.

        Returns:
            Number of issues handed to ``ingest``
        """
        ingested = 0
        for source in list(self.sources.values()):
            if not source.enabled:
                continue
            try:
                issues = await source.poll()
            except SourcePollError as e:
                if not source.enabled:
                    await self._on_disabled(source, e)
                continue

            for issue in issues:
                try:
                    await self.ingest(issue)
                    ingested += 1
                except Exception as e:
                    self.logger.error(f"Failed to ingest {issue.id} from {source.name}: {e}", exc_info=True)
        return ingested

    async def run(self) -> None:
        self._running = True
        self.logger.info(f"Polling {len(self.sources)} sources every {self.config.poll_interval}s")
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                self.logger.error(f"Error in polling loop: {e}", exc_info=True)
            await asyncio.sleep(self.config.poll_interval)

    def stop(self) -> None:
        self._running = False

    async def _on_disabled(self, source: PollingSource, error: SourcePollError) -> None:
        self.structured_logger.log_source_status(source.name, False, source.consecutive_errors,
                                                 error=source.last_error)
        if self.audit_log is not None:
            self.audit_log.record('source_disabled', source=source.name,
                                  source_type=source.source_type.value,
                                  consecutive_errors=source.consecutive_errors)
            self.audit_log.record('operator_alert', source=source.name,
                                  source_type=source.source_type.value,
                                  reason='source disabled', error=str(error))

        if self.notification_manager is not None:
            context = NotificationContext(additional_data={
                'alert_title': f"Issue source {source.name} disabled",
                'alert_message': (f"{source.consecutive_errors} consecutive polling errors. "
                                  f"Re-enable the source once the cause is fixed."),
                'alert_details': source.last_error or '',
            })
            try:
                await self.notification_manager.send_notification(
                    NotificationType.OPERATOR_ALERT, self.dispatch_config.operator_recipient, context
                )
            except Exception as e:
                self.logger.error(f"Failed to alert operators about {source.name}: {e}")
