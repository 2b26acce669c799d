"""Main entry point for the issue dispatch pipeline."""

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from issue_dispatch.api.github_client import GitHubAPIClient
from issue_dispatch.api.jira_client import JiraAPIClient
from issue_dispatch.api.sentry_client import SentryAPIClient
from issue_dispatch.api.webhook_receiver import WebhookReceiver
from issue_dispatch.approval import ApprovalGate
from issue_dispatch.audit import AuditLog, DispatchAnalytics
from issue_dispatch.config.settings import SystemConfig
from issue_dispatch.database import init_database
from issue_dispatch.dispatch import Dispatcher
from issue_dispatch.evaluation import IssueAssessor, ResolutionHistory, RuleEngine
from issue_dispatch.exceptions import ConfigurationError
from issue_dispatch.execution import (
    AutonomousExecutor, HumanExecutor, HybridExecutor, build_default_registry
)
from issue_dispatch.health import (
    DatabaseHealthCheck, DispatcherHealthCheck, HealthServer, SourcesHealthCheck
)
from issue_dispatch.models.common import ExecutorKind, SourceType
from issue_dispatch.notifications import NotificationManager
from issue_dispatch.sources import (
    EventDeduplicator, GitHubAdapter, JiraAdapter, MonitoringAdapter, PollingSource,
    SentryAdapter, SourcePoller
)
from issue_dispatch.utils.logging import get_logger, setup_logging


def load_config(config_path: Optional[str] = None) -> SystemConfig:
    """Load and validate configuration.

    Raises:
        ConfigurationError: If validation reports any error
    """
    config = SystemConfig.from_file(config_path) if config_path else SystemConfig.from_env()
    errors = config.validate()
    if errors:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
    return config


class DispatchSystem:
    """Wires the pipeline together and runs it on one event loop."""

    def __init__(self, config: SystemConfig, enable_webhooks: bool = True, enable_polling: bool = True):
        self.config = config
        setup_logging(self.config.logging)
        self.logger = get_logger(__name__)

        self.enable_webhooks = enable_webhooks and self.config.webhooks.enabled
        self.enable_polling = enable_polling and self.config.sources.polling_enabled
        self._stop_event: Optional[asyncio.Event] = None

        self.db_manager = init_database(self.config.database)
        self.audit_log = AuditLog(self.db_manager)
        self.notification_manager = NotificationManager(self.config.notifications)
        self._initialize_api_clients()

        self.deduplicator = EventDeduplicator(self.db_manager)
        self.deduplicator.load_recent()
        self.approval_gate = ApprovalGate(self.notification_manager, self.config.dispatch)

        registry = build_default_registry(self.config.dispatch, self.github_client)
        autonomous = AutonomousExecutor(registry, self.config.dispatch)
        executors = {
            ExecutorKind.CLAUDE_CODE: autonomous,
            ExecutorKind.HYBRID: HybridExecutor(autonomous),
            ExecutorKind.HUMAN: HumanExecutor(
                notification_manager=self.notification_manager,
                github_client=self.github_client,
                jira_client=self.jira_client,
                config=self.config.dispatch,
            ),
        }

        self.dispatcher = Dispatcher(
            executors=executors,
            approval_gate=self.approval_gate,
            config=self.config,
            assessor=IssueAssessor(self.config.scoring, history=ResolutionHistory()),
            rule_engine=RuleEngine(),
            audit_log=self.audit_log,
            deduplicator=self.deduplicator,
            notification_manager=self.notification_manager,
            github_client=self.github_client,
        )

        self.adapters = {
            SourceType.GITHUB: GitHubAdapter(),
            SourceType.SENTRY: SentryAdapter(),
            SourceType.JIRA: JiraAdapter(),
            SourceType.MONITORING: MonitoringAdapter(),
        }
        self.poller = SourcePoller(
            self.dispatcher.evaluate_and_dispatch,
            audit_log=self.audit_log,
            notification_manager=self.notification_manager,
            config=self.config.sources,
            dispatch_config=self.config.dispatch,
        )
        self._register_polling_sources()

        self.webhook_receiver = WebhookReceiver(
            self.adapters,
            self.dispatcher.evaluate_and_dispatch,
            approval_gate=self.approval_gate,
            dispatcher=self.dispatcher,
            poller=self.poller,
            api_config=self.config.api,
            config=self.config.webhooks,
        )

        self.health_server = HealthServer(self.config.health, metrics_provider=self.get_metrics)
        self.health_server.add_health_check("database", DatabaseHealthCheck(self.db_manager))
        self.health_server.add_health_check("dispatcher", DispatcherHealthCheck(self.dispatcher))
        self.health_server.add_health_check("sources", SourcesHealthCheck(self.poller))

    def _initialize_api_clients(self) -> None:
        api = self.config.api
        self.github_client = None
        self.jira_client = None
        self.sentry_client = None

        if api.github_token:
            self.github_client = GitHubAPIClient(
                api.github_token,
                rate_limit_requests=api.rate_limit_requests,
                rate_limit_window=api.rate_limit_window,
                timeout=api.request_timeout,
            )
        if api.jira_url and api.jira_username and api.jira_token:
            self.jira_client = JiraAPIClient(api.jira_url, api.jira_username, api.jira_token,
                                             timeout=api.request_timeout)
        if api.sentry_token and api.sentry_organization and api.sentry_project:
            self.sentry_client = SentryAPIClient(api.sentry_token, api.sentry_organization,
                                                 api.sentry_project, base_url=api.sentry_url,
                                                 timeout=api.request_timeout)

        configured = [name for name, client in (('github', self.github_client), ('jira', self.jira_client),
                                                ('sentry', self.sentry_client)) if client]
        self.logger.info(f"API clients configured: {', '.join(configured) or 'none'}")

    def _register_polling_sources(self) -> None:
        sources_config = self.config.sources

        if self.github_client:
            for full_name in sources_config.github_repositories:
                self.poller.add_source(PollingSource(
                    f"github:{full_name}",
                    self.adapters[SourceType.GITHUB],
                    lambda since, name=full_name: asyncio.to_thread(
                        self.github_client.list_issues_since, name, since),
                    sources_config,
                ))
        if self.jira_client:
            for project in sources_config.jira_projects:
                self.poller.add_source(PollingSource(
                    f"jira:{project}",
                    self.adapters[SourceType.JIRA],
                    lambda since, key=project: asyncio.to_thread(
                        self.jira_client.list_issues_since, key, since),
                    sources_config,
                ))
        if self.sentry_client:
            self.poller.add_source(PollingSource(
                f"sentry:{self.sentry_client.project}",
                self.adapters[SourceType.SENTRY],
                lambda since: asyncio.to_thread(self.sentry_client.list_issues_since, since),
                sources_config,
            ))

    def get_metrics(self) -> dict:
        status = self.dispatcher.status()
        return {
            "queue_depth": status["queue_depth"],
            "active_jobs": status["active_jobs"],
            "available_slots": status["available_slots"],
            "pending_approvals": status["pending_approvals"],
            "jobs_by_status": status["jobs_by_status"],
            "sources": self.poller.status(),
            "notifications": self.notification_manager.get_notification_stats(),
        }

    async def run(self) -> None:
        """Run until SIGINT or SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                # Windows event loops cannot install signal handlers
                pass

        self.logger.info("Starting issue dispatch pipeline...")
        self.notification_manager.start()
        await self.dispatcher.recover_interrupted_jobs()

        tasks: List[asyncio.Task] = [asyncio.create_task(self.dispatcher.run(), name="dispatcher")]
        if self.enable_polling and self.poller.sources:
            tasks.append(asyncio.create_task(self.poller.run(), name="poller"))
        if self.enable_webhooks:
            tasks.append(asyncio.create_task(self.webhook_receiver.serve(), name="webhooks"))
        if self.config.health.enabled:
            tasks.append(asyncio.create_task(self.health_server.serve(), name="health"))
        self.logger.info(f"Pipeline started with {len(tasks)} services")

        try:
            await self._stop_event.wait()
        finally:
            await self.stop(tasks)

    def _signal_handler(self, signum) -> None:
        self.logger.info(f"Received signal {signum}, shutting down...")
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self, tasks: List[asyncio.Task]) -> None:
        self.logger.info("Stopping issue dispatch pipeline...")
        self.poller.stop()
        self.webhook_receiver.stop()
        self.health_server.stop()
        await self.dispatcher.shutdown()
        await self.notification_manager.shutdown()

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.db_manager.close()
        self.logger.info("Issue dispatch pipeline stopped")


def main():
    """Console entry point for ``issue-dispatch``."""
    parser = argparse.ArgumentParser(description="Autonomous issue dispatch pipeline")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--no-webhooks", action="store_true", help="Do not start the webhook receiver")
    parser.add_argument("--no-polling", action="store_true", help="Do not poll issue sources")
    args = parser.parse_args()

    load_dotenv()
    try:
        config = load_config(args.config)
        system = DispatchSystem(config, enable_webhooks=not args.no_webhooks,
                                enable_polling=not args.no_polling)
        asyncio.run(system.run())
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        print(f"System error: {e}", file=sys.stderr)
        sys.exit(1)


def report_main():
    """Console entry point for ``issue-dispatch-report``."""
    parser = argparse.ArgumentParser(description="Print a dispatch analytics report")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--days", type=int, default=7, help="Days to cover (default: 7)")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    load_dotenv()
    config = SystemConfig.from_file(args.config) if args.config else SystemConfig.from_env()
    setup_logging(config.logging)
    report = DispatchAnalytics(init_database(config.database)).generate_report(days_back=args.days)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return

    print(f"Dispatch report {report.period_start:%Y-%m-%d} .. {report.period_end:%Y-%m-%d}")
    print(f"  Jobs by status:   {report.jobs_by_status or 'none'}")
    print(f"  Executor mix:     {report.executor_mix or 'none'}")
    rate = f"{report.autonomous_success_rate:.0%}" if report.autonomous_success_rate is not None else "n/a"
    print(f"  Autonomous success rate: {rate}")
    mean = f"{report.mean_execution_seconds}s" if report.mean_execution_seconds is not None else "n/a"
    print(f"  Mean execution time:     {mean}")
    print(f"  Approval outcomes: {report.approval_outcomes or 'none'}")
    if report.disabled_sources:
        print(f"  Disabled sources: {', '.join(report.disabled_sources)}")
    for recommendation in report.recommendations:
        print(f"  - {recommendation}")


if __name__ == "__main__":
    main()
