"""Configuration settings and environment management.

The configuration tree is built once at startup and handed to every
component constructor. All sections are frozen dataclasses.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ('1', 'true', 'yes')


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, '')
    return tuple(item.strip() for item in raw.split(',') if item.strip())


@dataclass(frozen=True)
class DatabaseConfig:
    """Audit/dedup storage configuration."""
    url: str = "sqlite:///issue_dispatch.db"
    echo: bool = False


@dataclass(frozen=True)
class APIConfig:
    """External API configuration."""
    github_token: str = ""
    github_webhook_secret: str = ""
    sentry_token: str = ""
    sentry_url: str = "https://sentry.io/api/0"
    sentry_organization: str = ""
    sentry_project: str = ""
    sentry_webhook_secret: str = ""
    jira_url: str = ""
    jira_username: str = ""
    jira_token: str = ""
    jira_webhook_secret: str = ""
    monitoring_webhook_secret: str = ""
    rate_limit_requests: int = 5000
    rate_limit_window: int = 3600  # seconds
    request_timeout: int = 30


@dataclass(frozen=True)
class SourceConfig:
    """Issue source polling configuration."""
    polling_enabled: bool = True
    poll_interval: float = 60.0  # seconds
    poll_timeout: float = 30.0  # seconds
    poll_retry_attempts: int = 2
    max_consecutive_errors: int = 5
    initial_lookback_hours: int = 1
    github_repositories: Tuple[str, ...] = ()  # owner/repo
    jira_projects: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DispatchConfig:
    """Dispatcher, queue and executor configuration."""
    max_concurrent_jobs: int = 3
    queue_poll_interval: float = 5.0  # seconds
    approval_timeout_ms: int = 3_600_000  # 1 hour
    step_timeout_seconds: float = 600.0
    workspace_root: str = "/tmp/issue-dispatch/workspaces"
    branch_prefix: str = "auto"
    step_commands: Mapping[str, str] = field(default_factory=dict)
    operator_recipient: str = "#dispatch-ops"
    team_recipient: str = "#dispatch-team"
    post_outcome_comments: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'step_commands', _freeze(self.step_commands))


# Factor names the assessor computes for each weight map
SCORING_FACTORS = {
    'complexity_weights': ('textComplexity', 'technicalDepth', 'scopeSize', 'dependencies'),
    'confidence_weights': ('patternMatch', 'similarityScore', 'capabilityMatch', 'contextAvailable'),
    'risk_weights': ('severityKeywords', 'sensitiveLabels', 'testAbsence', 'priority'),
}


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and level thresholds for the assessor.

    The weights are heuristics; tune them here rather than in code.
    """
    complexity_weights: Mapping[str, float] = field(default_factory=lambda: {
        'textComplexity': 0.2,
        'technicalDepth': 0.4,
        'scopeSize': 0.3,
        'dependencies': 0.1,
    })
    confidence_weights: Mapping[str, float] = field(default_factory=lambda: {
        'patternMatch': 0.3,
        'similarityScore': 0.3,
        'capabilityMatch': 0.3,
        'contextAvailable': 0.1,
    })
    risk_weights: Mapping[str, float] = field(default_factory=lambda: {
        'severityKeywords': 0.4,
        'sensitiveLabels': 0.3,
        'testAbsence': 0.2,
        'priority': 0.1,
    })
    # (low_below, medium_below) bands
    complexity_thresholds: Tuple[float, float] = (0.3, 0.7)
    confidence_thresholds: Tuple[float, float] = (0.4, 0.7)
    risk_thresholds: Tuple[float, float] = (0.3, 0.7)
    similarity_threshold: float = 0.6
    default_pattern_confidence: float = 0.1
    default_similarity: float = 0.2

    def __post_init__(self):
        for name in ('complexity_weights', 'confidence_weights', 'risk_weights'):
            object.__setattr__(self, name, _freeze(getattr(self, name)))


@dataclass(frozen=True)
class NotificationConfig:
    """Notification system configuration."""
    enabled: bool = True
    max_retries: int = 3
    retry_delay: int = 60  # seconds

    email_enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from_address: str = ""
    email_from_name: str = "Issue Dispatch"
    email_default_recipient: str = ""

    slack_enabled: bool = True
    slack_bot_token: str = ""
    slack_webhook_url: str = ""
    slack_default_channel: str = "#dispatch-approvals"


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass(frozen=True)
class WebhookConfig:
    """Webhook listener configuration."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class HealthConfig:
    """Health check server configuration."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000


_SECTIONS = {
    'database': DatabaseConfig,
    'api': APIConfig,
    'sources': SourceConfig,
    'dispatch': DispatchConfig,
    'scoring': ScoringConfig,
    'notifications': NotificationConfig,
    'logging': LoggingConfig,
    'webhooks': WebhookConfig,
    'health': HealthConfig,
}


@dataclass(frozen=True)
class SystemConfig:
    """Main system configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api: APIConfig = field(default_factory=APIConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    @classmethod
    def from_env(cls) -> 'SystemConfig':
        """Create configuration from environment variables."""
        step_commands = {}
        for step in ('analyze', 'fix', 'design', 'implement', 'test', 'docs',
                     'update-docs', 'write-tests', 'run-full-test-suite'):
            command = os.getenv(f"STEP_CMD_{step.upper().replace('-', '_')}")
            if command:
                step_commands[step] = command

        return cls(
            database=DatabaseConfig(
                url=os.getenv('DATABASE_URL', DatabaseConfig.url),
                echo=_env_bool('DB_ECHO', False),
            ),
            api=APIConfig(
                github_token=os.getenv('GITHUB_TOKEN', ''),
                github_webhook_secret=os.getenv('GITHUB_WEBHOOK_SECRET', ''),
                sentry_token=os.getenv('SENTRY_TOKEN', ''),
                sentry_url=os.getenv('SENTRY_URL', APIConfig.sentry_url),
                sentry_organization=os.getenv('SENTRY_ORGANIZATION', ''),
                sentry_project=os.getenv('SENTRY_PROJECT', ''),
                sentry_webhook_secret=os.getenv('SENTRY_WEBHOOK_SECRET', ''),
                jira_url=os.getenv('JIRA_URL', ''),
                jira_username=os.getenv('JIRA_USERNAME', ''),
                jira_token=os.getenv('JIRA_TOKEN', ''),
                jira_webhook_secret=os.getenv('JIRA_WEBHOOK_SECRET', ''),
                monitoring_webhook_secret=os.getenv('MONITORING_WEBHOOK_SECRET', ''),
            ),
            sources=SourceConfig(
                polling_enabled=_env_bool('POLLING_ENABLED', True),
                poll_interval=float(os.getenv('SOURCE_POLL_INTERVAL', str(SourceConfig.poll_interval))),
                max_consecutive_errors=int(os.getenv('SOURCE_MAX_CONSECUTIVE_ERRORS',
                                                     str(SourceConfig.max_consecutive_errors))),
                github_repositories=_env_list('GITHUB_REPOSITORIES'),
                jira_projects=_env_list('JIRA_PROJECTS'),
            ),
            dispatch=DispatchConfig(
                max_concurrent_jobs=int(os.getenv('MAX_CONCURRENT_JOBS', str(DispatchConfig.max_concurrent_jobs))),
                queue_poll_interval=float(os.getenv('QUEUE_POLL_INTERVAL', str(DispatchConfig.queue_poll_interval))),
                approval_timeout_ms=int(os.getenv('APPROVAL_TIMEOUT_MS', str(DispatchConfig.approval_timeout_ms))),
                step_timeout_seconds=float(os.getenv('STEP_TIMEOUT_SECONDS',
                                                     str(DispatchConfig.step_timeout_seconds))),
                workspace_root=os.getenv('WORKSPACE_ROOT', DispatchConfig.workspace_root),
                step_commands=step_commands,
                operator_recipient=os.getenv('OPERATOR_RECIPIENT', DispatchConfig.operator_recipient),
                team_recipient=os.getenv('TEAM_RECIPIENT', DispatchConfig.team_recipient),
            ),
            notifications=NotificationConfig(
                enabled=_env_bool('NOTIFICATIONS_ENABLED', True),
                email_enabled=_env_bool('EMAIL_NOTIFICATIONS_ENABLED', False),
                smtp_host=os.getenv('SMTP_HOST', NotificationConfig.smtp_host),
                smtp_port=int(os.getenv('SMTP_PORT', str(NotificationConfig.smtp_port))),
                smtp_username=os.getenv('SMTP_USERNAME', ''),
                smtp_password=os.getenv('SMTP_PASSWORD', ''),
                email_from_address=os.getenv('EMAIL_FROM_ADDRESS', ''),
                email_default_recipient=os.getenv('EMAIL_DEFAULT_RECIPIENT', ''),
                slack_enabled=_env_bool('SLACK_NOTIFICATIONS_ENABLED', True),
                slack_bot_token=os.getenv('SLACK_BOT_TOKEN', ''),
                slack_webhook_url=os.getenv('SLACK_WEBHOOK_URL', ''),
                slack_default_channel=os.getenv('SLACK_DEFAULT_CHANNEL', NotificationConfig.slack_default_channel),
            ),
            logging=LoggingConfig(
                level=os.getenv('LOG_LEVEL', LoggingConfig.level),
                file_path=os.getenv('LOG_FILE_PATH') or None,
            ),
            webhooks=WebhookConfig(
                enabled=_env_bool('WEBHOOKS_ENABLED', True),
                port=int(os.getenv('WEBHOOK_PORT', str(WebhookConfig.port))),
            ),
            health=HealthConfig(
                enabled=_env_bool('HEALTH_ENABLED', True),
                port=int(os.getenv('HEALTH_PORT', str(HealthConfig.port))),
            ),
        )

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> 'SystemConfig':
        """Build configuration from a nested dictionary.

        Unknown sections and keys are ignored with a warning.
        """
        sections = {}
        for section_name, section_cls in _SECTIONS.items():
            values = config_data.get(section_name, {})
            known = {f.name for f in fields(section_cls)}
            kwargs = {}
            for key, value in values.items():
                if key not in known:
                    logging.warning(f"Ignoring unknown configuration key {section_name}.{key}")
                    continue
                if isinstance(value, list):
                    value = tuple(value)
                kwargs[key] = value
            sections[section_name] = section_cls(**kwargs)
        return cls(**sections)

    @classmethod
    def from_file(cls, config_path: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        try:
            with open(config_path, 'r') as f:
                config_data = json.load(f)
            return cls.from_dict(config_data)

        except FileNotFoundError:
            logging.warning(f"Configuration file {config_path} not found, using environment")
            return cls.from_env()
        except json.JSONDecodeError as e:
            logging.error(f"Invalid JSON in configuration file {config_path}: {e}")
            return cls.from_env()

    def validate(self) -> List[str]:
        """Validate configuration settings.

        Returns:
            List of human-readable errors, empty when the configuration is usable
        """
        errors = []

        if self.dispatch.max_concurrent_jobs < 1:
            errors.append("max_concurrent_jobs must be at least 1")
        if self.dispatch.approval_timeout_ms <= 0:
            errors.append("approval_timeout_ms must be positive")
        if self.dispatch.step_timeout_seconds <= 0:
            errors.append("step_timeout_seconds must be positive")
        if self.sources.max_consecutive_errors < 1:
            errors.append("max_consecutive_errors must be at least 1")
        if self.sources.github_repositories and not self.api.github_token:
            errors.append("GitHub token is required to poll GitHub repositories")
        if self.sources.jira_projects and not (self.api.jira_url and self.api.jira_token):
            errors.append("Jira URL and token are required to poll Jira projects")

        for name, factors in SCORING_FACTORS.items():
            weights = getattr(self.scoring, name)
            missing = sorted(set(factors) - set(weights))
            unknown = sorted(set(weights) - set(factors))
            if missing or unknown:
                errors.append(f"scoring.{name} must define exactly {', '.join(factors)} "
                              f"(missing: {missing}, unknown: {unknown})")
                continue
            total = sum(weights.values())
            if abs(total - 1.0) > 1e-6:
                errors.append(f"scoring.{name} must sum to 1.0 (got {total:.2f})")

        for name in ('complexity_thresholds', 'confidence_thresholds', 'risk_thresholds'):
            thresholds = getattr(self.scoring, name)
            if len(thresholds) != 2 or not 0.0 <= thresholds[0] < thresholds[1] <= 1.0:
                errors.append(f"scoring.{name} must be (low, medium) with 0 <= low < medium <= 1")

        for error in errors:
            logging.error(f"Configuration validation error: {error}")

        return errors

    def as_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly view of the configuration with secrets masked."""
        result = {}
        for section_name in _SECTIONS:
            section = getattr(self, section_name)
            values = {}
            for f in fields(section):
                value = getattr(section, f.name)
                if isinstance(value, Mapping):
                    value = dict(value)
                if any(marker in f.name for marker in ('token', 'secret', 'password')) and value:
                    value = '***'
                values[f.name] = value
            result[section_name] = values
        return result
