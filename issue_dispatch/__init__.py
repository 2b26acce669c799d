"""Autonomous issue dispatch pipeline.

Detects issues from GitHub, Sentry, Jira and monitoring alerts, evaluates
whether an autonomous agent should handle them, dispatches them to an
executor and records every outcome in an append-only audit log.
"""

__version__ = "1.0.0"
