"""Logging utilities and configuration."""

import logging
import logging.handlers
import sys
from issue_dispatch.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig) -> None:
    """Set up logging configuration for the entire system."""

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Clear any existing handlers
    root_logger.handlers.clear()

    formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet down chatty client libraries
    for noisy in ('urllib3', 'requests', 'github', 'uvicorn.access'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


class StructuredLogger:
    """Logger emitting ``EVENT=<name> key=value`` lines."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_event(self, level: str, event: str, **kwargs) -> None:
        """Log a structured event with additional context."""
        message = f"EVENT={event}"
        if kwargs:
            context = " ".join(f"{k}={v}" for k, v in kwargs.items() if v is not None)
            if context:
                message = f"{message} {context}"

        log_level = getattr(logging, level.upper())
        self.logger.log(log_level, message)

    def log_job_transition(self, job_id: str, from_status: str, to_status: str, **kwargs) -> None:
        """Log a job state machine transition."""
        self.log_event("INFO", "JOB_TRANSITION",
                       job_id=job_id, from_status=from_status, to_status=to_status, **kwargs)

    def log_dispatch(self, job_id: str, issue_id: str, executor: str, **kwargs) -> None:
        """Log a dispatch decision."""
        self.log_event("INFO", "JOB_DISPATCHED",
                       job_id=job_id, issue_id=issue_id, executor=executor, **kwargs)

    def log_source_status(self, source: str, enabled: bool, consecutive_errors: int, **kwargs) -> None:
        """Log a change in an issue source's health."""
        level = "INFO" if enabled else "WARNING"
        self.log_event(level, "SOURCE_STATUS",
                       source=source, enabled=enabled,
                       consecutive_errors=consecutive_errors, **kwargs)
