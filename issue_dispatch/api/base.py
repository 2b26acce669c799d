"""Base API client with rate limiting, retries and a circuit breaker."""

import time
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Callable
from dataclasses import dataclass
from enum import Enum
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from issue_dispatch.exceptions import DispatchError


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(DispatchError):
    """Raised instead of calling a provider whose circuit is open."""
    pass


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration."""
    requests_per_window: int
    window_seconds: int


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5
    recovery_timeout: int = 60
    expected_exception: type = requests.RequestException


class RateLimiter:
    """Token bucket rate limiter."""

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self.tokens = float(config.requests_per_window)
        self.last_refill = time.monotonic()
        self._lock = threading.Lock()

    def acquire(self, tokens: int = 1) -> bool:
        """Take tokens from the bucket, returning False if there are too few."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_refill
            refill = elapsed * (self.config.requests_per_window / self.config.window_seconds)
            if refill > 0:
                self.tokens = min(float(self.config.requests_per_window), self.tokens + refill)
                self.last_refill = now

            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    def wait_time(self) -> float:
        """Seconds until the next token is available."""
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) * (self.config.window_seconds / self.config.requests_per_window)


class CircuitBreaker:
    """Circuit breaker pattern implementation."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.logger = logging.getLogger(__name__)

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if self.state == CircuitBreakerState.OPEN:
            if time.monotonic() - self.last_failure_time >= self.config.recovery_timeout:
                self.state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to HALF_OPEN")
            else:
                raise CircuitOpenError("Circuit breaker is OPEN")

        try:
            result = func(*args, **kwargs)
        except self.config.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        self.failure_count = 0
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.state = CircuitBreakerState.CLOSED
            self.logger.info("Circuit breaker transitioning to CLOSED")

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.failure_count >= self.config.failure_threshold:
            self.state = CircuitBreakerState.OPEN
            self.logger.warning(f"Circuit breaker transitioning to OPEN after {self.failure_count} failures")


class BaseAPIClient(ABC):
    """Base class for blocking HTTP API clients.

    Calls are synchronous; async callers run them through
    ``asyncio.to_thread``.
    """

    def __init__(
        self,
        base_url: str,
        rate_limit_config: RateLimitConfig,
        circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
        timeout: int = 30
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

        self.rate_limiter = RateLimiter(rate_limit_config)
        self.circuit_breaker = CircuitBreaker(circuit_breaker_config) if circuit_breaker_config else None

        # Transport-level retries for idempotent methods and throttling responses
        self.session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS", "PUT", "DELETE"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @abstractmethod
    def authenticate(self) -> Dict[str, str]:
        """Return authentication headers."""

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        """Make HTTP request with rate limiting and circuit breaker."""
        while not self.rate_limiter.acquire():
            wait_time = self.rate_limiter.wait_time()
            self.logger.info(f"Rate limit reached, waiting {wait_time:.2f} seconds")
            time.sleep(wait_time)

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_headers = self.authenticate()
        if headers:
            request_headers.update(headers)

        def _request():
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=request_headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            return response

        if self.circuit_breaker:
            response = self.circuit_breaker.call(_request)
        else:
            response = _request()

        self.logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self._make_request("GET", endpoint, params=params)
