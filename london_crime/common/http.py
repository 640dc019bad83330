"""Street-crime API client with timeouts and status-aware retry backoff.

Each request runs a small retry state machine driven by ``tenacity``:

* transport errors and retryable upstream statuses wait ``base * 2**(n-1)``
  before attempt ``n + 1``;
* HTTP 429 waits the more conservative ``base * 3**n``;
* permanent rejections (400, 401, 403, 404) and malformed payloads fail at once;
* after ``max_retries`` attempts the last error is re-raised.

``sleep`` is injectable so the backoff schedule can be exercised without
real time passing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

import requests
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt

from london_crime.common.constants import DEFAULT_API_URL, USER_AGENT
from london_crime.common.errors import StageError
from london_crime.common.logging import log_event

PERMANENT_STATUS_CODES = {400, 401, 403, 404}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 10.0
    read: float = 30.0


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0


class ApiRequestError(StageError):
    error_code = "HTTP_ERROR"
    retryable = True


class TransportError(ApiRequestError):
    """Network-level failure: connection refused, reset, timeout."""

    error_code = "TRANSPORT_ERROR"


class UpstreamError(ApiRequestError):
    """Upstream answered with a non-2xx status or an unusable payload."""

    error_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class RateLimited(UpstreamError):
    error_code = "RATE_LIMITED"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=429, retryable=True)


def backoff_delay(attempt: int, error: BaseException | None, base_delay: float) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    if isinstance(error, RateLimited):
        return base_delay * (3**attempt)
    return base_delay * (2 ** (attempt - 1))


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ApiRequestError) and error.retryable


class CrimeApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "CrimeApiClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 429:
            raise RateLimited("Rate limit exceeded (HTTP 429)")
        if status in PERMANENT_STATUS_CODES:
            raise UpstreamError(f"Request rejected: HTTP {status}", status_code=status, retryable=False)
        raise UpstreamError(f"Upstream error: HTTP {status}", status_code=status)

    def _request_once(self, params: dict[str, Any]) -> list[dict]:
        try:
            response = self.session.request(
                method="GET",
                url=self.base_url,
                params=params,
                headers=self._headers(),
                timeout=(self.timeout.connect, self.timeout.read),
            )
        except requests.RequestException as exc:
            raise TransportError(f"Network error: {exc}") from exc

        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Invalid JSON payload from {self.base_url}",
                status_code=response.status_code,
                retryable=False,
            ) from exc

        if not isinstance(payload, list):
            raise UpstreamError(
                f"Expected a JSON array, got {type(payload).__name__}",
                status_code=response.status_code,
                retryable=False,
            )
        return payload

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return backoff_delay(retry_state.attempt_number, error, self.retry.base_delay)

    def get_crimes(self, date: str, poly: str, *, area: str | None = None) -> list[dict]:
        """All street crimes for month ``date`` inside polygon ``poly``."""

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            log_event(
                self.logger,
                f"request failed, retrying in {retry_state.next_action.sleep:.1f}s: {error}",
                level=logging.WARNING,
                event="REQUEST_RETRY",
                status="retry",
                partition=date,
                area=area,
                attempt=retry_state.attempt_number,
                error_code=getattr(error, "error_code", None),
            )

        @retry(
            stop=stop_after_attempt(self.retry.max_retries),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        def _wrapped() -> list[dict]:
            return self._request_once({"date": date, "poly": poly})

        return _wrapped()
